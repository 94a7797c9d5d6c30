# flagproviders

Feature flag providers that share one evaluation interface. It uses only the
standard library. Every provider has these methods:

- `metadata()` returns a `Metadata` with the provider's name.
- `hooks()` returns an empty list.
- `boolean_evaluation(flag_key, default_value, eval_ctx)`
- `string_evaluation(flag_key, default_value, eval_ctx)`
- `int_evaluation(flag_key, default_value, eval_ctx)`
- `float_evaluation(flag_key, default_value, eval_ctx)`
- `object_evaluation(flag_key, default_value, eval_ctx)`

`eval_ctx` is a flat mapping. Its `"targetingKey"` entry identifies the
subject of the evaluation.

Each evaluation method returns a `ResolutionDetail` from `flagproviders.core`,
with these fields:

- `value`: the resolved value
- `reason`: a `Reason`, such as `STATIC`, `DEFAULT`, `TARGETING_MATCH`,
  `DISABLED` or `ERROR`
- `variant`: a string, empty when the provider reports none
- `error`: a `ResolutionError` or `None`

`error_code()` returns the `ErrorCode` of the failure, or `None`.
`error_message()` returns its message, or an empty string.

Failures are not raised. The detail comes back with the default value and the
error attached. The reason is usually `ERROR`. The Flipt provider reports
service failures with reason `DEFAULT`.

## Providers

### Environment variables: `flagproviders.fromenv`

`FromEnvProvider(flag_to_env_mapper=None)` reads a flag definition stored as
JSON in an environment variable. By default the variable name is the flag key.
A `flag_to_env_mapper` callable can map the key to another name.

A definition is a `StoredFlag` with these fields:

- `default_variant`: the name of the variant to use when none matches
- `variants`: a list of `Variant` objects

Each `Variant` has these fields:

- `name`
- `value`
- `targeting_key`: optional
- `criteria`: a list of `Criteria`, each holding a `key` and a `value`

Variants are tried in order. The first one matches when two conditions hold:

- its targeting key is empty or equals the context's `"targetingKey"`;
- every criterion's key is in the context with an equal value.

When no variant matches, the default variant is used with reason `DEFAULT`. If
the default variant does not exist, the result is a `PARSE_ERROR`.

`StoredFlag.to_json()` writes the JSON form. `parse_stored_flag(text)` reads it
back and raises `ResolutionError` on malformed input.

```python
import os

from flagproviders.fromenv import Criteria, FromEnvProvider, StoredFlag, Variant

flag = StoredFlag(
    default_variant="off",
    variants=[
        Variant(name="on", value=True, criteria=[Criteria(key="color", value="yellow")]),
        Variant(name="off", value=False),
    ],
)
os.environ["MY_FLAG"] = flag.to_json()

provider = FromEnvProvider()
detail = provider.boolean_evaluation("MY_FLAG", False, {"color": "yellow"})
print(detail.value, detail.reason, detail.variant)  # True TARGETING_MATCH on
```

### Flagsmith: `flagproviders.flagsmith`

`FlagsmithClient(environment_key, base_url, timeout=10.0)` calls the
`flags/` and `identities/` endpoints below `base_url` and sends the
`X-Environment-Key` header. `FlagsmithProvider(client, using_boolean_config_value=False)`
resolves flags in one of two ways:

- Without a `"targetingKey"` in the context, it fetches the environment flags
  and reports reason `STATIC`.
- With a `"targetingKey"`, it fetches that identity's flags. The other context
  entries are sent as traits, and the reason is `TARGETING_MATCH`.

A disabled flag gives the default value with reason `DISABLED`. Values are
read as follows:

- Floats and objects are stored as strings: a numeric string and a JSON string
  respectively.
- Integers are read from JSON numbers.
- With `using_boolean_config_value=True`, `boolean_evaluation` returns whether
  the flag is enabled.

```python
from flagproviders.flagsmith import FlagsmithClient, FlagsmithProvider

client = FlagsmithClient("placeholder", "https://flagsmith.example.com/api/v1/")
provider = FlagsmithProvider(client)
detail = provider.string_evaluation("banner_text", "hello", {"targetingKey": "user-1"})
```

### In-process engine: `flagproviders.gofeatureflag`

`GoFeatureFlagProvider(engine)` evaluates flags through an engine object that
you supply. The engine must provide two methods:

- `raw_variation(flag_key, context, default_value)`, which returns a
  `RawVariationResult` or raises `VariationError`;
- `close()`, which is called by `shutdown()`.

The context must carry a string `"targetingKey"`. Otherwise the result is a
`TARGETING_KEY_MISSING` error. `new_eval_flag_request(flat_ctx, default_value)`
builds the `EvalFlagRequest` that is sent to the engine.

Engine error codes map to resolution errors:

- `FLAG_NOT_FOUND`
- `PROVIDER_NOT_READY`
- `PARSE_ERROR`
- `TYPE_MISMATCH`
- `GENERAL`

A value of the wrong type gives `TYPE_MISMATCH`. Exceptions from the engine
other than `VariationError` are not caught.

```python
from flagproviders.gofeatureflag import GoFeatureFlagProvider, RawVariationResult

class StaticEngine:
    def raw_variation(self, flag_key, context, default_value):
        return RawVariationResult(value=True, reason="TARGETING_MATCH", variation_type="True")

    def close(self):
        pass

provider = GoFeatureFlagProvider(StaticEngine())
detail = provider.boolean_evaluation("my_flag", False, {"targetingKey": "user-1"})
```

### Flipt: `flagproviders.flipt` and `flagproviders.flipt_service`

`FliptProvider` takes the following keyword arguments:

- `address` (default `http://localhost:8080`)
- `certificate_path`
- `token_provider`: a callable returning a bearer token
- `namespace` (default `"default"`)
- `config`: a `Config` holding the same settings
- `service`: any object with `get_flag`, `evaluate` and `boolean`

Without a `service`, it builds a `FliptService`. That service talks to the
Flipt REST API through `FliptHttpClient`. It needs a non-empty `"targetingKey"`
in the context and sends every context value as a string (see
`convert_context`). API failures become `StatusError`s, which
`to_resolution_error` maps to resolution errors.

The provider reads variant evaluations as follows:

- The string, float and int evaluations take the variant key. The float and int
  evaluations parse it as a number.
- `object_evaluation` parses the variant attachment as a JSON object.
- A disabled flag gives reason `DISABLED`.
- No match gives reason `DEFAULT`.

```python
from flagproviders.flipt import FliptProvider

provider = FliptProvider(address="http://localhost:8080", token_provider=lambda: "token")
detail = provider.boolean_evaluation("v2_enabled", False, {"targetingKey": "user-1"})
```

## What this package does not do

- It has no GO Feature Flag rule engine or flag-file loader. `GoFeatureFlagProvider`
  only drives an engine object that you pass in.
- `FliptService` connects over HTTP and HTTPS only. Other address schemes,
  such as gRPC or unix sockets, raise `ValueError` when the service first
  connects.
- There is no client API, hook mechanism or command-line tool. You call the
  providers directly.

## Tests

```
pip install -e .[test]
pytest
```
"""A provider that reads flag definitions as JSON from environment variables."""

from __future__ import annotations

import json
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .core import TARGETING_KEY, ErrorCode, Metadata, Reason, ResolutionDetail, ResolutionError

FlagToEnvMapper = Callable[[str], str]


def _values_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


@dataclass
class Criteria:
    """A context key that must hold a given value."""

    key: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value}


@dataclass
class Variant:
    """One possible outcome of a stored flag."""

    name: str
    value: Any = None
    targeting_key: str = ""
    criteria: list[Criteria] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "criteria": [c.to_dict() for c in self.criteria],
            "targetingKey": self.targeting_key,
            "value": self.value,
            "name": self.name,
        }


@dataclass
class StoredFlag:
    """A flag definition: its variants and the name of the default one."""

    default_variant: str = ""
    variants: list[Variant] = field(default_factory=list)

    def evaluate(self, eval_ctx: Mapping[str, Any]) -> tuple[str, Reason, Any]:
        """Return (variant name, reason, value) for the context.

        Raises ResolutionError when nothing matches and no default variant exists.
        """
        default: Variant | None = None
        for variant in self.variants:
            if variant.name == self.default_variant:
                default = variant
            if variant.targeting_key and variant.targeting_key != eval_ctx.get(TARGETING_KEY):
                continue
            if all(
                c.key in eval_ctx and _values_equal(eval_ctx[c.key], c.value)
                for c in variant.criteria
            ):
                return variant.name, Reason.TARGETING_MATCH, variant.value
        if default is None:
            raise ResolutionError(ErrorCode.PARSE_ERROR, "")
        return default.name, Reason.DEFAULT, default.value

    def to_json(self) -> str:
        """Serialise the flag to the JSON form read from the environment."""
        return json.dumps(
            {
                "defaultVariant": self.default_variant,
                "variants": [v.to_dict() for v in self.variants],
            }
        )


def _string_field(obj: Mapping[str, Any], name: str) -> str:
    value = obj.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ResolutionError(ErrorCode.PARSE_ERROR, f"field {name} must be a string")
    return value


def _list_field(obj: Mapping[str, Any], name: str) -> list[Any]:
    value = obj.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ResolutionError(ErrorCode.PARSE_ERROR, f"field {name} must be an array")
    return value


def _object(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ResolutionError(ErrorCode.PARSE_ERROR, f"{what} must be an object")
    return value


def parse_stored_flag(text: str) -> StoredFlag:
    """Parse a JSON flag definition; raise ResolutionError on malformed input."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ResolutionError(ErrorCode.PARSE_ERROR, str(exc)) from exc
    top = _object(raw, "flag")
    variants = []
    for item in _list_field(top, "variants"):
        v = _object(item, "variant")
        criteria = [
            Criteria(key=_string_field(c, "key"), value=c.get("value"))
            for c in (_object(x, "criteria") for x in _list_field(v, "criteria"))
        ]
        variants.append(
            Variant(
                name=_string_field(v, "name"),
                value=v.get("value"),
                targeting_key=_string_field(v, "targetingKey"),
                criteria=criteria,
            )
        )
    return StoredFlag(default_variant=_string_field(top, "defaultVariant"), variants=variants)


class FromEnvProvider:
    """Evaluates flags whose definitions are stored in environment variables."""

    def __init__(self, flag_to_env_mapper: FlagToEnvMapper | None = None) -> None:
        self._mapper = flag_to_env_mapper

    def metadata(self) -> Metadata:
        return Metadata(name="from-env-flag-evaluator")

    def hooks(self) -> list[Any]:
        return []

    def _fetch(self, key: str) -> StoredFlag:
        env_key = self._mapper(key) if self._mapper is not None else key
        text = os.environ.get(env_key, "")
        if not text:
            raise ResolutionError(
                ErrorCode.FLAG_NOT_FOUND, f"key {env_key} not found in environment variables"
            )
        return parse_stored_flag(text)

    def _resolve(self, flag_key: str, default_value: Any, eval_ctx: Mapping[str, Any] | None) -> ResolutionDetail:
        try:
            variant, reason, value = self._fetch(flag_key).evaluate(eval_ctx or {})
        except ResolutionError as err:
            return ResolutionDetail(value=default_value, reason=Reason.ERROR, error=err)
        except Exception as exc:  # noqa: BLE001
            return ResolutionDetail(
                value=default_value,
                reason=Reason.ERROR,
                error=ResolutionError(ErrorCode.GENERAL, str(exc)),
            )
        return ResolutionDetail(value=value, reason=reason, variant=variant)

    def _typed(
        self,
        flag_key: str,
        default_value: Any,
        eval_ctx: Mapping[str, Any] | None,
        accept: Callable[[Any], bool],
        convert: Callable[[Any], Any],
    ) -> ResolutionDetail:
        res = self._resolve(flag_key, default_value, eval_ctx)
        if res.error is not None:
            return res
        if not accept(res.value):
            return ResolutionDetail(
                value=default_value,
                reason=Reason.ERROR,
                error=ResolutionError(ErrorCode.TYPE_MISMATCH, ""),
            )
        res.value = convert(res.value)
        return res

    def boolean_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        return self._typed(flag_key, default_value, eval_ctx, lambda v: isinstance(v, bool), bool)

    def string_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        return self._typed(flag_key, default_value, eval_ctx, lambda v: isinstance(v, str), str)

    def int_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        return self._typed(flag_key, default_value, eval_ctx, _is_number, int)

    def float_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        return self._typed(flag_key, default_value, eval_ctx, _is_number, float)

    def object_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        return self._resolve(flag_key, default_value, eval_ctx)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
"""A provider that resolves flags through the Flagsmith HTTP API."""

from __future__ import annotations

import json
import math
import urllib.error
import urllib.request
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from .core import TARGETING_KEY, ErrorCode, Metadata, Reason, ResolutionDetail, ResolutionError


class FlagsmithError(Exception):
    """Raised when the Flagsmith API cannot be reached or returns bad data."""


@dataclass(frozen=True)
class Flag:
    """The state of one feature as reported by Flagsmith."""

    name: str
    value: Any = None
    enabled: bool = False
    feature_id: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Flag:
        """Build a flag from one feature-state object of the API."""
        feature = data.get("feature") or {}
        if not isinstance(feature, Mapping):
            raise FlagsmithError("flagsmith: malformed feature in response")
        return cls(
            name=str(feature.get("name", "")),
            value=data.get("feature_state_value"),
            enabled=bool(data.get("enabled", False)),
            feature_id=int(feature.get("id") or 0),
        )


class Flags:
    """A collection of flags returned by one API call."""

    def __init__(self, flags: Iterable[Flag] = ()) -> None:
        self._flags = list(flags)

    @classmethod
    def from_json_list(cls, items: Any) -> Flags:
        """Build the collection from a list of feature-state objects."""
        if not isinstance(items, list):
            raise FlagsmithError("flagsmith: expected a list of flags in response")
        parsed = []
        for item in items:
            if not isinstance(item, Mapping):
                raise FlagsmithError("flagsmith: malformed flag in response")
            parsed.append(Flag.from_dict(item))
        return cls(parsed)

    def __iter__(self) -> Iterator[Flag]:
        return iter(self._flags)

    def __len__(self) -> int:
        return len(self._flags)

    def get_flag(self, name: str) -> Flag:
        """Return the flag called name; raise FlagsmithError when there is none."""
        for flag in self._flags:
            if flag.name == name:
                return flag
        raise FlagsmithError(f"flagsmith: No feature found with name {json.dumps(name)}")


class FlagsmithClient:
    """A small client for the environment and identity endpoints of Flagsmith."""

    def __init__(self, environment_key: str, base_url: str, timeout: float = 10.0) -> None:
        self.environment_key = environment_key
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout

    def _request(self, path: str, body: Any = None) -> Any:
        data = None
        headers = {
            "X-Environment-Key": self.environment_key,
            "Accept": "application/json",
        }
        if body is not None:
            data = json.dumps(body, separators=(",", ":")).encode("utf-8")
            headers["Content-Type"] = "application/json"
        request = urllib.request.Request(
            self.base_url + path,
            data=data,
            headers=headers,
            method="POST" if body is not None else "GET",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                payload = response.read()
        except urllib.error.HTTPError as exc:
            raise FlagsmithError(
                f"flagsmith: unexpected response from Flagsmith API: {exc.code}"
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise FlagsmithError(f"flagsmith: error performing request to Flagsmith API: {exc}") from exc
        try:
            return json.loads(payload)
        except json.JSONDecodeError as exc:
            raise FlagsmithError(f"flagsmith: invalid JSON in response: {exc}") from exc

    def get_environment_flags(self) -> Flags:
        """Fetch the flags of the environment."""
        return Flags.from_json_list(self._request("flags/"))

    def get_identity_flags(self, identifier: str, traits: Mapping[str, Any] | None) -> Flags:
        """Fetch the flags of one identity, sending its traits along."""
        body: dict[str, Any] = {"identifier": identifier}
        if traits:
            body["traits"] = [
                {"trait_key": key, "trait_value": value} for key, value in traits.items()
            ]
        payload = self._request("identities/", body)
        if not isinstance(payload, Mapping):
            raise FlagsmithError("flagsmith: malformed identity response")
        return Flags.from_json_list(payload.get("flags") or [])


def _describe(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "<nil>"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def _mismatch(default_value: Any, value: Any, kind: str) -> ResolutionDetail:
    return ResolutionDetail(
        value=default_value,
        reason=Reason.ERROR,
        error=ResolutionError(
            ErrorCode.TYPE_MISMATCH, f"flagsmith: Value {_describe(value)} is not a valid {kind}"
        ),
    )


def _parse_float(text: str) -> float:
    if text != text.strip() or "_" in text:
        raise ValueError(text)
    return float(text)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class FlagsmithProvider:
    """Resolves flags with a Flagsmith client."""

    def __init__(self, client: FlagsmithClient, using_boolean_config_value: bool = False) -> None:
        self.client = client
        self.using_boolean_config_value = using_boolean_config_value

    def metadata(self) -> Metadata:
        return Metadata(name="Flagsmith")

    def hooks(self) -> list[Any]:
        return []

    def _resolve(
        self, flag_key: str, default_value: Any, eval_ctx: Mapping[str, Any] | None
    ) -> ResolutionDetail:
        ctx = eval_ctx or {}
        reason = Reason.STATIC
        try:
            if TARGETING_KEY in ctx:
                reason = Reason.TARGETING_MATCH
                identifier = ctx[TARGETING_KEY]
                if not isinstance(identifier, str):
                    return ResolutionDetail(
                        value=default_value,
                        reason=Reason.ERROR,
                        error=ResolutionError(
                            ErrorCode.INVALID_CONTEXT, "flagsmith: targeting key is not a string"
                        ),
                    )
                traits = {k: v for k, v in ctx.items() if k != TARGETING_KEY}
                flags = self.client.get_identity_flags(identifier, traits)
            else:
                flags = self.client.get_environment_flags()
        except Exception as exc:  # noqa: BLE001
            return ResolutionDetail(
                value=default_value,
                reason=Reason.ERROR,
                error=ResolutionError(ErrorCode.GENERAL, str(exc)),
            )

        try:
            flag = flags.get_flag(flag_key)
        except FlagsmithError as exc:
            return ResolutionDetail(
                value=default_value,
                reason=Reason.ERROR,
                error=ResolutionError(ErrorCode.FLAG_NOT_FOUND, str(exc)),
            )

        if not flag.enabled:
            return ResolutionDetail(value=default_value, reason=Reason.DISABLED)
        return ResolutionDetail(value=flag.value, reason=reason)

    def boolean_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        res = self._resolve(flag_key, default_value, eval_ctx)
        if res.error is not None:
            res.value = default_value
            return res
        if self.using_boolean_config_value:
            return ResolutionDetail(value=res.reason != Reason.DISABLED, reason=Reason.STATIC)
        if res.reason == Reason.DISABLED:
            res.value = default_value
            return res
        if not isinstance(res.value, bool):
            return _mismatch(default_value, res.value, "boolean")
        return res

    def string_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        res = self._resolve(flag_key, default_value, eval_ctx)
        if res.error is not None or res.reason == Reason.DISABLED:
            res.value = default_value
            return res
        if not isinstance(res.value, str):
            return _mismatch(default_value, res.value, "string")
        return res

    def float_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        res = self._resolve(flag_key, default_value, eval_ctx)
        if res.error is not None or res.reason == Reason.DISABLED:
            res.value = default_value
            return res
        # Floats are stored as strings.
        if not isinstance(res.value, str):
            return _mismatch(default_value, res.value, "float")
        try:
            res.value = _parse_float(res.value)
        except ValueError:
            return _mismatch(default_value, res.value, "float")
        return res

    def int_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        res = self._resolve(flag_key, default_value, eval_ctx)
        if res.error is not None or res.reason == Reason.DISABLED:
            res.value = default_value
            return res
        if not _is_number(res.value):
            return _mismatch(default_value, res.value, "int")
        res.value = int(res.value)
        return res

    def object_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        res = self._resolve(flag_key, default_value, eval_ctx)
        if res.error is not None or res.reason == Reason.DISABLED:
            return res
        # Objects are stored as JSON strings.
        if not isinstance(res.value, str):
            return _mismatch(default_value, res.value, "object")
        try:
            res.value = json.loads(res.value)
        except json.JSONDecodeError:
            return _mismatch(default_value, res.value, "object")
        return res
"""A provider that evaluates flags with a Flipt server.

The provider sends each evaluation to Flipt through a service object. By
default that is a FliptService built from the configured address,
certificate path and token provider. Another service can be passed in
instead.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any, Protocol

from .core import ErrorCode, Metadata, Reason, ResolutionDetail, ResolutionError
from .flipt_service import (
    DEFAULT_ADDRESS,
    FLAG_DISABLED_EVALUATION_REASON,
    BooleanEvaluationResponse,
    ClientTokenProvider,
    Flag,
    FliptService,
    VariantEvaluationResponse,
)

DEFAULT_NAMESPACE = "default"

_INT_PATTERN = re.compile(r"[+-]?[0-9]+", re.ASCII)
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class Service(Protocol):
    """The calls the provider makes to evaluate flags."""

    def get_flag(self, namespace_key: str, flag_key: str) -> Flag: ...

    def evaluate(
        self, namespace_key: str, flag_key: str, eval_ctx: Mapping[str, Any] | None
    ) -> VariantEvaluationResponse: ...

    def boolean(
        self, namespace_key: str, flag_key: str, eval_ctx: Mapping[str, Any] | None
    ) -> BooleanEvaluationResponse: ...


@dataclass
class Config:
    """Connection and lookup settings for the provider."""

    address: str = DEFAULT_ADDRESS
    certificate_path: str = ""
    token_provider: ClientTokenProvider | None = None
    namespace: str = DEFAULT_NAMESPACE


def _parse_float(text: str) -> float:
    if not text or text != text.strip() or "_" in text:
        raise ValueError(text)
    return float(text)


def _parse_int(text: str) -> int:
    if not _INT_PATTERN.fullmatch(text):
        raise ValueError(text)
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(text)
    return value


def _numbers_as_floats(value: Any) -> Any:
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, dict):
        return {k: _numbers_as_floats(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_numbers_as_floats(v) for v in value]
    return value


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid number {name}")


def _parse_object(text: str) -> dict[str, Any]:
    value = json.loads(text, parse_constant=_reject_constant)
    if not isinstance(value, dict):
        raise ValueError("not an object")
    for number in _iter_floats(value):
        if not math.isfinite(number):
            raise ValueError("number out of range")
    return _numbers_as_floats(value)


def _iter_floats(value: Any):
    if isinstance(value, float):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_floats(item)
    elif isinstance(value, list):
        for item in value:
            yield from _iter_floats(item)


def _failure(default_value: Any, exc: Exception) -> ResolutionDetail:
    error = (
        exc
        if isinstance(exc, ResolutionError)
        else ResolutionError(ErrorCode.GENERAL, str(exc))
    )
    return ResolutionDetail(value=default_value, reason=Reason.DEFAULT, error=error)


def _mismatch(default_value: Any, message: str) -> ResolutionDetail:
    return ResolutionDetail(
        value=default_value,
        reason=Reason.ERROR,
        error=ResolutionError(ErrorCode.TYPE_MISMATCH, message),
    )


class FliptProvider:
    """Evaluates flags with a Flipt server."""

    def __init__(
        self,
        *,
        address: str | None = None,
        certificate_path: str | None = None,
        config: Config | None = None,
        service: Service | None = None,
        token_provider: ClientTokenProvider | None = None,
        namespace: str | None = None,
    ) -> None:
        cfg = replace(config) if config is not None else Config()
        if address is not None:
            cfg.address = address
        if certificate_path is not None:
            cfg.certificate_path = certificate_path
        if token_provider is not None:
            cfg.token_provider = token_provider
        if namespace is not None:
            cfg.namespace = namespace
        self.config = cfg
        if service is None:
            service = FliptService(
                address=cfg.address,
                certificate_path=cfg.certificate_path,
                token_provider=cfg.token_provider,
            )
        self.service = service

    def metadata(self) -> Metadata:
        return Metadata(name="flipt-provider")

    def hooks(self) -> list[Any]:
        return []

    def boolean_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        try:
            resp = self.service.boolean(self.config.namespace, flag_key, eval_ctx)
        except Exception as exc:  # noqa: BLE001
            return _failure(default_value, exc)
        return ResolutionDetail(value=resp.enabled, reason=Reason.TARGETING_MATCH)

    def _variant(
        self, flag_key: str, default_value: Any, eval_ctx: Any
    ) -> VariantEvaluationResponse | ResolutionDetail:
        """Return the matching response, or the detail to report instead."""
        try:
            resp = self.service.evaluate(self.config.namespace, flag_key, eval_ctx)
        except Exception as exc:  # noqa: BLE001
            return _failure(default_value, exc)
        if resp.reason == FLAG_DISABLED_EVALUATION_REASON:
            return ResolutionDetail(value=default_value, reason=Reason.DISABLED)
        if not resp.match:
            return ResolutionDetail(value=default_value, reason=Reason.DEFAULT)
        return resp

    def string_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        resp = self._variant(flag_key, default_value, eval_ctx)
        if isinstance(resp, ResolutionDetail):
            return resp
        return ResolutionDetail(value=resp.variant_key, reason=Reason.TARGETING_MATCH)

    def float_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        resp = self._variant(flag_key, default_value, eval_ctx)
        if isinstance(resp, ResolutionDetail):
            return resp
        try:
            value = _parse_float(resp.variant_key)
        except ValueError:
            return _mismatch(default_value, "value is not a float")
        return ResolutionDetail(value=value, reason=Reason.TARGETING_MATCH)

    def int_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        resp = self._variant(flag_key, default_value, eval_ctx)
        if isinstance(resp, ResolutionDetail):
            return resp
        try:
            value = _parse_int(resp.variant_key)
        except ValueError:
            return _mismatch(default_value, "value is not an integer")
        return ResolutionDetail(value=value, reason=Reason.TARGETING_MATCH)

    def object_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        """Return the variant attachment as a mapping, if the variant has one."""
        resp = self._variant(flag_key, default_value, eval_ctx)
        if isinstance(resp, ResolutionDetail):
            return resp
        if resp.variant_attachment == "":
            return ResolutionDetail(
                value=default_value, reason=Reason.DEFAULT, variant=resp.variant_key
            )
        try:
            value = _parse_object(resp.variant_attachment)
        except ValueError:
            return _mismatch(
                default_value,
                f"value is not an object: {json.dumps(resp.variant_attachment)}",
            )
        return ResolutionDetail(
            value=value, reason=Reason.TARGETING_MATCH, variant=resp.variant_key
        )
"""A provider that evaluates flags in process with a GO Feature Flag engine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from .core import TARGETING_KEY, ErrorCode, Metadata, Reason, ResolutionDetail, ResolutionError


@dataclass
class UserRequest:
    """A user as older relay proxies expect it."""

    key: str
    anonymous: bool = True
    custom: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "anonymous": self.anonymous, "custom": self.custom}


@dataclass
class EvaluationContextRequest:
    """The evaluation context sent to the engine: a key and custom attributes."""

    key: str
    custom: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "custom": self.custom}


@dataclass
class EvalFlagRequest:
    """Everything needed to evaluate one flag."""

    user: UserRequest
    evaluation_context: EvaluationContextRequest | None
    default_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"user": self.user.to_dict()}
        if self.evaluation_context is not None:
            data["evaluationContext"] = self.evaluation_context.to_dict()
        data["defaultValue"] = self.default_value
        return data


def new_eval_flag_request(flat_ctx: Mapping[str, Any] | None, default_value: Any) -> EvalFlagRequest:
    """Build a request from a flattened context.

    Raises ResolutionError when the targeting key is missing or not a string.
    """
    ctx = dict(flat_ctx or {})
    if TARGETING_KEY not in ctx:
        raise ResolutionError(
            ErrorCode.TARGETING_KEY_MISSING, "no targetingKey provided in the evaluation context"
        )
    key = ctx[TARGETING_KEY]
    if not isinstance(key, str):
        raise ResolutionError(ErrorCode.TARGETING_KEY_MISSING, "targetingKey field MUST be a string")
    anonymous = ctx.get("anonymous")
    if not isinstance(anonymous, bool):
        anonymous = True
    return EvalFlagRequest(
        user=UserRequest(key=key, anonymous=anonymous, custom=ctx),
        evaluation_context=EvaluationContextRequest(key=key, custom=ctx),
        default_value=default_value,
    )


@dataclass
class RawVariationResult:
    """What the engine reports for one evaluation."""

    value: Any = None
    reason: str = ""
    variation_type: str = ""
    error_code: str = ""


class VariationError(Exception):
    """Raised by an engine when an evaluation fails; carries the raw result."""

    def __init__(self, result: RawVariationResult, message: str = "") -> None:
        super().__init__(message or result.error_code)
        self.result = result


class FlagEngine(Protocol):
    """The in-process evaluation engine the provider drives."""

    def raw_variation(
        self, flag_key: str, context: EvaluationContextRequest, default_value: Any
    ) -> RawVariationResult: ...

    def close(self) -> None: ...


_ERROR_MESSAGES: dict[str, tuple[ErrorCode, str]] = {
    ErrorCode.FLAG_NOT_FOUND.value: (ErrorCode.FLAG_NOT_FOUND, "flag {} was not found in GO Feature Flag"),
    ErrorCode.PROVIDER_NOT_READY.value: (
        ErrorCode.PROVIDER_NOT_READY,
        "provider not ready for evaluation of flag {}",
    ),
    ErrorCode.PARSE_ERROR.value: (ErrorCode.PARSE_ERROR, "parse error during evaluation of flag {}"),
    ErrorCode.TYPE_MISMATCH.value: (ErrorCode.TYPE_MISMATCH, "unexpected type for flag {}"),
    ErrorCode.GENERAL.value: (ErrorCode.GENERAL, "unexpected error during evaluation of the flag {}"),
}


def _to_reason(raw: str) -> Reason | str:
    try:
        return Reason(raw)
    except ValueError:
        return raw


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class GoFeatureFlagProvider:
    """Evaluates flags locally with a GO Feature Flag engine, no relay proxy needed."""

    def __init__(self, engine: FlagEngine | None) -> None:
        if engine is None:
            raise ValueError("invalid provider options, empty GOFeatureFlagConfig value")
        self._engine = engine

    def metadata(self) -> Metadata:
        return Metadata(name="GO Feature Flag In Process Provider")

    def hooks(self) -> list[Any]:
        return []

    def init(self, eval_ctx: Any) -> None:
        """Nothing to prepare; the engine is ready once built."""
        return None

    def shutdown(self) -> None:
        self._engine.close()

    def _evaluate(
        self,
        flag_key: str,
        default_value: Any,
        eval_ctx: Mapping[str, Any] | None,
        accept: Callable[[Any], bool],
        zero: Any,
    ) -> ResolutionDetail:
        try:
            request = new_eval_flag_request(eval_ctx, default_value)
        except ResolutionError as err:
            return ResolutionDetail(value=default_value, reason=Reason.ERROR, error=err)

        assert request.evaluation_context is not None
        try:
            result = self._engine.raw_variation(flag_key, request.evaluation_context, default_value)
        except VariationError as exc:
            result = exc.result
            mapped = _ERROR_MESSAGES.get(result.error_code)
            if mapped is not None:
                code, template = mapped
                return ResolutionDetail(
                    value=default_value,
                    reason=Reason.ERROR,
                    error=ResolutionError(code, template.format(flag_key)),
                )

        value = result.value
        if value is None:
            return ResolutionDetail(
                value=zero, reason=_to_reason(result.reason), variant=result.variation_type
            )
        if accept(value):
            return ResolutionDetail(
                value=value, reason=_to_reason(result.reason), variant=result.variation_type
            )
        return ResolutionDetail(
            value=default_value,
            reason=Reason.ERROR,
            error=ResolutionError(ErrorCode.TYPE_MISMATCH, f"unexpected type for flag {flag_key}"),
        )

    def boolean_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        return self._evaluate(flag_key, default_value, eval_ctx, lambda v: isinstance(v, bool), False)

    def string_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        return self._evaluate(flag_key, default_value, eval_ctx, lambda v: isinstance(v, str), "")

    def float_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        return self._evaluate(flag_key, default_value, eval_ctx, lambda v: isinstance(v, float), 0.0)

    def int_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        return self._evaluate(flag_key, default_value, eval_ctx, _is_int, 0)

    def object_evaluation(self, flag_key, default_value, eval_ctx) -> ResolutionDetail:
        return self._evaluate(flag_key, default_value, eval_ctx, lambda v: True, None)
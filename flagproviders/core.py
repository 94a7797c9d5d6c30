"""Shared evaluation types used by every flag provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

TARGETING_KEY = "targetingKey"


class Reason(str, Enum):
    """Why a flag resolved to the value it did."""

    STATIC = "STATIC"
    DEFAULT = "DEFAULT"
    TARGETING_MATCH = "TARGETING_MATCH"
    SPLIT = "SPLIT"
    CACHED = "CACHED"
    DISABLED = "DISABLED"
    UNKNOWN = "UNKNOWN"
    ERROR = "ERROR"

    def __str__(self) -> str:
        return self.value


class ErrorCode(str, Enum):
    """Kinds of failure a resolution can report."""

    PROVIDER_NOT_READY = "PROVIDER_NOT_READY"
    FLAG_NOT_FOUND = "FLAG_NOT_FOUND"
    PARSE_ERROR = "PARSE_ERROR"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    TARGETING_KEY_MISSING = "TARGETING_KEY_MISSING"
    INVALID_CONTEXT = "INVALID_CONTEXT"
    GENERAL = "GENERAL"

    def __str__(self) -> str:
        return self.value


class ResolutionError(Exception):
    """A resolution failure carrying an error code and a message."""

    def __init__(self, code: ErrorCode, message: str = "") -> None:
        super().__init__(code, message)
        self.code = ErrorCode(code)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def __repr__(self) -> str:
        return f"ResolutionError({self.code.value!r}, {self.message!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResolutionError):
            return NotImplemented
        return self.code == other.code and self.message == other.message

    def __hash__(self) -> int:
        return hash((self.code, self.message))


@dataclass
class ResolutionDetail:
    """The outcome of evaluating one flag."""

    value: Any
    reason: Reason | str = Reason.UNKNOWN
    variant: str = ""
    error: ResolutionError | None = None
    flag_metadata: dict[str, Any] = field(default_factory=dict)

    def error_code(self) -> ErrorCode | None:
        """The error code of the failure, or None when there was none."""
        return self.error.code if self.error is not None else None

    def error_message(self) -> str:
        """The error message of the failure, or an empty string."""
        return self.error.message if self.error is not None else ""


@dataclass(frozen=True)
class Metadata:
    """Descriptive data about a provider."""

    name: str
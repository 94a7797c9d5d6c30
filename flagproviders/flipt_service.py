"""Lower-level client for the Flipt service.

The Flipt provider normally sets this up and drives it; using it directly is rarely needed.
"""

from __future__ import annotations

import json
import math
import ssl
import threading
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Protocol

from .core import TARGETING_KEY, ErrorCode, ResolutionError

REQUEST_ID = "requestID"
DEFAULT_ADDRESS = "http://localhost:8080"

UNKNOWN_EVALUATION_REASON = "UNKNOWN_EVALUATION_REASON"
FLAG_DISABLED_EVALUATION_REASON = "FLAG_DISABLED_EVALUATION_REASON"
MATCH_EVALUATION_REASON = "MATCH_EVALUATION_REASON"
DEFAULT_EVALUATION_REASON = "DEFAULT_EVALUATION_REASON"

ClientTokenProvider = Callable[[], str]


class StatusCode(IntEnum):
    """Status codes reported by the Flipt API."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


_HTTP_STATUS_CODES: dict[int, StatusCode] = {
    400: StatusCode.INVALID_ARGUMENT,
    401: StatusCode.UNAUTHENTICATED,
    403: StatusCode.PERMISSION_DENIED,
    404: StatusCode.NOT_FOUND,
    409: StatusCode.ALREADY_EXISTS,
    429: StatusCode.RESOURCE_EXHAUSTED,
    499: StatusCode.CANCELLED,
    500: StatusCode.INTERNAL,
    501: StatusCode.UNIMPLEMENTED,
    503: StatusCode.UNAVAILABLE,
    504: StatusCode.DEADLINE_EXCEEDED,
}


class StatusError(Exception):
    """A failed call to the Flipt API, with its status code and message."""

    def __init__(self, code: StatusCode, message: str = "") -> None:
        super().__init__(code, message)
        self.code = StatusCode(code)
        self.message = message

    def __str__(self) -> str:
        return f"code = {self.code.name} desc = {self.message}"


@dataclass
class Flag:
    """A flag as stored in Flipt."""

    key: str
    namespace_key: str = ""
    name: str = ""
    description: str = ""
    enabled: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Flag:
        return cls(
            key=str(data.get("key", "")),
            namespace_key=str(data.get("namespaceKey", "")),
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            enabled=bool(data.get("enabled", False)),
        )


@dataclass
class EvaluationRequest:
    """A request to evaluate one flag for one entity."""

    flag_key: str
    namespace_key: str
    entity_id: str
    request_id: str = ""
    context: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "requestId": self.request_id,
            "namespaceKey": self.namespace_key,
            "flagKey": self.flag_key,
            "entityId": self.entity_id,
            "context": dict(self.context),
        }


@dataclass
class VariantEvaluationResponse:
    """The result of a variant evaluation."""

    match: bool = False
    segment_keys: list[str] = field(default_factory=list)
    reason: str = UNKNOWN_EVALUATION_REASON
    variant_key: str = ""
    variant_attachment: str = ""
    request_id: str = ""
    flag_key: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VariantEvaluationResponse:
        return cls(
            match=bool(data.get("match", False)),
            segment_keys=[str(k) for k in data.get("segmentKeys") or []],
            reason=str(data.get("reason") or UNKNOWN_EVALUATION_REASON),
            variant_key=str(data.get("variantKey", "")),
            variant_attachment=str(data.get("variantAttachment", "")),
            request_id=str(data.get("requestId", "")),
            flag_key=str(data.get("flagKey", "")),
        )


@dataclass
class BooleanEvaluationResponse:
    """The result of a boolean evaluation."""

    enabled: bool = False
    reason: str = UNKNOWN_EVALUATION_REASON
    request_id: str = ""
    flag_key: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BooleanEvaluationResponse:
        return cls(
            enabled=bool(data.get("enabled", False)),
            reason=str(data.get("reason") or UNKNOWN_EVALUATION_REASON),
            request_id=str(data.get("requestId", "")),
            flag_key=str(data.get("flagKey", "")),
        )


class FliptClient(Protocol):
    """The calls the service makes against Flipt."""

    def get_flag(self, namespace_key: str, flag_key: str) -> Flag: ...

    def variant(self, request: EvaluationRequest) -> VariantEvaluationResponse: ...

    def boolean(self, request: EvaluationRequest) -> BooleanEvaluationResponse: ...


def load_tls_credentials(server_cert_path: str) -> ssl.SSLContext:
    """Build a TLS 1.2+ context trusting the CA certificate in the given PEM file.

    Raises ValueError when the file cannot be read or holds no usable certificate.
    """
    try:
        with open(server_cert_path, encoding="ascii", errors="replace") as handle:
            pem = handle.read()
    except OSError as exc:
        reason = (exc.strerror or str(exc)).lower()
        raise ValueError(f"failed to load certificate: open {server_cert_path}: {reason}") from exc
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    try:
        context.load_verify_locations(cadata=pem)
    except (ssl.SSLError, ValueError) as exc:
        raise ValueError("failed to add server CA's certificate") from exc
    return context


def to_resolution_error(err: BaseException) -> ResolutionError:
    """Map a failed API call onto the matching resolution error."""
    if not isinstance(err, StatusError):
        return ResolutionError(ErrorCode.GENERAL, "internal error")
    if err.code == StatusCode.NOT_FOUND:
        return ResolutionError(ErrorCode.FLAG_NOT_FOUND, err.message)
    if err.code == StatusCode.INVALID_ARGUMENT:
        return ResolutionError(ErrorCode.INVALID_CONTEXT, err.message)
    if err.code == StatusCode.UNAVAILABLE:
        return ResolutionError(ErrorCode.PROVIDER_NOT_READY, err.message)
    return ResolutionError(ErrorCode.GENERAL, err.message)


def _format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "+Inf" if value > 0 else "-Inf"
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "map[" + " ".join(f"{_format_value(k)}:{_format_value(v)}" for k, v in items) + "]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_format_value(v) for v in value) + "]"
    return str(value)


def convert_context(eval_ctx: Mapping[str, Any]) -> dict[str, str]:
    """Render every context value as a string."""
    return {key: _format_value(value) for key, value in eval_ctx.items()}


class FliptHttpClient:
    """Talks to the Flipt REST API over HTTP or HTTPS."""

    def __init__(
        self,
        address: str = DEFAULT_ADDRESS,
        certificate_path: str = "",
        token_provider: ClientTokenProvider | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.address = address.rstrip("/")
        self.timeout = timeout
        self._token_provider = token_provider
        self._ssl_context: ssl.SSLContext | None = None
        if certificate_path:
            try:
                self._ssl_context = load_tls_credentials(certificate_path)
            except ValueError:
                self._ssl_context = None

    def _request(self, method: str, path: str, body: Mapping[str, Any] | None = None) -> Any:
        headers = {"Accept": "application/json"}
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if self._token_provider is not None:
            headers["Authorization"] = f"Bearer {self._token_provider()}"
        request = urllib.request.Request(
            self.address + path, data=data, headers=headers, method=method
        )
        try:
            with urllib.request.urlopen(
                request, timeout=self.timeout, context=self._ssl_context
            ) as response:
                payload = response.read()
        except urllib.error.HTTPError as exc:
            raise self._status_from_http(exc) from exc
        except (urllib.error.URLError, OSError) as exc:
            reason = getattr(exc, "reason", exc)
            raise StatusError(StatusCode.UNAVAILABLE, str(reason)) from exc
        try:
            return json.loads(payload or b"{}")
        except json.JSONDecodeError as exc:
            raise StatusError(StatusCode.INTERNAL, f"invalid response: {exc}") from exc

    @staticmethod
    def _status_from_http(exc: urllib.error.HTTPError) -> StatusError:
        code = _HTTP_STATUS_CODES.get(exc.code, StatusCode.UNKNOWN)
        message = exc.reason if isinstance(exc.reason, str) else str(exc.code)
        try:
            detail = json.loads(exc.read() or b"{}")
        except (json.JSONDecodeError, OSError):
            detail = {}
        if isinstance(detail, Mapping):
            raw_code = detail.get("code")
            if isinstance(raw_code, int) and raw_code in StatusCode._value2member_map_:
                code = StatusCode(raw_code)
            if isinstance(detail.get("message"), str):
                message = detail["message"]
        return StatusError(code, message)

    def get_flag(self, namespace_key: str, flag_key: str) -> Flag:
        ns = urllib.parse.quote(namespace_key, safe="")
        key = urllib.parse.quote(flag_key, safe="")
        return Flag.from_dict(self._request("GET", f"/api/v1/namespaces/{ns}/flags/{key}"))

    def variant(self, request: EvaluationRequest) -> VariantEvaluationResponse:
        data = self._request("POST", "/evaluate/v1/variant", request.to_dict())
        return VariantEvaluationResponse.from_dict(data)

    def boolean(self, request: EvaluationRequest) -> BooleanEvaluationResponse:
        data = self._request("POST", "/evaluate/v1/boolean", request.to_dict())
        return BooleanEvaluationResponse.from_dict(data)


class FliptService:
    """Looks up and evaluates flags, mapping failures to resolution errors."""

    def __init__(
        self,
        address: str = DEFAULT_ADDRESS,
        certificate_path: str = "",
        token_provider: ClientTokenProvider | None = None,
        client: FliptClient | None = None,
    ) -> None:
        self.address = address
        self.certificate_path = certificate_path
        self.token_provider = token_provider
        self._client = client
        self._lock = threading.Lock()

    def _instance(self) -> FliptClient:
        with self._lock:
            if self._client is None:
                scheme = urllib.parse.urlparse(self.address).scheme
                if scheme not in ("http", "https"):
                    raise ValueError(
                        f"connecting {self.address}: only http and https addresses are supported"
                    )
                self._client = FliptHttpClient(
                    self.address, self.certificate_path, self.token_provider
                )
            return self._client

    @staticmethod
    def _request(
        namespace_key: str, flag_key: str, eval_ctx: Mapping[str, Any] | None
    ) -> EvaluationRequest:
        if eval_ctx is None:
            raise ResolutionError(ErrorCode.INVALID_CONTEXT, "evalCtx is nil")
        ec = convert_context(eval_ctx)
        targeting_key = ec.get(TARGETING_KEY, "")
        if not targeting_key:
            raise ResolutionError(ErrorCode.TARGETING_KEY_MISSING, "targetingKey is missing")
        return EvaluationRequest(
            flag_key=flag_key,
            namespace_key=namespace_key,
            entity_id=targeting_key,
            request_id=ec.get(REQUEST_ID, ""),
            context=ec,
        )

    def get_flag(self, namespace_key: str, flag_key: str) -> Flag:
        """Return the flag for the namespace/flag key pair."""
        client = self._instance()
        try:
            return client.get_flag(namespace_key, flag_key)
        except Exception as exc:
            raise to_resolution_error(exc) from exc

    def boolean(
        self, namespace_key: str, flag_key: str, eval_ctx: Mapping[str, Any] | None
    ) -> BooleanEvaluationResponse:
        """Evaluate a boolean flag for the context."""
        request = self._request(namespace_key, flag_key, eval_ctx)
        client = self._instance()
        try:
            return client.boolean(request)
        except Exception as exc:
            raise to_resolution_error(exc) from exc

    def evaluate(
        self, namespace_key: str, flag_key: str, eval_ctx: Mapping[str, Any] | None
    ) -> VariantEvaluationResponse:
        """Evaluate a variant flag for the context."""
        request = self._request(namespace_key, flag_key, eval_ctx)
        client = self._instance()
        try:
            return client.variant(request)
        except Exception as exc:
            raise to_resolution_error(exc) from exc
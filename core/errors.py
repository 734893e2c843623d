# =============================================================================
# core/errors.py  -  Error Taxonomy for Coze API failures
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Defines ONE exception family (ApiError) for everything that can go wrong
#   between a tool call and the Coze REST API.  Each subclass carries:
#     - kind        a stable name reported back to the caller
#     - error_code  a numeric code (1000..1010)
#     - retryable   whether a caller *could* retry (informational only)
#     - hint        a short human-readable suggestion
#
# CLASSIFICATION RULES (see error_from_response):
#   The HTTP status alone decides the class:
#     400 → BadRequestError          401 → AuthenticationError
#     403 → AuthorizationError       404 → NotFoundError
#     429 → RateLimitExceededError   5xx → ServerError
#     anything else ≥ 400            → NetworkError
#
#   The body's business "code" field is NOT looked at here.  Endpoint
#   callers check it themselves and raise BusinessError when it is nonzero.
# =============================================================================

from typing import Any, Optional


class ApiError(Exception):
    """Base class for every failure talking to the Coze API."""

    kind = "ApiError"
    error_code = 1000
    retryable = False
    hint = "Unexpected error while calling the Coze API."

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.kind,
            "code": self.error_code,
            "message": self.message,
            "hint": self.hint,
        }
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        return payload


class NetworkError(ApiError):
    kind = "NetworkError"
    error_code = 1000
    retryable = True
    hint = "Network problem, check your connection."


class ApiTimeoutError(ApiError):
    # Named to avoid shadowing the builtin TimeoutError.
    kind = "TimeoutError"
    error_code = 1001
    retryable = True
    hint = "The request timed out, try again later."


class AuthenticationError(ApiError):
    kind = "AuthenticationError"
    error_code = 1002
    hint = "Authentication failed, check the API token."


class AuthorizationError(ApiError):
    kind = "AuthorizationError"
    error_code = 1003
    hint = "Permission denied for this resource."


class BadRequestError(ApiError):
    kind = "BadRequestError"
    error_code = 1004
    hint = "The request parameters were rejected."


class NotFoundError(ApiError):
    kind = "NotFoundError"
    error_code = 1005
    hint = "The requested resource does not exist."


class RateLimitExceededError(ApiError):
    kind = "RateLimitExceeded"
    error_code = 1006
    retryable = True
    hint = "Too many requests, slow down and retry."


class ServerError(ApiError):
    kind = "ServerError"
    error_code = 1007
    retryable = True
    hint = "The Coze service returned an internal error."


class InvalidResponseFormatError(ApiError):
    kind = "InvalidResponseFormat"
    error_code = 1008
    hint = "The Coze service returned an unexpected response."


class SerializationError(ApiError):
    kind = "SerializationError"
    error_code = 1009
    hint = "Failed to encode or decode data."


class ConfigError(ApiError):
    kind = "ConfigError"
    error_code = 1010
    hint = "The server configuration is invalid."


class BusinessError(BadRequestError):
    """HTTP succeeded but the body carried a nonzero business code."""

    kind = "BusinessError"

    def __init__(self, upstream_code: Any, message: str):
        super().__init__(message)
        self.upstream_code = upstream_code

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["upstream_code"] = self.upstream_code
        return payload


class StreamBusinessError(BusinessError):
    """A business error frame received in the middle of an SSE stream."""

    kind = "StreamBusinessError"


_STATUS_CLASSES: dict[int, type[ApiError]] = {
    400: BadRequestError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    429: RateLimitExceededError,
}


def _message_from_body(body: Any, raw_text: Optional[str] = None) -> str:
    if isinstance(body, dict):
        for key in ("msg", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        raw = body.get("raw")
        if isinstance(raw, str):
            return raw
    if isinstance(body, str):
        return body
    if raw_text:
        return raw_text
    return str(body)


def error_from_response(status_code: int, body: Any, raw_text: Optional[str] = None) -> ApiError:
    """Build the ApiError subclass matching an HTTP error status.

    The message is the body's msg or message, else the raw response text.
    """
    message = _message_from_body(body, raw_text)
    if status_code in _STATUS_CLASSES:
        cls = _STATUS_CLASSES[status_code]
    elif 500 <= status_code < 600:
        cls = ServerError
    else:
        cls = NetworkError
    return cls(message, status_code=status_code)


def check_business_code(body: Any) -> None:
    """Raise BusinessError when a JSON body carries a nonzero ``code``."""
    if not isinstance(body, dict):
        return
    code = body.get("code")
    if code is None or code == 0 or code == "0":
        return
    message = body.get("msg") or body.get("message") or "unknown business error"
    raise BusinessError(code, str(message))

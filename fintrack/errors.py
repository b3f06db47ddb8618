from enum import Enum
from typing import Any, Optional, Tuple

AUTH_MESSAGE_MARKERS = ("unauthorized", "invalid user", "token expired")
AUTH_ERROR_CODES = {"401", "UNAUTHORIZED", "TOKEN_EXPIRED", "AUTH_EXPIRED"}


class ErrorCode(str, Enum):
    AUTH_EXPIRED = "AUTH_EXPIRED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE = (ErrorCode.RATE_LIMIT_EXCEEDED, ErrorCode.SERVER_ERROR)

DEFAULT_MESSAGES = {
    ErrorCode.AUTH_EXPIRED: "Authentication failed. Please log in again.",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Too many requests. Please try again later.",
    ErrorCode.SERVER_ERROR: "The server encountered an error. Please try again later.",
    ErrorCode.NETWORK_ERROR: "Network connection issue. Please check your internet connection and try again.",
    ErrorCode.VALIDATION_ERROR: "The request was rejected as invalid.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred",
}


class ApiError(Exception):
    """Every failure the API client surfaces, in one shape.

    Callers display `message`, branch on `code` and never see transport
    exceptions.
    """

    def __init__(self, code: ErrorCode, message: Optional[str] = None,
                 status: Optional[int] = None, details: Any = None):
        self.code = ErrorCode(code)
        self.message = message or DEFAULT_MESSAGES[self.code]
        self.status = status
        self.details = details
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE

    def to_dict(self) -> dict:
        out = {"message": self.message, "code": self.code.value}
        if self.status is not None:
            out["status"] = self.status
        return out

    def __repr__(self) -> str:
        return f"ApiError(code={self.code.value!r}, status={self.status!r}, message={self.message!r})"

    def __eq__(self, other) -> bool:
        return (
            isinstance(other, ApiError)
            and self.code == other.code
            and self.status == other.status
            and self.message == other.message
        )

    __hash__ = Exception.__hash__


class TransactionFormatError(ValueError):
    """Raised when a raw record cannot be turned into a domain object."""

    def __init__(self, record_id: Any, field: str, reason: str):
        self.record_id = record_id
        self.field = field
        self.reason = reason
        super().__init__(f"record {record_id!r}: invalid {field}: {reason}")


def _join_messages(items: list) -> str:
    parts = []
    for item in items:
        if isinstance(item, dict):
            text = item.get("msg") or item.get("message")
            if text:
                parts.append(str(text))
        elif item is not None:
            parts.append(str(item))
    return "; ".join(parts)


def normalize_error(payload: Any) -> Tuple[Optional[str], Optional[str], Any]:
    """Map any error payload the backend produces to (code, message, details).

    Known shapes:
        None / ""                                  -> (None, None, None)
        "plain text"                               -> (None, "plain text", None)
        ["a", {"msg": "b"}]                        -> (None, "a; b", [...])
        {"error": {"code", "message", "details"}}  -> envelope error
        {"error": "text"}                          -> (None, "text", None)
        {"code", "message"}                        -> flat error
        {"detail": "text" | [...]}                 -> FastAPI style
    """
    if payload is None:
        return None, None, None
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        text = payload.strip()
        return None, (text or None), None
    if isinstance(payload, list):
        return None, (_join_messages(payload) or None), payload
    if not isinstance(payload, dict):
        return None, str(payload), None

    error = payload.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        message = error.get("message")
        if isinstance(message, list):
            message = _join_messages(message)
        return (
            str(code) if code is not None else None,
            str(message) if message else None,
            error.get("details"),
        )
    if isinstance(error, str) and error:
        code = payload.get("code")
        return (str(code) if code is not None else None), error, None
    if isinstance(error, list):
        return None, _join_messages(error) or None, error

    detail = payload.get("detail")
    if isinstance(detail, list):
        return None, _join_messages(detail) or None, detail
    if isinstance(detail, str):
        return None, detail, None

    code = payload.get("code")
    message = payload.get("message")
    return (
        str(code) if code is not None else None,
        str(message) if message else None,
        payload.get("details"),
    )


def is_auth_failure(status: Optional[int], code: Optional[str], message: Optional[str]) -> bool:
    """A 401 status and an 'unauthorized' error payload mean the same thing."""
    if status == 401:
        return True
    if code is not None and str(code).upper() in AUTH_ERROR_CODES:
        return True
    if message:
        lowered = message.lower()
        return any(marker in lowered for marker in AUTH_MESSAGE_MARKERS)
    return False


def classify(status: Optional[int], code: Optional[str], message: Optional[str]) -> ErrorCode:
    """Decide which error class a failed response belongs to."""
    if is_auth_failure(status, code, message):
        return ErrorCode.AUTH_EXPIRED
    upper = str(code).upper() if code is not None else ""
    if status == 429 or upper == ErrorCode.RATE_LIMIT_EXCEEDED.value:
        return ErrorCode.RATE_LIMIT_EXCEEDED
    if status is not None and status >= 500:
        return ErrorCode.SERVER_ERROR
    if status in (400, 422) or upper == ErrorCode.VALIDATION_ERROR.value:
        return ErrorCode.VALIDATION_ERROR
    return ErrorCode.UNKNOWN_ERROR


def error_from_payload(payload: Any, status: Optional[int]) -> ApiError:
    code, message, details = normalize_error(payload)
    error_code = classify(status, code, message)
    if error_code is ErrorCode.AUTH_EXPIRED:
        # backend wording varies; the user always sees the same sentence
        return ApiError(error_code, status=401, details=details)
    if error_code is ErrorCode.UNKNOWN_ERROR and code:
        details = {"backend_code": code, "details": details}
    return ApiError(error_code, message, status=status, details=details)

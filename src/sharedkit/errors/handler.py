from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Union

ErrorCode = Union[str, int]

UNKNOWN_ERROR = "UNKNOWN_ERROR"

# --- sensitive-content detection ---

SENSITIVE_KEYWORDS: tuple[str, ...] = (
    # database
    "sql", "database", "query", "mysql", "postgres", "mongodb", "redis",
    "select", "insert", "update", "delete", "drop", "table", "column",
    # stack traces
    "stack", "stacktrace", "exception", "error:", "at line", "traceback",
    # filesystem
    "/var/", "/usr/", "/home/", "/opt/", "node_modules", "src/", "site-packages",
    # secrets
    "password", "token", "secret", "key", "credential", "auth",
    # frameworks
    "express", "react", "axios", "nginx", "gin", "gorm", "aiohttp",
    # internals
    "panic", "fatal", "assertion", "undefined", "nil pointer", "nonetype",
    # network
    "localhost", "127.0.0.1", ":3000", ":8080",
)

PATH_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"[a-z]:\\[\w\\]+", re.I),               # windows path
    re.compile(r"/[\w/]+\.(js|ts|tsx|jsx|go|py)", re.I),  # source file path
    re.compile(r"line\s+\d+", re.I),                     # line number
    re.compile(r"at\s+[\w.]+\s+\(", re.I),               # stack frame
)

MAX_PUBLIC_DETAIL_LEN = 200

def contains_sensitive_info(text: Optional[str]) -> bool:
    if not text:
        return False
    lower = text.lower()
    if any(kw in lower for kw in SENSITIVE_KEYWORDS):
        return True
    return any(p.search(text) for p in PATH_PATTERNS)

def filter_sensitive_data(detail: Any, is_dev: bool = False) -> Optional[str]:
    """
    Detail safe to show a user, or None.
    Dev mode passes any string through; otherwise sensitive or overlong
    details are dropped.
    """
    if not detail or not isinstance(detail, str):
        return None
    if is_dev:
        return detail
    if contains_sensitive_info(detail) or len(detail) > MAX_PUBLIC_DETAIL_LEN:
        return None
    return detail

# --- normalized error ---

class AppError(Exception):
    """Error with an application code and an optional detail string."""
    def __init__(
        self,
        message: str,
        code: ErrorCode = UNKNOWN_ERROR,
        detail: Optional[str] = None,
        *,
        name: str = "Error",
        cause: Optional[BaseException] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.detail = detail
        self.name = name
        self.cause = cause
        self.request_id = request_id

def normalize_error(error: Any) -> AppError:
    """
    Coerce anything raised or returned as an error into an AppError:
    exceptions keep their type name, message, `code`/`detail` attributes;
    strings become the message; dicts (decoded API error bodies) supply
    message/error, code, detail and request_id.
    """
    if isinstance(error, BaseException):
        detail = getattr(error, "detail", None)
        return AppError(
            str(error),
            getattr(error, "code", None) or UNKNOWN_ERROR,
            detail if isinstance(detail, str) else None,
            name=getattr(error, "name", None) or type(error).__name__,
            cause=error,
            request_id=getattr(error, "request_id", None),
        )
    if isinstance(error, str):
        return AppError(error)
    if isinstance(error, dict):
        msg = error.get("message")
        if msg is None:
            msg = error.get("error", "Unknown error")
        detail = error.get("detail")
        return AppError(
            str(msg),
            error.get("code") or UNKNOWN_ERROR,
            detail if isinstance(detail, str) else None,
            request_id=error.get("request_id"),
        )
    return AppError("Unknown error")

def create_error(code: ErrorCode, message: str, detail: Optional[str] = None) -> AppError:
    return AppError(message, code, detail)

# --- code ranges -> user message / retryability ---

@dataclass(slots=True, frozen=True)
class ErrorCodeRange:
    start: int   # inclusive
    end: int     # exclusive
    default_message: str
    is_retryable: bool

DEFAULT_ERROR_RANGES: tuple[ErrorCodeRange, ...] = (
    ErrorCodeRange(100000, 200000, "System error, please try again later", True),
    ErrorCodeRange(200000, 300000, "Authentication required", False),
    ErrorCodeRange(300000, 400000, "Operation failed, please retry", True),
    ErrorCodeRange(400000, 500000, "Data processing failed", False),
    ErrorCodeRange(500000, 600000, "Service temporarily unavailable", True),
)

DEFAULT_FALLBACK_MESSAGE = "Operation failed, please retry"

def _find_range(code: int, ranges: Sequence[ErrorCodeRange]) -> Optional[ErrorCodeRange]:
    for r in ranges:
        if r.start <= code < r.end:
            return r
    return None

def get_user_friendly_message(
    code: int,
    messages: Optional[dict[int, str]] = None,
    ranges: Sequence[ErrorCodeRange] = DEFAULT_ERROR_RANGES,
    fallback: str = DEFAULT_FALLBACK_MESSAGE,
) -> str:
    if messages and messages.get(code):
        return messages[code]
    r = _find_range(code, ranges)
    return r.default_message if r else fallback

def is_retryable_error(code: int, ranges: Sequence[ErrorCodeRange] = DEFAULT_ERROR_RANGES) -> bool:
    r = _find_range(code, ranges)
    return r.is_retryable if r else False

# --- handler ---

@dataclass(slots=True)
class ErrorHandlerResult:
    message: str
    user_message: str
    code: ErrorCode
    is_retryable: bool
    detail: Optional[str] = None
    request_id: Optional[str] = None

@dataclass(slots=True)
class ErrorHandler:
    """Turns arbitrary errors into display-ready results with one message table."""
    messages: dict[int, str] = field(default_factory=dict)
    ranges: Sequence[ErrorCodeRange] = DEFAULT_ERROR_RANGES
    is_dev: bool = False

    def handle_error(self, error: Any) -> ErrorHandlerResult:
        n = normalize_error(error)
        # only integer codes map onto ranges; bool is not a code
        num = n.code if isinstance(n.code, int) and not isinstance(n.code, bool) else 0
        return ErrorHandlerResult(
            message=n.message,
            user_message=get_user_friendly_message(num, self.messages, self.ranges),
            code=n.code,
            is_retryable=is_retryable_error(num, self.ranges),
            detail=filter_sensitive_data(n.detail, self.is_dev),
            request_id=n.request_id,
        )

    def create_error(self, code: ErrorCode, message: str, detail: Optional[str] = None) -> AppError:
        return create_error(code, message, detail)

def create_error_handler(**kwargs: Any) -> ErrorHandler:
    """create_error_handler(messages=..., ranges=..., is_dev=...)"""
    return ErrorHandler(**kwargs)

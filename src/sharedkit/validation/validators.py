from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Literal, Optional, Sequence, TypeVar, Union

import structlog

T = TypeVar("T")

log = structlog.get_logger("validation")

MAX_SAFE_INTEGER = 2**53 - 1
EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

Pattern = Union[str, re.Pattern]

class ValidationError(Exception):
    """Raised when a single field fails validation."""
    def __init__(self, message: str, field: str, value: Any = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value

class ValidationErrors(Exception):
    """Several field failures collected by validate_params()."""
    def __init__(self, errors: list[ValidationError]):
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in errors))
        self.errors = errors

    @property
    def first(self) -> Optional[ValidationError]:
        return self.errors[0] if self.errors else None

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors]

    def has_error(self, field: str) -> bool:
        return any(e.field == field for e in self.errors)

    def get_error(self, field: str) -> Optional[ValidationError]:
        return next((e for e in self.errors if e.field == field), None)

# --- coercion helpers ---

def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)

def _to_int(v: Any) -> Optional[int]:
    """int from int, integral float, or decimal string; None if not possible."""
    if isinstance(v, str):
        try:
            return int(v.strip(), 10)
        except ValueError:
            return None
    if isinstance(v, bool) or not _is_number(v):
        return None
    if isinstance(v, float):
        if not v.is_integer():
            return None
        return int(v)
    return v

def _search(pattern: Pattern, text: str) -> bool:
    rx = re.compile(pattern) if isinstance(pattern, str) else pattern
    return rx.search(text) is not None

# --- single-value validators ---

def validate_id(value: Any, field_name: str = "id") -> int:
    if isinstance(value, float) and not value.is_integer() and math.isfinite(value):
        raise ValidationError(f"{field_name} must be a positive integer", field_name, value)
    n = _to_int(value)
    if n is None:
        raise ValidationError(f"{field_name} must be a valid number", field_name, value)
    if n <= 0:
        raise ValidationError(f"{field_name} must be a positive integer", field_name, value)
    if n > MAX_SAFE_INTEGER:
        raise ValidationError(f"{field_name} exceeds maximum safe integer", field_name, value)
    return n

@dataclass(slots=True, frozen=True)
class PaginationLimits:
    min_page: int = 1
    max_page: int = 1000
    min_page_size: int = 1
    max_page_size: int = 100

def validate_pagination(page: Any, page_size: Any, limits: PaginationLimits | None = None) -> tuple[int, int]:
    lim = limits or PaginationLimits()
    p = _to_int(page)
    if p is None or not lim.min_page <= p <= lim.max_page:
        raise ValidationError(f"page must be between {lim.min_page} and {lim.max_page}", "page", page)
    ps = _to_int(page_size)
    if ps is None or not lim.min_page_size <= ps <= lim.max_page_size:
        raise ValidationError(
            f"page_size must be between {lim.min_page_size} and {lim.max_page_size}", "page_size", page_size
        )
    return p, ps

def validate_string(
    value: Any,
    field_name: str,
    *,
    required: bool = True,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
    pattern: Optional[Pattern] = None,
    trim: bool = True,
) -> str:
    if not isinstance(value, str):
        if required:
            raise ValidationError(f"{field_name} must be a string", field_name, value)
        return ""
    s = value.strip() if trim else value
    if required and not s:
        raise ValidationError(f"{field_name} cannot be empty", field_name, value)
    if min_length is not None and len(s) < min_length:
        raise ValidationError(f"{field_name} must be at least {min_length} characters", field_name, value)
    if max_length is not None and len(s) > max_length:
        raise ValidationError(f"{field_name} must not exceed {max_length} characters", field_name, value)
    if pattern is not None and not _search(pattern, s):
        raise ValidationError(f"{field_name} format is invalid", field_name, value)
    return s

def validate_array(
    value: Any,
    field_name: str,
    *,
    required: bool = True,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
    item_validator: Optional[Callable[[Any, int], T]] = None,
) -> list:
    if not isinstance(value, (list, tuple)):
        if required:
            raise ValidationError(f"{field_name} must be an array", field_name, value)
        return []
    if min_length is not None and len(value) < min_length:
        raise ValidationError(f"{field_name} must have at least {min_length} items", field_name, value)
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field_name} must not exceed {max_length} items", field_name, value)
    if item_validator is None:
        return list(value)
    out = []
    for i, item in enumerate(value):
        try:
            out.append(item_validator(item, i))
        except Exception as e:
            raise ValidationError(f"{field_name}[{i}] is invalid: {e}", f"{field_name}[{i}]", item) from e
    return out

def validate_enum(value: Any, field_name: str, allowed: Sequence[T]) -> T:
    if value not in allowed:
        raise ValidationError(
            f"{field_name} must be one of: {', '.join(str(a) for a in allowed)}", field_name, value
        )
    return value

def _as_utc(dt: datetime) -> datetime:
    # naive datetimes are taken as UTC
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt

def _parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if _is_number(value):
        # epoch seconds
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return _as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None

def validate_date(
    value: Any,
    field_name: str,
    *,
    required: bool = True,
    min_date: Optional[datetime] = None,
    max_date: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Accepts datetime/date, ISO-8601 strings (trailing Z allowed) or epoch
    seconds. Returns a timezone-aware datetime; naive inputs are UTC.
    """
    if value is None:
        if required:
            raise ValidationError(f"{field_name} is required", field_name, value)
        return None
    dt = _parse_date(value)
    if dt is None:
        raise ValidationError(f"{field_name} must be a valid date", field_name, value)
    if min_date is not None and dt < _as_utc(min_date):
        raise ValidationError(f"{field_name} must be after {_as_utc(min_date).isoformat()}", field_name, value)
    if max_date is not None and dt > _as_utc(max_date):
        raise ValidationError(f"{field_name} must be before {_as_utc(max_date).isoformat()}", field_name, value)
    return dt

def validate_email(value: Any, field_name: str = "email", *, required: bool = True) -> str:
    if not isinstance(value, str):
        if required:
            raise ValidationError(f"{field_name} must be a string", field_name, value)
        return ""
    s = value.strip().lower()
    if required and not s:
        raise ValidationError(f"{field_name} cannot be empty", field_name, value)
    if s and not EMAIL_RE.match(s):
        raise ValidationError(f"{field_name} format is invalid", field_name, value)
    if len(s) > 254:
        raise ValidationError(f"{field_name} must not exceed 254 characters", field_name, value)
    return s

# --- rule-based validation ---

FieldType = Literal["string", "number", "boolean", "object", "array"]

@dataclass(slots=True, frozen=True)
class ValidationRule:
    required: bool = False
    type: Optional[FieldType] = None
    min: Optional[float] = None      # numbers: value, strings: length
    max: Optional[float] = None
    pattern: Optional[Pattern] = None
    custom: Optional[Callable[[Any], bool]] = None
    message: Optional[str] = None

def _type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if _is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    return "object"

def validate_field(field_name: str, value: Any, rule: ValidationRule) -> None:
    def fail(default: str) -> ValidationError:
        return ValidationError(rule.message or default, field_name, value)

    if rule.required and (value is None or value == ""):
        raise fail(f"{field_name} is required")
    if value is None:
        return

    if rule.type and _type_name(value) != rule.type:
        raise fail(f"{field_name} must be of type {rule.type}")

    if _is_number(value):
        if not math.isfinite(value):
            raise fail(f"{field_name} must be a valid number")
        if rule.min is not None and value < rule.min:
            raise fail(f"{field_name} must be at least {rule.min}")
        if rule.max is not None and value > rule.max:
            raise fail(f"{field_name} must not exceed {rule.max}")

    if isinstance(value, str):
        if rule.min is not None and len(value) < rule.min:
            raise fail(f"{field_name} must be at least {rule.min} characters")
        if rule.max is not None and len(value) > rule.max:
            raise fail(f"{field_name} must not exceed {rule.max} characters")
        if rule.pattern is not None and not _search(rule.pattern, value):
            raise fail(f"{field_name} format is invalid")

    if rule.custom is not None and not rule.custom(value):
        raise fail(f"{field_name} validation failed")

def validate_params(params: dict, schema: dict[str, ValidationRule], *, throw_all: bool = True) -> None:
    """
    Check every field in schema. One failure raises ValidationError, several
    raise ValidationErrors. throw_all=False stops at the first failure.
    """
    errors: list[ValidationError] = []
    for name, rule in schema.items():
        try:
            validate_field(name, params.get(name), rule)
        except ValidationError as e:
            errors.append(e)
            if not throw_all:
                break
    if len(errors) == 1:
        raise errors[0]
    if errors:
        raise ValidationErrors(errors)

def safe_validate(
    validator: Callable[[], T],
    default: T,
    on_error: Optional[Callable[[Exception], None]] = None,
) -> T:
    """validator() or default if it raises."""
    try:
        return validator()
    except Exception as e:
        if on_error is not None:
            on_error(e)
        else:
            log.debug("validation_fallback", err=str(e))
        return default

def _is_int(v: Any) -> bool:
    return _is_number(v) and float(v).is_integer()

COMMON_RULES: dict[str, ValidationRule] = {
    "id": ValidationRule(required=True, type="number", min=1, custom=_is_int, message="ID must be a positive integer"),
    "optional_id": ValidationRule(type="number", min=1, custom=_is_int, message="ID must be a positive integer"),
    "page": ValidationRule(type="number", min=1, custom=_is_int, message="Page must be a positive integer"),
    "page_size": ValidationRule(
        type="number", min=1, max=100, custom=_is_int, message="Page size must be between 1 and 100"
    ),
    "required_string": ValidationRule(required=True, type="string", min=1, message="Value cannot be empty"),
    "email": ValidationRule(type="string", pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$", message="Invalid email format"),
    "array": ValidationRule(
        required=True,
        type="array",
        custom=lambda v: isinstance(v, (list, tuple)) and len(v) > 0,
        message="Array cannot be empty",
    ),
    "boolean": ValidationRule(type="boolean", message="Value must be a boolean"),
}

"""
Tagged parse results for untrusted query-string values.

Handlers never cast a raw query value into an enum or int directly; they run
it through one of the parsers here and unwrap the result, which raises the
ValidationError carried by Err.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, Type, TypeVar, Union

from internmatch.core.errors import ValidationError

T = TypeVar("T")
E = TypeVar("E", bound=Enum)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: ValidationError

    def unwrap(self):
        raise self.error


Result = Union[Ok[T], Err]


def parse_enum(raw: Optional[str], enum_cls: Type[E], field: str) -> "Result[Optional[E]]":
    """Parse an optional enum value. None / blank parses to Ok(None)."""
    if raw is None or not raw.strip():
        return Ok(None)
    try:
        return Ok(enum_cls(raw.strip()))
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        return Err(ValidationError(f"Invalid {field} '{raw}'. Allowed: {allowed}"))


def parse_int(raw: Optional[str], field: str, *, default: int, minimum: int = 1, maximum: Optional[int] = None) -> "Result[int]":
    if raw is None or not raw.strip():
        return Ok(default)
    try:
        value = int(raw)
    except ValueError:
        return Err(ValidationError(f"{field} must be an integer"))
    if value < minimum:
        return Err(ValidationError(f"{field} must be >= {minimum}"))
    if maximum is not None and value > maximum:
        return Err(ValidationError(f"{field} must be <= {maximum}"))
    return Ok(value)


def parse_bool(raw: Optional[str], field: str, *, default: bool = False) -> "Result[bool]":
    if raw is None or not raw.strip():
        return Ok(default)
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return Ok(True)
    if value in ("0", "false", "no", "off"):
        return Ok(False)
    return Err(ValidationError(f"{field} must be a boolean"))

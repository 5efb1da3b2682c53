"""Parsing and validation utilities for persisted and broadcast state values.

Values arrive either as whole-value JSON text read from the state store or
as already-decoded members of a broadcast message. Both paths share the
validators below; a validator returns the normalized value or raises
ValueError.

Example:
    >>> parse_or_default("300", Decimal("0"), positive_number)
    Ok(value=Decimal('300'))

    >>> parse_or_default("{oops", Decimal("300"), positive_number)
    UsedDefault(value=Decimal('300'), reason='corrupt JSON: ...')

    >>> parse_amount("25abc")
    Decimal('25')
"""

import json
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Generic, Optional, TypeVar, Union

T = TypeVar("T")

Validator = Callable[[Any], T]


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Raw value parsed and validated."""

    value: T


@dataclass(frozen=True)
class UsedDefault(Generic[T]):
    """Raw value absent or invalid; the built-in default was used."""

    value: T
    reason: str


ParseResult = Union[Ok[T], UsedDefault[T]]


def parse_or_default(raw: Optional[str], default: T, validator: Validator) -> ParseResult:
    """
    Decode whole-value JSON text and validate it, falling back to a default.

    Args:
        raw: JSON text from the store, or None if the key was never written
        default: Built-in default for the field
        validator: Callable normalizing the decoded value, raising ValueError

    Returns:
        Ok(value) on success, UsedDefault(default, reason) otherwise
    """
    if raw is None:
        return UsedDefault(default, "absent")

    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError) as e:
        return UsedDefault(default, f"corrupt JSON: {e}")

    return validate_or_default(decoded, default, validator)


def validate_or_default(value: Any, default: T, validator: Validator) -> ParseResult:
    """Validate an already-decoded value, falling back to a default."""
    try:
        return Ok(validator(value))
    except (TypeError, ValueError, InvalidOperation) as e:
        return UsedDefault(default, f"invalid value: {e}")


def to_decimal(value: Any) -> Decimal:
    """Convert a JSON number (or numeric string) to Decimal.

    Raises:
        ValueError: If value is not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"not a number: {value!r}") from e
    else:
        raise ValueError(f"not a number: {value!r}")

    if not result.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return result


def to_json_number(value: Decimal) -> Union[int, float]:
    """Render a Decimal as a JSON number (integral values stay integers)."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def positive_number(value: Any) -> Decimal:
    number = to_decimal(value)
    if number <= 0:
        raise ValueError(f"must be positive: {value!r}")
    return number


def non_negative_number(value: Any) -> Decimal:
    number = to_decimal(value)
    if number < 0:
        raise ValueError(f"must not be negative: {value!r}")
    return number


def positive_int(value: Any) -> int:
    number = positive_number(value)
    if number != number.to_integral_value():
        raise ValueError(f"must be a whole number: {value!r}")
    return int(number)


def string_value(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"not a string: {value!r}")
    return value


def string_list(value: Any) -> list[str]:
    """List of strings; non-string entries are dropped."""
    if not isinstance(value, list):
        raise ValueError(f"not a list: {value!r}")
    return [item for item in value if isinstance(item, str)]


def iso_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"not a date string: {value!r}")
    # Accept full ISO timestamps written by browsers, keep the date part
    return date.fromisoformat(value.strip()[:10])


def number_list(length: int, item_validator: Validator) -> Validator:
    """Build a validator for a fixed-length list of numbers."""

    def validate(value: Any) -> tuple:
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"not a list: {value!r}")
        if len(value) != length:
            raise ValueError(f"expected {length} items, got {len(value)}")
        return tuple(item_validator(item) for item in value)

    return validate


_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_amount(raw: Any) -> Optional[Decimal]:
    """
    Parse keypad input into a positive whole amount.

    Only the leading integer part is used ("25abc" -> 25, "12.75" -> 12).

    Args:
        raw: Text typed on the kiosk keypad (or a number)

    Returns:
        Decimal amount, or None if input is malformed or not positive
    """
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float, Decimal)):
        raw = str(raw)
    if not isinstance(raw, str):
        return None

    match = _LEADING_INT.match(raw)
    if not match:
        return None

    amount = Decimal(int(match.group(1)))
    if amount <= 0:
        return None
    return amount

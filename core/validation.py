"""Field checks shared by the catalog, order and payment services."""
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from core.exceptions import ValidationError

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
CENT = Decimal("0.01")

# Money columns are Numeric(10, 2): at most 8 integer digits
MAX_MONEY = Decimal("100000000")
# INTEGER columns are 32-bit on PostgreSQL
MAX_WHOLE_NUMBER = 2**31 - 1


def require_text(field: str, value: Optional[Any]) -> str:
    """Return the stripped value, or raise if it is missing or blank."""
    if value is None or not str(value).strip():
        raise ValidationError(f"Missing required field: {field}")
    return str(value).strip()


def to_decimal(field: str, value: Any) -> Decimal:
    """Parse a finite decimal number."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not number.is_finite():
        raise ValidationError(f"{field} must be a number")
    return number


def to_money(field: str, value: Any) -> Decimal:
    """Parse an amount, round it to cents and check it fits a money column."""
    amount = to_decimal(field, value)
    # checked before quantize, which fails on values wider than the context precision
    if abs(amount) >= MAX_MONEY or abs(amount.quantize(CENT)) >= MAX_MONEY:
        raise ValidationError(f"{field} must be less than {MAX_MONEY}")
    return amount.quantize(CENT)


def to_whole_number(field: str, value: Any) -> int:
    number = to_decimal(field, value)
    if number != number.to_integral_value():
        raise ValidationError(f"{field} must be a whole number")
    if abs(number) > MAX_WHOLE_NUMBER:
        raise ValidationError(f"{field} is too large")
    return int(number)


def to_coordinate(field: str, value: Any, limit: int) -> Decimal:
    """Parse a latitude (limit 90) or longitude (limit 180) in degrees."""
    degrees = to_decimal(field, value)
    if abs(degrees) > limit:
        raise ValidationError(f"{field} must be between -{limit} and {limit}")
    return degrees


def validate_email(email: str) -> str:
    if not EMAIL_PATTERN.match(email):
        raise ValidationError(f"Invalid email address: {email}")
    return email

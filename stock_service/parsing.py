"""
Input coercion for values that arrive from shop-floor forms.

Numbers may be typed the local way ("1.234,56") or the programmer way
("1234.56"); ids may arrive as strings; dates must be plain calendar dates.
Every helper raises ``InvalidInput`` naming the offending field.
"""
import datetime
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from .exceptions import InvalidInput

# Column scales: Numeric(14, 3) quantities, Numeric(14, 2) money
QUANTITY_PLACES = 3
QUANTITY_DIGITS = 11
MONEY_PLACES = 2
MONEY_DIGITS = 12

_NUMBER_TEXT = re.compile(r"[+-]?[\d.,]*\d[\d.,]*")
_DOT_THOUSANDS = re.compile(r"[+-]?\d{1,3}(\.\d{3})+")


def parse_number(value: Any, field: str = "value") -> Decimal:
    """
    Parses a locale-flexible number.

    Only digits, an optional sign and the separators '.' and ',' are accepted
    (no exponents, no underscores). Rules:

    - a single ',' is the fraction separator and every '.' a thousands
      separator: "1.234,56" -> 1234.56, "12,5" -> 12.5
    - a single '.' is the fraction separator: "10.5" -> 10.5
    - several '.' must be well-formed thousands groups: "1.234.567" -> 1234567
    """
    if value is None or isinstance(value, bool):
        raise InvalidInput(f"{field} is required")
    if isinstance(value, (int, Decimal)):
        number = Decimal(value)
    elif isinstance(value, float):
        number = Decimal(str(value))
    else:
        text = str(value).strip().replace(" ", "")
        if not text:
            raise InvalidInput(f"{field} is required")
        if not _NUMBER_TEXT.fullmatch(text):
            raise InvalidInput(f"{field} is not a valid number: {value!r}")
        if "," in text:
            if text.count(",") > 1:
                raise InvalidInput(f"{field} is not a valid number: {value!r}")
            text = text.replace(".", "").replace(",", ".")
        elif text.count(".") > 1:
            if not _DOT_THOUSANDS.fullmatch(text):
                raise InvalidInput(f"{field} is not a valid number: {value!r}")
            text = text.replace(".", "")
        try:
            number = Decimal(text)
        except InvalidOperation:
            raise InvalidInput(f"{field} is not a valid number: {value!r}") from None

    if not number.is_finite():
        raise InvalidInput(f"{field} is not a valid number: {value!r}")
    return number


def check_precision(number: Decimal, field: str, places: int, digits: int) -> Decimal:
    """Rejects values the store would round or overflow instead of keeping as given."""
    if abs(number) >= Decimal(10) ** digits:
        raise InvalidInput(f"{field} is too large (at most {digits} integer digits)")
    if number != number.quantize(Decimal(1).scaleb(-places)):
        raise InvalidInput(f"{field} allows at most {places} decimal places")
    return number


def parse_positive_number(value: Any, field: str = "value") -> Decimal:
    number = parse_number(value, field)
    if number <= 0:
        raise InvalidInput(f"{field} must be greater than zero")
    return number


def parse_quantity(value: Any, field: str = "quantity") -> Decimal:
    """A positive quantity stored exactly, so stock and the sale row never round apart."""
    return check_precision(parse_positive_number(value, field), field, QUANTITY_PLACES, QUANTITY_DIGITS)


def parse_amount(value: Any, field: str = "total_amount") -> Decimal:
    """A money amount; may be zero or negative."""
    return check_precision(parse_number(value, field), field, MONEY_PLACES, MONEY_DIGITS)


def parse_item_id(value: Any, field: str = "item_id") -> int:
    """Accepts 7, "7" or 7.0; rejects zero, negatives and fractions."""
    number = parse_number(value, field)
    if number != number.to_integral_value() or number <= 0:
        raise InvalidInput(f"{field} must be a positive integer")
    return int(number)


def parse_date(value: Any, field: str = "date") -> str:
    """Normalizes to a 'YYYY-MM-DD' string; no time component is kept."""
    if isinstance(value, datetime.datetime):
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    if value is None or not str(value).strip():
        raise InvalidInput(f"{field} is required")
    try:
        return datetime.date.fromisoformat(str(value).strip()[:10]).isoformat()
    except ValueError:
        raise InvalidInput(f"{field} must be a calendar date (YYYY-MM-DD): {value!r}") from None

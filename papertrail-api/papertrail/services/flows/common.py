import re
from datetime import date
from decimal import Decimal, InvalidOperation

from papertrail.services.errors import ValidationError
from papertrail.services.step_machine import Button

CANCEL_BUTTON = Button("Cancel", "cancel")

_TAX_ID_RE = re.compile(r"^\d{9}$")


def split_csv(text: str) -> list[str]:
    return [part.strip() for part in text.split(",")]


def parse_amount(raw: str) -> str:
    """Positive amount as a 2-decimal string, e.g. '1500.00'."""
    cleaned = raw.replace("₪", "").replace(" ", "").strip()
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise ValidationError(f"'{raw}' is not an amount.")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be greater than zero.")
    return str(amount.quantize(Decimal("0.01")))


def is_tax_id(raw: str) -> bool:
    return bool(_TAX_ID_RE.match(raw))


def parse_tax_id(raw: str) -> str:
    if not is_tax_id(raw):
        raise ValidationError("ID must be exactly 9 digits.")
    return raw


def parse_iso_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw.strip())
    except ValueError:
        raise ValidationError("Please send the date as YYYY-MM-DD.")


def parse_counter(raw: str) -> int:
    text = raw.strip()
    if not text.isdigit():
        raise ValidationError("Please send a whole number (0 or more).")
    return int(text)


def length_between(raw: str, low: int, high: int, what: str) -> str:
    text = raw.strip()
    if not low <= len(text) <= high:
        raise ValidationError(f"{what} must be {low}-{high} characters.")
    return text

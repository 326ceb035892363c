import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

_THOUSANDS_ONLY = re.compile(r"\d{1,3}(\.\d{3})+")


def to_cents(amount: Union[Decimal, int, str]) -> int:
    """Convert a currency amount to integer cents, rounding half up."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(cents: Union[int, float]) -> str:
    return f"{cents / 100:.2f}"


def parse_brl_amount(value: str) -> int:
    """Parse a Brazilian formatted amount such as ``R$ 1.234,56`` into cents."""
    clean = value.strip().replace("R$", "").replace(" ", "")
    if "," in clean:
        clean = clean.replace(".", "").replace(",", ".")
    elif _THOUSANDS_ONLY.fullmatch(clean):
        clean = clean.replace(".", "")
    cents = to_cents(clean)
    if cents < 0:
        raise ValueError("Amount must be positive")
    return cents

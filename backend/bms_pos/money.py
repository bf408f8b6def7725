# Overview: Cents arithmetic shared by settlement, payments and the descriptor format.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


def round_half_up(value: Decimal) -> int:
    """Nearest whole cent, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_rate_bps(amount_cents: int, rate_bps: int) -> int:
    """amount * rate, rate given in basis points (1600 = 16%)."""
    return round_half_up(Decimal(amount_cents) * Decimal(rate_bps) / Decimal(10000))


def convert_cents(amount_cents: int, exchange_rate) -> int:
    """USD cents -> local-currency cents at a frozen rate."""
    return round_half_up(Decimal(amount_cents) * to_rate(exchange_rate))


def to_rate(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid exchange rate: {value!r}")


def parse_amount_to_cents(text: str) -> int:
    """'50', '50.5', '50.00' -> 5000, 5050, 5000."""
    try:
        amount = Decimal(text.strip())
    except (InvalidOperation, AttributeError):
        raise ValueError(f"invalid amount: {text!r}")
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {text!r}")
    return round_half_up(amount * 100)


def format_cents(amount_cents: int) -> str:
    """5000 -> '50.00'."""
    sign = "-" if amount_cents < 0 else ""
    units, cents = divmod(abs(amount_cents), 100)
    return f"{sign}{units}.{cents:02d}"

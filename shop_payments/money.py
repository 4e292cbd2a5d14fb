"""Amount handling for the store currency (VND, zero-decimal)."""
from decimal import ROUND_DOWN, Decimal

from shop_payments.errors import AmountTooLow

CURRENCY = "VND"
CURRENCY_SYMBOL = "₫"

# Stripe minimum is ~0.50 USD (about 12,500 VND); keep some headroom for FX.
MINIMUM_CHARGE_AMOUNT = 15_000


def to_minor_units(total) -> int:
    """Truncate a decimal total to whole dong. Never rounds up."""
    return int(Decimal(total).quantize(Decimal(1), rounding=ROUND_DOWN))


def format_amount(amount: int) -> str:
    return f"{CURRENCY_SYMBOL}{amount:,}"


def parse_formatted_amount(text: str) -> int:
    return int(text.replace(CURRENCY_SYMBOL, "").replace(",", "").strip())


def ensure_chargeable(amount: int, minimum: int = MINIMUM_CHARGE_AMOUNT) -> int:
    if amount < minimum:
        raise AmountTooLow(
            amount,
            minimum,
            f"Order amount must be at least {format_amount(minimum)} (current: {format_amount(amount)})",
        )
    return amount


def chargeable_amount(total) -> int:
    return ensure_chargeable(to_minor_units(total))

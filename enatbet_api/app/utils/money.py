"""
Money helpers: currency precision, price breakdowns, Stripe limits and refunds.

Amounts in major units (dollars, euros) are handled as ``Decimal`` and
rounded half-up to the currency's minor unit.  Stripe receives integer
minor units (cents).  Only the conversions in this module should move
between the two.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional, Union

Number = Union[int, float, str, Decimal]

CURRENCY_DECIMALS: Dict[str, int] = {
    "USD": 2,
    "CAD": 2,
    "EUR": 2,
    "GBP": 2,
    "ETB": 2,
}

# Currencies the Stripe account settles in, with Stripe's minimum charge
# in minor units.
STRIPE_MIN_CHARGE: Dict[str, int] = {
    "USD": 50,
    "EUR": 50,
    "GBP": 30,
}
STRIPE_MAX_CHARGE = 99_999_999

CURRENCY_SYMBOLS = {"USD": "$", "CAD": "CA$", "EUR": "€", "GBP": "£", "ETB": "Br"}

REFUND_POLICIES = ("flexible", "moderate", "strict", "super_strict")


def _decimals(currency: str) -> int:
    code = currency.upper()
    if code not in CURRENCY_DECIMALS:
        raise ValueError(f"Unsupported currency: {currency}")
    return CURRENCY_DECIMALS[code]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() avoids binary float artefacts such as 0.1 -> 0.1000000000000000055
    return Decimal(str(value))


def round_money(value: Number, currency: str = "USD") -> Decimal:
    quantum = Decimal(1).scaleb(-_decimals(currency))
    return to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Number, currency: str = "USD") -> int:
    """Convert a major-unit amount to an integer count of minor units."""
    places = _decimals(currency)
    return int(round_money(amount, currency).scaleb(places))


def from_minor_units(amount: int, currency: str = "USD") -> Decimal:
    return Decimal(int(amount)).scaleb(-_decimals(currency))


def format_amount(amount: Number, currency: str = "USD") -> str:
    code = currency.upper()
    value = round_money(amount, code)
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{symbol}{value:,}"
    return f"{value:,} {code}"


@dataclass(frozen=True)
class PriceBreakdown:
    """Price of a stay in major units."""

    nights: int
    price_per_night: Decimal
    base_price: Decimal
    cleaning_fee: Decimal
    service_fee: Decimal
    tax: Decimal
    total: Decimal
    currency: str = "USD"

    def as_dict(self) -> Dict[str, object]:
        return {
            "nights": self.nights,
            "price_per_night": float(self.price_per_night),
            "base_price": float(self.base_price),
            "cleaning_fee": float(self.cleaning_fee),
            "service_fee": float(self.service_fee),
            "tax": float(self.tax),
            "total": float(self.total),
            "currency": self.currency,
        }


def calculate_price_breakdown(
    price_per_night: Number,
    nights: int,
    platform_fee_rate: Number = "0.15",
    tax_rate: Number = "0.10",
    cleaning_fee: Number = 0,
    currency: str = "USD",
) -> PriceBreakdown:
    """Compute the guest-facing price of a stay.

    The service fee is charged on the accommodation subtotal; tax is
    charged on subtotal, cleaning fee and service fee together.
    """
    if nights <= 0:
        raise ValueError("Number of nights must be positive")
    nightly = to_decimal(price_per_night)
    if nightly <= 0:
        raise ValueError("Price per night must be positive")
    cleaning = round_money(cleaning_fee, currency)
    if cleaning < 0:
        raise ValueError("Cleaning fee cannot be negative")

    base = round_money(nightly * nights, currency)
    service = round_money(base * to_decimal(platform_fee_rate), currency)
    tax = round_money((base + cleaning + service) * to_decimal(tax_rate), currency)
    total = base + cleaning + service + tax
    return PriceBreakdown(
        nights=nights,
        price_per_night=round_money(nightly, currency),
        base_price=base,
        cleaning_fee=cleaning,
        service_fee=service,
        tax=tax,
        total=total,
        currency=currency.upper(),
    )


def validate_stripe_charge(amount: int, currency: str) -> None:
    """Raise ``ValueError`` unless Stripe would accept this charge."""
    code = currency.upper()
    if code not in STRIPE_MIN_CHARGE:
        raise ValueError(f"Currency {currency} is not supported for card payments")
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError("Amount must be an integer number of minor units")
    if amount <= 0:
        raise ValueError("Amount must be positive")
    minimum = STRIPE_MIN_CHARGE[code]
    if amount < minimum:
        raise ValueError(f"Amount must be at least {minimum} minor units for {code}")
    if amount > STRIPE_MAX_CHARGE:
        raise ValueError(f"Amount exceeds maximum of {STRIPE_MAX_CHARGE} minor units")


def validate_platform_fee(
    charge_amount: int, fee_amount: int, connected_account_id: Optional[str]
) -> None:
    if fee_amount < 0:
        raise ValueError("Platform fee cannot be negative")
    if fee_amount > 0 and not connected_account_id:
        raise ValueError("Platform fee requires a connected account")
    if fee_amount > charge_amount:
        raise ValueError("Platform fee cannot exceed the charge amount")


def validate_refund(refund_amount: int, original_amount: int) -> None:
    if refund_amount <= 0:
        raise ValueError("Refund amount must be positive")
    if refund_amount > original_amount:
        raise ValueError("Refund amount cannot exceed the original charge")


@dataclass(frozen=True)
class RefundDecision:
    amount: Decimal
    reason: str


def calculate_refund(
    total: Number,
    accommodation: Number,
    policy: str,
    hours_until_check_in: float,
    cancelled_by: str = "guest",
    currency: str = "USD",
) -> RefundDecision:
    """Work out how much of a paid booking is returned on cancellation.

    Host and admin cancellations are always refunded in full.  For
    guests the listing's policy applies; "half" always means half of
    the accommodation subtotal, never of fees or taxes.
    """
    total_d = round_money(total, currency)
    half = round_money(to_decimal(accommodation) / 2, currency)
    zero = round_money(0, currency)

    if cancelled_by in ("host", "admin"):
        return RefundDecision(total_d, f"Cancelled by {cancelled_by}")
    if hours_until_check_in < 0:
        return RefundDecision(zero, "Cancelled after check-in")

    if policy == "flexible":
        if hours_until_check_in >= 24:
            return RefundDecision(total_d, "Full refund: cancelled at least 24 hours before check-in")
        return RefundDecision(half, "Partial refund: cancelled less than 24 hours before check-in")
    if policy == "moderate":
        if hours_until_check_in >= 5 * 24:
            return RefundDecision(total_d, "Full refund: cancelled at least 5 days before check-in")
        if hours_until_check_in >= 2 * 24:
            return RefundDecision(half, "Partial refund: cancelled 2 to 5 days before check-in")
        return RefundDecision(zero, "No refund: cancelled less than 2 days before check-in")
    if policy == "strict":
        if hours_until_check_in >= 14 * 24:
            return RefundDecision(total_d, "Full refund: cancelled at least 14 days before check-in")
        if hours_until_check_in >= 7 * 24:
            return RefundDecision(half, "Partial refund: cancelled 7 to 14 days before check-in")
        return RefundDecision(zero, "No refund: cancelled less than 7 days before check-in")
    if policy == "super_strict":
        if hours_until_check_in >= 14 * 24:
            return RefundDecision(half, "Partial refund: cancelled at least 14 days before check-in")
        return RefundDecision(zero, "No refund: cancelled less than 14 days before check-in")
    raise ValueError(f"Unknown cancellation policy: {policy}")

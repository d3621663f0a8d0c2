"""
Fee Calculator

Splits a ticket purchase between buyer, host, platform and payment processor.
Each gateway settles with exactly one model:

- PayPal: percentage + fixed processor fee taken out of the host's subtotal.
- Stripe: the platform fee is charged as the PaymentIntent's
  application_fee_amount and Stripe transfers the remainder to the host's
  connected account.

All arithmetic is Decimal. Values are only rounded to cents by rounded() and
to_cents(), at presentation and settlement boundaries.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from boxoffice.config import get_settings
from boxoffice.errors import UnsupportedCurrencyError
from boxoffice.models import Gateway

CENT = Decimal("0.01")

# Currencies whose minor unit is not a hundredth (zero- and three-decimal).
# Amounts are held and settled in cents, so these cannot be priced.
NON_CENT_CURRENCIES = frozenset({
    "bif", "clp", "djf", "gnf", "isk", "jpy", "kmf", "krw", "mga", "pyg",
    "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
    "bhd", "jod", "kwd", "omr", "tnd",
})


def to_decimal(value) -> Decimal:
    """Coerce a price to Decimal. Raises ValueError for non-numeric input."""
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats keep their printed value instead of binary noise
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def ensure_supported_currency(currency: str) -> None:
    if currency.lower() in NON_CENT_CURRENCIES:
        raise UnsupportedCurrencyError(currency)


def to_cents(amount: Decimal, currency: str = "usd") -> int:
    """Convert a currency amount to the integer minor units gateways expect."""
    ensure_supported_currency(currency)
    return int(quantize_money(amount) * 100)


def from_cents(cents: int, currency: str = "usd") -> Decimal:
    ensure_supported_currency(currency)
    return (Decimal(cents) / 100).quantize(CENT)


@dataclass(frozen=True)
class FeeBreakdown:
    gateway: Gateway
    unit_price: Decimal
    quantity: int
    subtotal: Decimal
    platform_fee: Decimal
    buyer_total: Decimal
    gateway_fee: Decimal
    host_receives: Decimal
    application_fee: Optional[Decimal] = None  # Stripe only

    def rounded(self) -> "FeeBreakdown":
        """Round to cents, deriving host_receives so the cents still add up."""
        subtotal = quantize_money(self.subtotal)
        platform_fee = quantize_money(self.platform_fee)
        buyer_total = subtotal + platform_fee
        gateway_fee = quantize_money(self.gateway_fee)
        host_receives = buyer_total - platform_fee - gateway_fee
        application_fee = (
            quantize_money(self.application_fee) if self.application_fee is not None else None
        )
        return FeeBreakdown(
            gateway=self.gateway,
            unit_price=quantize_money(self.unit_price),
            quantity=self.quantity,
            subtotal=subtotal,
            platform_fee=platform_fee,
            buyer_total=buyer_total,
            gateway_fee=gateway_fee,
            host_receives=host_receives,
            application_fee=application_fee,
        )


def compute_fees(unit_price, quantity: int, gateway: Gateway = Gateway.PAYPAL) -> FeeBreakdown:
    """
    Compute the money split for `quantity` tickets at `unit_price`.

    Raises ValueError for a non-numeric, non-finite or non-positive price and
    for a non-positive quantity.
    """
    price = to_decimal(unit_price)
    if not price.is_finite() or price <= 0:
        raise ValueError("Unit price must be a positive finite amount")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValueError("Quantity must be a positive integer")

    settings = get_settings()

    subtotal = price * quantity
    platform_fee = to_decimal(settings.platform_fee_per_ticket) * quantity
    buyer_total = subtotal + platform_fee

    if gateway == Gateway.STRIPE:
        # Stripe's own processing fee comes out of the platform balance,
        # outside the buyer/host split.
        return FeeBreakdown(
            gateway=gateway,
            unit_price=price,
            quantity=quantity,
            subtotal=subtotal,
            platform_fee=platform_fee,
            buyer_total=buyer_total,
            gateway_fee=Decimal("0"),
            host_receives=buyer_total - platform_fee,
            application_fee=platform_fee,
        )

    gateway_fee = (
        subtotal * to_decimal(settings.paypal_fee_percent)
        + to_decimal(settings.paypal_fee_fixed)
    )
    return FeeBreakdown(
        gateway=gateway,
        unit_price=price,
        quantity=quantity,
        subtotal=subtotal,
        platform_fee=platform_fee,
        buyer_total=buyer_total,
        gateway_fee=gateway_fee,
        host_receives=subtotal - gateway_fee,
    )

"""
Stripe Connect payments

Creates server-priced PaymentIntents as destination charges: the buyer pays
the full buyer total, the platform fee is taken as application_fee_amount,
and Stripe transfers the remainder to the host's connected account.

Also converts `payment_intent.succeeded` webhook payloads into gateway
confirmations for reconciliation.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

import stripe
from sqlalchemy.orm import Session

from boxoffice.config import get_settings
from boxoffice.errors import GatewayError, GatewayNotConnectedError, WrongGatewayError
from boxoffice.models import Gateway
from boxoffice.services.fees import (
    FeeBreakdown,
    compute_fees,
    ensure_supported_currency,
    from_cents,
    to_cents,
)
from boxoffice.services.reconciliation import Buyer, GatewayConfirmation
from boxoffice.services.ticket_store import TicketStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentIntentQuote:
    payment_intent_id: str
    client_secret: str
    fees: FeeBreakdown


@dataclass(frozen=True)
class StripePurchase:
    """What a succeeded PaymentIntent tells us about the purchase."""

    confirmation: GatewayConfirmation
    event_id: int
    buyer: Buyer
    quantity: int


def stripe_field(obj, name: str, default=None):
    """Read a field from a StripeObject or a raw webhook dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def configure_stripe() -> None:
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise GatewayError("Stripe not configured")
    stripe.api_key = settings.stripe_secret_key
    stripe.max_network_retries = 2
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.gateway_timeout_seconds)


def create_payment_intent(
    db: Session,
    event_id: int,
    quantity: int,
    buyer: Buyer,
) -> PaymentIntentQuote:
    """
    Create a PaymentIntent whose amount is derived from the event's price.

    Raises:
        EventNotFoundError: If the event does not exist.
        WrongGatewayError: If the event is not sold through Stripe.
        UnsupportedCurrencyError: If the event currency has no cents.
        GatewayNotConnectedError: If the host has no connected account yet.
        SoldOutError: If the order exceeds remaining capacity.
        GatewayError: If Stripe is unconfigured, unreachable or rejects the call.
    """
    store = TicketStore(db)
    event = store.get_event(event_id)
    if event.payment_gateway != Gateway.STRIPE:
        raise WrongGatewayError(event_id, Gateway.STRIPE)
    if not event.gateway_account_id:
        raise GatewayNotConnectedError(event_id)
    ensure_supported_currency(event.currency)
    store.ensure_capacity(event, quantity)

    fees = compute_fees(event.ticket_price, quantity, gateway=Gateway.STRIPE).rounded()

    configure_stripe()
    try:
        intent = stripe.PaymentIntent.create(
            amount=to_cents(fees.buyer_total, event.currency),
            currency=event.currency,
            application_fee_amount=to_cents(fees.application_fee, event.currency),
            transfer_data={"destination": event.gateway_account_id},
            receipt_email=buyer.email,
            metadata={
                "event_id": str(event.id),
                "quantity": str(quantity),
                "buyer_name": buyer.name,
                "buyer_email": buyer.email,
            },
        )
    except stripe.StripeError as e:
        logger.error("Stripe PaymentIntent creation failed for event %s: %s", event_id, e)
        raise GatewayError(str(getattr(e, "user_message", None) or "Payment could not be started")) from e

    return PaymentIntentQuote(
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        fees=fees,
    )


def construct_webhook_event(payload: bytes, signature: Optional[str]):
    """
    Verify and parse a webhook body.

    Raises ValueError for malformed payloads and
    stripe.SignatureVerificationError for bad signatures.
    """
    settings = get_settings()
    if settings.stripe_webhook_secret:
        if not signature:
            raise stripe.SignatureVerificationError("Missing Stripe-Signature header", signature)
        return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
    # For development without webhook secret
    return json.loads(payload)


def purchase_from_payment_intent(intent) -> Optional[StripePurchase]:
    """Build the reconciliation inputs from a succeeded PaymentIntent.

    Returns None for intents this service did not create.
    """
    metadata = stripe_field(intent, "metadata") or {}
    event_id = stripe_field(metadata, "event_id")
    if not event_id:
        return None

    amount = stripe_field(intent, "amount_received")
    if amount is None:
        amount = stripe_field(intent, "amount", 0)
    currency = stripe_field(intent, "currency", "usd")
    event_id = int(event_id)
    quantity = int(stripe_field(metadata, "quantity", 1))

    confirmation = GatewayConfirmation(
        gateway=Gateway.STRIPE,
        transaction_id=stripe_field(intent, "id"),
        amount_captured=from_cents(int(amount), currency),
        currency=currency,
        event_id=event_id,
        quantity=quantity,
    )
    return StripePurchase(
        confirmation=confirmation,
        event_id=event_id,
        buyer=Buyer(
            name=stripe_field(metadata, "buyer_name", ""),
            email=stripe_field(metadata, "buyer_email", ""),
        ),
        quantity=quantity,
    )

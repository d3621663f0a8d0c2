import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Header
from sqlalchemy.orm import Session
import stripe

from boxoffice.database import get_db
from boxoffice.errors import (
    AmountMismatchError,
    EventNotFoundError,
    OrderMismatchError,
    UnsupportedCurrencyError,
    WrongGatewayError,
)
from boxoffice.routers.payments import background_email_scheduler
from boxoffice.services.reconciliation import PaymentReconciler
from boxoffice.services.stripe_payments import (
    construct_webhook_event,
    purchase_from_payment_intent,
    stripe_field,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
):
    """Handle Stripe webhook events.

    Retried deliveries are safe: reconciliation is keyed on the PaymentIntent
    id. Store and gateway failures surface as 503 so Stripe retries them.
    """
    payload = await request.body()

    try:
        event = construct_webhook_event(payload, stripe_signature)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    event_type = stripe_field(event, "type")
    event_data = stripe_field(stripe_field(event, "data"), "object")

    if event_type == "payment_intent.succeeded":
        return handle_payment_succeeded(event_data, db, background_tasks)

    return {"status": "ignored"}


def handle_payment_succeeded(intent, db: Session, background_tasks: BackgroundTasks) -> dict:
    """Issue the ticket for a succeeded PaymentIntent."""
    try:
        purchase = purchase_from_payment_intent(intent)
    except (TypeError, ValueError) as e:
        logger.error("Rejected PaymentIntent %s with unusable metadata: %s", stripe_field(intent, "id"), e)
        return {"status": "rejected", "error": "INVALID_METADATA"}
    except UnsupportedCurrencyError as e:
        logger.error("Rejected PaymentIntent %s: %s", stripe_field(intent, "id"), e)
        return {"status": "rejected", "error": e.code.value}
    if purchase is None:
        logger.info("Ignoring PaymentIntent %s without ticket metadata", stripe_field(intent, "id"))
        return {"status": "ignored"}

    reconciler = PaymentReconciler(db, schedule_email=background_email_scheduler(background_tasks))
    try:
        issued = reconciler.reconcile(
            purchase.confirmation,
            event_id=purchase.event_id,
            buyer=purchase.buyer,
            quantity=purchase.quantity,
        )
    except (AmountMismatchError, EventNotFoundError, OrderMismatchError, WrongGatewayError) as e:
        # Retrying cannot fix these; acknowledge so Stripe stops redelivering
        logger.error(
            "Rejected PaymentIntent %s for event %s: %s",
            purchase.confirmation.transaction_id, purchase.event_id, e,
        )
        return {"status": "rejected", "error": e.code.value}
    except ValueError as e:
        logger.error(
            "Rejected PaymentIntent %s with unusable metadata: %s",
            purchase.confirmation.transaction_id, e,
        )
        return {"status": "rejected", "error": "INVALID_METADATA"}

    return {
        "status": "success",
        "created": issued.created,
        "ticket_code": issued.ticket.code,
    }

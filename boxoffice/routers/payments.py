from decimal import Decimal

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from boxoffice.config import get_settings
from boxoffice.database import get_db
from boxoffice.models import Gateway
from boxoffice.rate_limit import limiter
from boxoffice.schemas import (
    FeeBreakdownResponse,
    IssuedTicketResponse,
    PayPalConfirmRequest,
    PayPalOrderRequest,
    PayPalOrderResponse,
    StripeIntentRequest,
    StripeIntentResponse,
    TicketResponse,
)
from boxoffice.services.email import deliver_ticket_email
from boxoffice.services.fees import compute_fees
from boxoffice.services.paypal import PayPalClient, create_paypal_order
from boxoffice.services.reconciliation import Buyer, IssuedTicket, PaymentReconciler
from boxoffice.services.stripe_payments import create_payment_intent
from boxoffice.services.ticket_codes import qr_payload
from boxoffice.services.ticket_store import TicketStore

router = APIRouter(prefix="/payments", tags=["payments"])


def background_email_scheduler(background_tasks: BackgroundTasks):
    """Queue ticket emails to run after the response is sent."""

    def _schedule(code: str):
        background_tasks.add_task(deliver_ticket_email, code)

    return _schedule


def issued_ticket_response(issued: IssuedTicket) -> IssuedTicketResponse:
    return IssuedTicketResponse(
        created=issued.created,
        qr_payload=qr_payload(issued.ticket.code),
        ticket=TicketResponse.model_validate(issued.ticket),
    )


@router.get("/fees", response_model=FeeBreakdownResponse)
def quote_fees(
    unit_price: Decimal = Query(..., gt=0),
    quantity: int = Query(default=1, ge=1, le=50),
    gateway: Gateway = Gateway.PAYPAL,
):
    """Fee split for a prospective purchase, rounded to cents."""
    return FeeBreakdownResponse.model_validate(
        compute_fees(unit_price, quantity, gateway=gateway).rounded()
    )


@router.get("/quote", response_model=FeeBreakdownResponse)
def quote_event(
    event_id: int,
    quantity: int = Query(default=1, ge=1, le=50),
    db: Session = Depends(get_db),
):
    """Server-side price for an event order, checked against capacity before any charge."""
    store = TicketStore(db)
    event = store.get_event(event_id)
    store.ensure_capacity(event, quantity)
    fees = compute_fees(event.ticket_price, quantity, gateway=event.payment_gateway)
    return FeeBreakdownResponse.model_validate(fees.rounded())


@router.post("/stripe/intent", response_model=StripeIntentResponse)
@limiter.limit("20/minute")
def create_stripe_intent(
    request: Request,
    purchase: StripeIntentRequest,
    db: Session = Depends(get_db),
):
    """Create a PaymentIntent priced server-side from the event."""
    quote = create_payment_intent(
        db,
        event_id=purchase.event_id,
        quantity=purchase.quantity,
        buyer=Buyer(name=purchase.buyer_name, email=purchase.buyer_email),
    )
    return StripeIntentResponse(
        payment_intent_id=quote.payment_intent_id,
        client_secret=quote.client_secret,
        publishable_key=get_settings().stripe_publishable_key or None,
        fees=FeeBreakdownResponse.model_validate(quote.fees),
    )


@router.post("/paypal/order", response_model=PayPalOrderResponse)
@limiter.limit("20/minute")
def create_paypal_checkout_order(
    request: Request,
    purchase: PayPalOrderRequest,
    db: Session = Depends(get_db),
):
    """Create a PayPal order priced server-side and bound to the event."""
    quote = create_paypal_order(
        db,
        event_id=purchase.event_id,
        quantity=purchase.quantity,
        buyer=Buyer(name=purchase.buyer_name, email=purchase.buyer_email),
    )
    return PayPalOrderResponse(
        order_id=quote.order_id,
        status=quote.status,
        approve_url=quote.approve_url,
        fees=FeeBreakdownResponse.model_validate(quote.fees),
    )


@router.post("/paypal/confirm", response_model=IssuedTicketResponse)
@limiter.limit("20/minute")
def confirm_paypal_order(
    request: Request,
    purchase: PayPalConfirmRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Issue the ticket for a captured PayPal order. Safe to call repeatedly."""
    confirmation = PayPalClient().confirm_order(purchase.order_id)

    reconciler = PaymentReconciler(db, schedule_email=background_email_scheduler(background_tasks))
    issued = reconciler.reconcile(
        confirmation,
        event_id=purchase.event_id,
        buyer=Buyer(name=purchase.buyer_name, email=purchase.buyer_email),
        quantity=purchase.quantity,
    )
    return issued_ticket_response(issued)

"""
Payment Reconciliation

Turns a gateway's payment confirmation into exactly one issued ticket.

- Idempotent on the gateway transaction id: retried webhooks or confirm calls
  return the ticket issued the first time.
- The expected total is recomputed from the event's price; the amount the
  client claims is never trusted.
- Email delivery is scheduled after the ticket is committed and cannot undo it.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.orm import Session

from boxoffice.config import get_settings
from boxoffice.errors import (
    AmountMismatchError,
    DuplicateCodeError,
    DuplicateTransactionError,
    OrderMismatchError,
    PersistenceError,
    WrongGatewayError,
)
from boxoffice.models import Gateway, PaymentStatus, Ticket
from boxoffice.services.email import dispatch_ticket_email
from boxoffice.services.fees import FeeBreakdown, compute_fees, quantize_money, to_decimal
from boxoffice.services.ticket_codes import generate_ticket_code
from boxoffice.services.ticket_store import NewTicket, TicketStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayConfirmation:
    """A gateway's signal that a charge succeeded."""

    gateway: Gateway
    transaction_id: str
    amount_captured: Decimal
    currency: str
    # Order the gateway recorded at checkout; None when it carries no binding
    event_id: Optional[int] = None
    quantity: Optional[int] = None


@dataclass(frozen=True)
class Buyer:
    name: str
    email: str


@dataclass(frozen=True)
class IssuedTicket:
    ticket: Ticket
    created: bool  # False when an earlier delivery already issued it
    fees: Optional[FeeBreakdown] = None


class PaymentReconciler:
    """Issues tickets for confirmed payments."""

    def __init__(
        self,
        db: Session,
        schedule_email: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.store = TicketStore(db)
        self.schedule_email = schedule_email or dispatch_ticket_email

    def reconcile(
        self,
        confirmation: GatewayConfirmation,
        event_id: int,
        buyer: Buyer,
        quantity: int,
    ) -> IssuedTicket:
        """
        Issue the ticket for a confirmed payment.

        Raises:
            EventNotFoundError: If the event does not exist.
            AmountMismatchError: If the captured amount or currency differs
                from the server-side total.
            OrderMismatchError: If the gateway recorded a different event or
                quantity for this payment.
            WrongGatewayError: If the event is not sold through the
                confirming gateway.
            PersistenceError: If the store fails or no unique code could be
                allocated. Safe to retry.
        """
        self._verify_order(confirmation, event_id, quantity)

        existing = self.store.find_by_transaction(confirmation.transaction_id)
        if existing is not None:
            logger.info(
                "Transaction %s already reconciled as %s",
                confirmation.transaction_id, existing.code,
            )
            self._resend_if_unsent(existing)
            return IssuedTicket(ticket=existing, created=False)

        event = self.store.get_event(event_id)
        if confirmation.gateway != event.payment_gateway:
            logger.warning(
                "Transaction %s confirmed by %s for event %s sold through %s",
                confirmation.transaction_id, confirmation.gateway.value,
                event.id, event.payment_gateway.value,
            )
            raise WrongGatewayError(event.id, confirmation.gateway)
        fees = compute_fees(event.ticket_price, quantity, gateway=confirmation.gateway)
        self._verify_amount(confirmation, fees, event.currency)

        settings = get_settings()
        rounded = fees.rounded()
        ticket = None
        for attempt in range(1, settings.ticket_code_attempts + 1):
            record = NewTicket(
                event_id=event.id,
                code=generate_ticket_code(),
                buyer_name=buyer.name,
                buyer_email=buyer.email,
                quantity=quantity,
                unit_price=rounded.unit_price,
                platform_fee=rounded.platform_fee,
                total_paid=rounded.buyer_total,
                payment_gateway=confirmation.gateway,
                gateway_transaction_id=confirmation.transaction_id,
                payment_status=PaymentStatus.COMPLETED,
            )
            try:
                ticket = self.store.issue(record)
                break
            except DuplicateCodeError:
                logger.warning("Ticket code collision on attempt %d, regenerating", attempt)
            except DuplicateTransactionError as e:
                # A concurrent delivery of the same payment won the insert
                logger.info(
                    "Transaction %s reconciled concurrently as %s",
                    confirmation.transaction_id, e.ticket.code,
                )
                return IssuedTicket(ticket=e.ticket, created=False)

        if ticket is None:
            logger.error(
                "Could not allocate a unique ticket code for transaction %s",
                confirmation.transaction_id,
            )
            raise PersistenceError("Could not allocate a ticket code, please retry")

        logger.info(
            "Issued ticket %s (event %s, qty %d, paid %s %s)",
            ticket.code, event.id, quantity, rounded.buyer_total, event.currency,
        )
        self._schedule_email(ticket.code)
        return IssuedTicket(ticket=ticket, created=True, fees=rounded)

    def _verify_order(
        self,
        confirmation: GatewayConfirmation,
        event_id: int,
        quantity: int,
    ) -> None:
        if confirmation.event_id is not None and confirmation.event_id != event_id:
            logger.warning(
                "Transaction %s was paid for event %s, claimed for event %s",
                confirmation.transaction_id, confirmation.event_id, event_id,
            )
            raise OrderMismatchError("Payment was made for a different event")
        if confirmation.quantity is not None and confirmation.quantity != quantity:
            logger.warning(
                "Transaction %s was paid for %s tickets, claimed for %s",
                confirmation.transaction_id, confirmation.quantity, quantity,
            )
            raise OrderMismatchError("Payment was made for a different quantity")

    def _verify_amount(
        self,
        confirmation: GatewayConfirmation,
        fees: FeeBreakdown,
        currency: str,
    ) -> None:
        settings = get_settings()
        expected = quantize_money(fees.buyer_total)
        captured = to_decimal(confirmation.amount_captured)

        if confirmation.currency.lower() != currency.lower():
            logger.warning(
                "Transaction %s captured in %s, event priced in %s",
                confirmation.transaction_id, confirmation.currency, currency,
            )
            raise AmountMismatchError(expected, captured, confirmation.currency)

        if abs(captured - expected) > to_decimal(settings.amount_tolerance):
            logger.warning(
                "Transaction %s captured %s, expected %s",
                confirmation.transaction_id, captured, expected,
            )
            raise AmountMismatchError(expected, captured, confirmation.currency)

    def _resend_if_unsent(self, ticket: Ticket) -> None:
        if not ticket.email_sent:
            self._schedule_email(ticket.code)

    def _schedule_email(self, code: str) -> None:
        try:
            self.schedule_email(code)
        except Exception:
            logger.exception("Could not schedule ticket email for %s", code)

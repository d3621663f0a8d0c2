"""
Ticket Lifecycle Store

Authoritative ticket state on top of the SQLAlchemy session. The store owns
the transition rules: tickets are inserted once, and the only in-place
mutations are the one-way check-in flip and the email-sent flag.

Check-in is a single conditional UPDATE so the database, not the application
process, decides which of several concurrent scanners wins.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from boxoffice.errors import (
    AlreadyCheckedInError,
    DuplicateCodeError,
    DuplicateTransactionError,
    EventNotFoundError,
    InvalidCheckinTimeError,
    PersistenceError,
    SoldOutError,
    TicketNotFoundError,
    TicketNotPaidError,
)
from boxoffice.models import Event, Gateway, PaymentStatus, Ticket, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NewTicket:
    event_id: int
    code: str
    buyer_name: str
    buyer_email: str
    quantity: int
    unit_price: Decimal
    platform_fee: Decimal
    total_paid: Decimal
    payment_gateway: Gateway
    gateway_transaction_id: str
    payment_status: PaymentStatus = PaymentStatus.COMPLETED


@dataclass(frozen=True)
class EventStats:
    event_id: int
    tickets_sold: int  # admissions, summed over order quantities
    orders: int
    revenue: Decimal  # unit_price x quantity, excluding platform fees
    platform_fees: Decimal
    checked_in: int  # admissions
    checked_in_orders: int
    capacity: Optional[int]
    remaining: Optional[int]  # None = unlimited
    emails_pending: int


class TicketStore:
    """Ticket persistence and lifecycle transitions."""

    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _store_errors(self, action: str):
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Ticket store failure during %s", action)
            raise PersistenceError() from exc

    # ---------- reads ----------

    def get_event(self, event_id: int) -> Event:
        with self._store_errors("event lookup"):
            event = self.db.get(Event, event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    def get_by_code(self, code: str) -> Optional[Ticket]:
        with self._store_errors("code lookup"):
            return self.db.query(Ticket).filter(Ticket.code == code).first()

    def find_by_code(self, code: str) -> Ticket:
        ticket = self.get_by_code(code)
        if ticket is None:
            raise TicketNotFoundError(code)
        return ticket

    def find_by_transaction(self, transaction_id: str) -> Optional[Ticket]:
        with self._store_errors("transaction lookup"):
            return (
                self.db.query(Ticket)
                .filter(Ticket.gateway_transaction_id == transaction_id)
                .first()
            )

    def list_by_event(self, event_id: int) -> list[Ticket]:
        with self._store_errors("event listing"):
            return (
                self.db.query(Ticket)
                .filter(Ticket.event_id == event_id)
                .order_by(Ticket.created_at.desc(), Ticket.id.desc())
                .all()
            )

    def tickets_sold(self, event_id: int) -> int:
        with self._store_errors("sold count"):
            total = (
                self.db.query(func.coalesce(func.sum(Ticket.quantity), 0))
                .filter(
                    Ticket.event_id == event_id,
                    Ticket.payment_status == PaymentStatus.COMPLETED,
                )
                .scalar()
            )
        return int(total)

    def ensure_capacity(self, event: Event, quantity: int) -> None:
        """Raise SoldOutError if `quantity` more admissions would exceed capacity."""
        if event.capacity is None:
            return
        remaining = event.capacity - self.tickets_sold(event.id)
        if quantity > remaining:
            raise SoldOutError(event.id, max(remaining, 0))

    def event_stats(self, event: Event) -> EventStats:
        """Dashboard aggregation over one snapshot of the event's tickets."""
        tickets = self.list_by_event(event.id)
        paid = [t for t in tickets if t.payment_status == PaymentStatus.COMPLETED]

        sold = sum(t.quantity for t in paid)
        revenue = sum((Decimal(t.unit_price) * t.quantity for t in paid), Decimal("0"))
        platform_fees = sum((Decimal(t.platform_fee) for t in paid), Decimal("0"))
        admitted = [t for t in paid if t.checked_in]

        remaining = None
        if event.capacity is not None:
            remaining = max(event.capacity - sold, 0)

        return EventStats(
            event_id=event.id,
            tickets_sold=sold,
            orders=len(paid),
            revenue=revenue,
            platform_fees=platform_fees,
            checked_in=sum(t.quantity for t in admitted),
            checked_in_orders=len(admitted),
            capacity=event.capacity,
            remaining=remaining,
            emails_pending=sum(1 for t in paid if not t.email_sent),
        )

    # ---------- writes ----------

    def issue(self, record: NewTicket) -> Ticket:
        """
        Insert a new ticket.

        Raises DuplicateTransactionError if the gateway transaction was already
        reconciled, DuplicateCodeError if the code collided, PersistenceError
        for any other store failure.
        """
        ticket = Ticket(
            event_id=record.event_id,
            code=record.code,
            buyer_name=record.buyer_name,
            buyer_email=record.buyer_email,
            quantity=record.quantity,
            unit_price=record.unit_price,
            platform_fee=record.platform_fee,
            total_paid=record.total_paid,
            payment_gateway=record.payment_gateway,
            gateway_transaction_id=record.gateway_transaction_id,
            payment_status=record.payment_status,
            checked_in=False,
            checked_in_at=None,
            email_sent=False,
        )
        self.db.add(ticket)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            existing = self.find_by_transaction(record.gateway_transaction_id)
            if existing is not None:
                raise DuplicateTransactionError(existing) from exc
            if self.get_by_code(record.code) is not None:
                raise DuplicateCodeError(record.code) from exc
            logger.exception("Ticket insert rejected for event %s", record.event_id)
            raise PersistenceError() from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Ticket insert failed for event %s", record.event_id)
            raise PersistenceError() from exc

        self.db.refresh(ticket)
        return ticket

    def mark_checked_in(self, code: str, at: Optional[datetime] = None) -> Ticket:
        """
        Atomically flip checked_in from false to true.

        Raises AlreadyCheckedInError when another scan already won,
        TicketNotFoundError for unknown codes, TicketNotPaidError when the
        payment is not completed and InvalidCheckinTimeError when `at` is
        earlier than the ticket's issuance.
        """
        if at is None:
            at = utcnow()

        with self._store_errors("check-in"):
            updated = (
                self.db.query(Ticket)
                .filter(
                    Ticket.code == code,
                    Ticket.checked_in.is_(False),
                    Ticket.payment_status == PaymentStatus.COMPLETED,
                    Ticket.created_at <= at,
                )
                .update(
                    {Ticket.checked_in: True, Ticket.checked_in_at: at},
                    synchronize_session=False,
                )
            )
            self.db.commit()

        # commit() expired the identity map, so this re-reads the row
        ticket = self.get_by_code(code)
        if ticket is None:
            raise TicketNotFoundError(code)
        if updated == 1:
            return ticket
        if ticket.checked_in:
            raise AlreadyCheckedInError(code, ticket.checked_in_at)
        if ticket.payment_status != PaymentStatus.COMPLETED:
            raise TicketNotPaidError(code)
        raise InvalidCheckinTimeError(code)

    def mark_email_sent(self, code: str) -> None:
        with self._store_errors("email flag"):
            self.db.query(Ticket).filter(Ticket.code == code).update(
                {Ticket.email_sent: True}, synchronize_session=False
            )
            self.db.commit()

    def unsent_ticket_codes(self, limit: int = 100) -> list[str]:
        """Codes of paid tickets whose confirmation email never went out."""
        with self._store_errors("unsent email listing"):
            rows = (
                self.db.query(Ticket.code)
                .filter(
                    Ticket.email_sent.is_(False),
                    Ticket.payment_status == PaymentStatus.COMPLETED,
                )
                .order_by(Ticket.created_at)
                .limit(limit)
                .all()
            )
        return [row[0] for row in rows]

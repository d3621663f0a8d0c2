"""Tests for ticket persistence and lifecycle transitions."""

from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

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
from boxoffice.models import Gateway, PaymentStatus
from boxoffice.services.ticket_codes import generate_ticket_code
from boxoffice.services.ticket_store import NewTicket, TicketStore


def _record(event, **overrides):
    data = {
        "event_id": event.id,
        "code": generate_ticket_code(),
        "buyer_name": "Ada",
        "buyer_email": "ada@example.com",
        "quantity": 2,
        "unit_price": Decimal("25.00"),
        "platform_fee": Decimal("2.00"),
        "total_paid": Decimal("52.00"),
        "payment_gateway": Gateway.STRIPE,
        "gateway_transaction_id": "pi_store_1",
    }
    data.update(overrides)
    return NewTicket(**data)


class TestIssue:
    def test_issue_persists_ticket(self, db, create_event):
        event = create_event()
        ticket = TicketStore(db).issue(_record(event))
        assert ticket.id is not None
        assert ticket.checked_in is False
        assert ticket.checked_in_at is None
        assert ticket.email_sent is False
        assert ticket.payment_status == PaymentStatus.COMPLETED
        assert ticket.total_paid == Decimal("52.00")

    def test_duplicate_transaction_returns_existing(self, db, create_event):
        event = create_event()
        store = TicketStore(db)
        first = store.issue(_record(event))

        with pytest.raises(DuplicateTransactionError) as exc_info:
            store.issue(_record(event))
        assert exc_info.value.ticket.code == first.code

    def test_duplicate_code(self, db, create_event):
        event = create_event()
        store = TicketStore(db)
        first = store.issue(_record(event))

        with pytest.raises(DuplicateCodeError):
            store.issue(_record(event, code=first.code, gateway_transaction_id="pi_other"))

    def test_store_failure_becomes_persistence_error(self):
        session = MagicMock()
        session.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        store = TicketStore(session)

        with pytest.raises(PersistenceError) as exc_info:
            store.issue(_record(MagicMock(id=1)))
        assert exc_info.value.retryable is True
        session.rollback.assert_called_once()


class TestLookups:
    def test_find_by_code(self, db, create_ticket):
        ticket = create_ticket()
        assert TicketStore(db).find_by_code(ticket.code).id == ticket.id

    def test_find_by_code_unknown(self, db):
        with pytest.raises(TicketNotFoundError):
            TicketStore(db).find_by_code("TIX-1700000000000-NOPE00000")

    def test_get_event_unknown(self, db):
        with pytest.raises(EventNotFoundError):
            TicketStore(db).get_event(9999)

    def test_read_failure_becomes_persistence_error(self):
        session = MagicMock()
        session.query.side_effect = OperationalError("SELECT", {}, Exception("gone"))
        with pytest.raises(PersistenceError):
            TicketStore(session).get_by_code("TIX-1700000000000-ABCDEF123")

    def test_list_by_event_only_that_event(self, db, create_event, create_ticket):
        event = create_event()
        other = create_event(name="Other")
        create_ticket(event=event)
        create_ticket(event=event)
        create_ticket(event=other)

        tickets = TicketStore(db).list_by_event(event.id)
        assert len(tickets) == 2
        assert all(t.event_id == event.id for t in tickets)


class TestCheckIn:
    def test_mark_checked_in(self, db, create_ticket):
        ticket = create_ticket()
        at = datetime(2099, 5, 1, 20, 0, 0)
        updated = TicketStore(db).mark_checked_in(ticket.code, at=at)
        assert updated.checked_in is True
        assert updated.checked_in_at == at

    def test_second_check_in_fails(self, db, create_ticket):
        ticket = create_ticket()
        store = TicketStore(db)
        first_at = datetime(2099, 5, 1, 20, 0, 0)
        store.mark_checked_in(ticket.code, at=first_at)

        with pytest.raises(AlreadyCheckedInError) as exc_info:
            store.mark_checked_in(ticket.code, at=datetime(2099, 5, 1, 21, 0, 0))
        assert exc_info.value.checked_in_at == first_at
        assert store.find_by_code(ticket.code).checked_in_at == first_at

    def test_two_sessions_one_success(self, db, create_ticket):
        ticket = create_ticket()
        code = ticket.code
        other_session = sessionmaker(bind=db.get_bind())()
        outcomes = []
        try:
            for store in (TicketStore(db), TicketStore(other_session)):
                try:
                    store.mark_checked_in(code)
                    outcomes.append("success")
                except AlreadyCheckedInError:
                    outcomes.append("already")
        finally:
            other_session.close()

        assert outcomes == ["success", "already"]

    def test_unknown_code(self, db):
        with pytest.raises(TicketNotFoundError):
            TicketStore(db).mark_checked_in("TIX-1700000000000-UNKNOWN00")

    def test_unpaid_ticket_is_not_checked_in(self, db, create_ticket):
        ticket = create_ticket(payment_status=PaymentStatus.PENDING)
        store = TicketStore(db)
        with pytest.raises(TicketNotPaidError):
            store.mark_checked_in(ticket.code)
        assert store.find_by_code(ticket.code).checked_in is False

    def test_check_in_dated_before_issuance_fails(self, db, create_ticket):
        ticket = create_ticket()
        store = TicketStore(db)
        with pytest.raises(InvalidCheckinTimeError):
            store.mark_checked_in(ticket.code, at=datetime(2000, 1, 1, 12, 0, 0))

        stored = store.find_by_code(ticket.code)
        assert stored.checked_in is False
        assert stored.checked_in_at is None

        # A later scan still succeeds
        assert store.mark_checked_in(ticket.code).checked_in is True


class TestEmailFlag:
    def test_unsent_codes_and_mark_sent(self, db, create_ticket):
        sent = create_ticket(email_sent=True)
        unsent = create_ticket()
        create_ticket(payment_status=PaymentStatus.PENDING)
        store = TicketStore(db)

        assert store.unsent_ticket_codes() == [unsent.code]
        store.mark_email_sent(unsent.code)
        assert store.unsent_ticket_codes() == []
        assert store.find_by_code(sent.code).email_sent is True


class TestStats:
    def test_event_stats(self, db, create_event, create_ticket):
        event = create_event(capacity=10)
        create_ticket(event=event, quantity=2, checked_in=True, email_sent=True)
        create_ticket(event=event, quantity=3)
        create_ticket(event=event, quantity=4, payment_status=PaymentStatus.FAILED)

        store = TicketStore(db)
        stats = store.event_stats(event)
        assert stats.tickets_sold == 5
        assert stats.orders == 2
        assert stats.revenue == Decimal("125.00")
        assert stats.platform_fees == Decimal("5.00")
        assert stats.checked_in == 2
        assert stats.checked_in_orders == 1
        assert stats.remaining == 5
        assert stats.emails_pending == 1
        assert store.tickets_sold(event.id) == 5

    def test_unlimited_capacity(self, db, create_event, create_ticket):
        event = create_event(capacity=None)
        create_ticket(event=event)
        stats = TicketStore(db).event_stats(event)
        assert stats.capacity is None
        assert stats.remaining is None


class TestCapacity:
    def test_within_capacity(self, db, create_event, create_ticket):
        event = create_event(capacity=5)
        create_ticket(event=event, quantity=3)
        TicketStore(db).ensure_capacity(event, 2)

    def test_over_capacity(self, db, create_event, create_ticket):
        event = create_event(capacity=5)
        create_ticket(event=event, quantity=4)
        with pytest.raises(SoldOutError) as exc_info:
            TicketStore(db).ensure_capacity(event, 2)
        assert exc_info.value.remaining == 1

    def test_unpaid_tickets_do_not_hold_capacity(self, db, create_event, create_ticket):
        event = create_event(capacity=2)
        create_ticket(event=event, quantity=2, payment_status=PaymentStatus.FAILED)
        TicketStore(db).ensure_capacity(event, 2)

    def test_unlimited(self, db, create_event):
        event = create_event(capacity=None)
        TicketStore(db).ensure_capacity(event, 10_000)

"""Tests for ticket email delivery and the retry sweep."""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from boxoffice.config import Settings
from boxoffice.models import Ticket
from boxoffice.services import scheduler
from boxoffice.services.email import (
    deliver_ticket_email,
    retry_unsent_ticket_emails,
    send_ticket_email,
)


@pytest.fixture
def resend_configured():
    with patch(
        "boxoffice.services.email.get_settings",
        return_value=Settings(resend_api_key="re_test_123", from_email="tickets@boxoffice.test"),
    ):
        yield


class TestSendTicketEmail:
    def test_sends_code_and_qr(self, resend_configured):
        with patch("boxoffice.services.email.resend.Emails.send") as mock_send:
            sent = send_ticket_email(
                to_email="ada@example.com",
                buyer_name="Ada",
                event_name="Jazz Night",
                ticket_code="TIX-1700000000000-ABCDEF123",
                quantity=2,
                total_paid=Decimal("52"),
            )

        assert sent is True
        message = mock_send.call_args.args[0]
        assert message["to"] == ["ada@example.com"]
        assert message["from"] == "tickets@boxoffice.test"
        assert "Jazz Night" in message["subject"]
        assert "TIX-1700000000000-ABCDEF123" in message["html"]
        assert "data=TIX-1700000000000-ABCDEF123" in message["html"]
        assert "$52.00" in message["html"]

    def test_buyer_and_event_names_are_escaped(self, resend_configured):
        with patch("boxoffice.services.email.resend.Emails.send") as mock_send:
            send_ticket_email(
                to_email="ada@example.com",
                buyer_name="<script>alert(1)</script>",
                event_name="Rock & <b>Roll</b>",
                ticket_code="TIX-1700000000000-ABCDEF123",
                quantity=1,
                total_paid=Decimal("26"),
            )

        html = mock_send.call_args.args[0]["html"]
        assert "<script>" not in html
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
        assert "<b>Roll</b>" not in html
        assert "Rock &amp; &lt;b&gt;Roll&lt;/b&gt;" in html

    def test_not_configured(self):
        with patch("boxoffice.services.email.resend.Emails.send") as mock_send:
            sent = send_ticket_email("a@example.com", "A", "E", "TIX-1700000000000-ABCDEF123", 1, Decimal("26"))
        assert sent is False
        mock_send.assert_not_called()

    def test_provider_failure_returns_false(self, resend_configured):
        with patch("boxoffice.services.email.resend.Emails.send", side_effect=Exception("503")):
            sent = send_ticket_email("a@example.com", "A", "E", "TIX-1700000000000-ABCDEF123", 1, Decimal("26"))
        assert sent is False


class TestDeliver:
    def test_marks_ticket_sent(self, db, create_ticket):
        ticket = create_ticket()
        with patch("boxoffice.services.email.send_ticket_email", return_value=True) as mock_send:
            assert deliver_ticket_email(ticket.code) is True

        assert mock_send.call_args.kwargs["event_name"] == "Test Event"
        db.expire_all()
        assert db.get(Ticket, ticket.id).email_sent is True

    def test_failure_leaves_flag_unset(self, db, create_ticket):
        ticket = create_ticket()
        with patch("boxoffice.services.email.send_ticket_email", return_value=False):
            assert deliver_ticket_email(ticket.code) is False

        db.expire_all()
        assert db.get(Ticket, ticket.id).email_sent is False

    def test_already_sent_is_skipped(self, create_ticket):
        ticket = create_ticket(email_sent=True)
        with patch("boxoffice.services.email.send_ticket_email") as mock_send:
            assert deliver_ticket_email(ticket.code) is True
        mock_send.assert_not_called()

    def test_unknown_ticket(self):
        assert deliver_ticket_email("TIX-1700000000000-MISSING00") is False

    def test_unexpected_error_never_raises(self, create_ticket):
        ticket = create_ticket()
        with patch("boxoffice.services.email.send_ticket_email", side_effect=RuntimeError("boom")):
            assert deliver_ticket_email(ticket.code) is False


class TestRetrySweep:
    def test_retries_unsent(self, db, create_ticket):
        create_ticket()
        create_ticket()
        create_ticket(email_sent=True)

        with patch("boxoffice.services.email.send_ticket_email", return_value=True) as mock_send:
            assert retry_unsent_ticket_emails() == 2
        assert mock_send.call_count == 2

        db.expire_all()
        assert db.query(Ticket).filter(Ticket.email_sent.is_(False)).count() == 0

    def test_nothing_pending(self):
        assert retry_unsent_ticket_emails() == 0


class TestScheduler:
    def test_registers_retry_job(self, monkeypatch):
        fake = MagicMock()
        monkeypatch.setattr(scheduler, "_scheduler", fake)

        scheduler.schedule_email_retries()

        kwargs = fake.add_job.call_args.kwargs
        assert fake.add_job.call_args.args[0] is retry_unsent_ticket_emails
        assert kwargs["id"] == scheduler.EMAIL_RETRY_JOB_ID
        assert kwargs["replace_existing"] is True

    def test_not_initialized(self, monkeypatch):
        monkeypatch.setattr(scheduler, "_scheduler", None)
        with pytest.raises(RuntimeError):
            scheduler.get_scheduler()

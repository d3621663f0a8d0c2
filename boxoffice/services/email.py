"""Ticket confirmation email via Resend.

Delivery is fire-and-forget: a failed send only leaves `email_sent` false on
the ticket, which the scheduler's retry job picks up later. Ticket validity
never depends on it.
"""

import logging
import threading
from decimal import Decimal
from pathlib import Path
from urllib.parse import quote

import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape

from boxoffice.config import get_settings
from boxoffice.database import SessionLocal
from boxoffice.errors import DomainError
from boxoffice.services.fees import quantize_money
from boxoffice.services.ticket_codes import qr_payload
from boxoffice.services.ticket_store import TicketStore

logger = logging.getLogger(__name__)

# Set up Jinja2 template environment
templates_dir = Path(__file__).parent.parent / "templates"
env = Environment(
    loader=FileSystemLoader(str(templates_dir)),
    autoescape=select_autoescape(),
)


def _send_email(to_email: str, subject: str, html_content: str) -> bool:
    """Internal helper to send emails via Resend."""
    settings = get_settings()

    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY not configured, skipping email to %s", to_email)
        return False

    resend.api_key = settings.resend_api_key

    try:
        resend.Emails.send({
            "from": settings.from_email,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        })
        return True
    except Exception:
        logger.exception("Failed to send email to %s", to_email)
        return False


def send_ticket_email(
    to_email: str,
    buyer_name: str,
    event_name: str,
    ticket_code: str,
    quantity: int,
    total_paid: Decimal,
) -> bool:
    """Send the ticket confirmation carrying the code and its QR payload."""
    settings = get_settings()
    payload = qr_payload(ticket_code)
    qr_image_url = settings.qr_image_url_template.format(data=quote(payload, safe=""))

    template = env.get_template("ticket_email.html")
    html_content = template.render(
        buyer_name=buyer_name,
        event_name=event_name,
        qr_image_url=qr_image_url,
        ticket_code=ticket_code,
        quantity=quantity,
        total_paid=quantize_money(Decimal(total_paid)),
    )

    return _send_email(to_email, f"Your Ticket for {event_name}", html_content)


def deliver_ticket_email(ticket_code: str) -> bool:
    """Load a ticket, email it, and flag it as sent. Never raises."""
    db = SessionLocal()
    try:
        store = TicketStore(db)
        ticket = store.get_by_code(ticket_code)
        if ticket is None:
            logger.warning("Ticket %s vanished before its email could be sent", ticket_code)
            return False
        if ticket.email_sent:
            return True

        sent = send_ticket_email(
            to_email=ticket.buyer_email,
            buyer_name=ticket.buyer_name,
            event_name=ticket.event.name,
            ticket_code=ticket.code,
            quantity=ticket.quantity,
            total_paid=ticket.total_paid,
        )
        if sent:
            store.mark_email_sent(ticket.code)
            logger.info("Ticket email sent for %s", ticket.code)
        return sent
    except DomainError as e:
        logger.warning("Could not record email delivery for %s: %s", ticket_code, e)
        return False
    except Exception:
        logger.exception("Ticket email delivery error for %s", ticket_code)
        return False
    finally:
        db.close()


def dispatch_ticket_email(ticket_code: str) -> None:
    """Deliver a ticket email in a background thread. Non-blocking."""
    thread = threading.Thread(target=deliver_ticket_email, args=[ticket_code], daemon=True)
    thread.start()


def retry_unsent_ticket_emails(limit: int = 100) -> int:
    """Re-attempt delivery for paid tickets whose email never went out."""
    db = SessionLocal()
    try:
        codes = TicketStore(db).unsent_ticket_codes(limit=limit)
    except DomainError as e:
        logger.warning("Unsent email sweep skipped: %s", e)
        return 0
    finally:
        db.close()

    delivered = sum(1 for code in codes if deliver_ticket_email(code))
    if codes:
        logger.info("Email retry sweep: %d/%d ticket emails delivered", delivered, len(codes))
    return delivered

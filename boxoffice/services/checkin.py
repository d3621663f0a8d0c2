"""
Check-in Verifier

Classifies a door scan and, on operator confirmation, checks the ticket in.

Classification is read-only and always runs its checks in this order:
existence, event match, payment status, check-in status. Each failing check
is a distinct message for door staff. Only confirm() from VALID_ADMIT writes,
through the store's conditional update; losing that race to another scanner
is reported as ALREADY_CHECKED_IN.

A ticket is one order, so a successful check-in admits `quantity` people.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from boxoffice.errors import AlreadyCheckedInError
from boxoffice.models import PaymentStatus, Ticket
from boxoffice.services.ticket_codes import parse_scanned_code
from boxoffice.services.ticket_store import TicketStore

logger = logging.getLogger(__name__)


class ScanState(str, enum.Enum):
    SCANNING = "scanning"
    INVALID = "invalid"
    NOT_PAID = "not_paid"
    ALREADY_CHECKED_IN = "already_checked_in"
    VALID_ADMIT = "valid_admit"
    CHECKED_IN_SUCCESS = "checked_in_success"


class InvalidReason(str, enum.Enum):
    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    WRONG_EVENT = "wrong_event"


@dataclass(frozen=True)
class ScanResult:
    state: ScanState
    message: str
    detail: str
    code: Optional[str] = None
    ticket: Optional[Ticket] = None
    reason: Optional[InvalidReason] = None
    checked_in_at: Optional[datetime] = None

    @property
    def admits(self) -> int:
        if self.state in (ScanState.VALID_ADMIT, ScanState.CHECKED_IN_SUCCESS) and self.ticket:
            return self.ticket.quantity
        return 0


def _invalid(reason: InvalidReason, code: Optional[str], ticket: Optional[Ticket] = None) -> ScanResult:
    if reason == InvalidReason.WRONG_EVENT:
        message, detail = "WRONG EVENT", "This ticket is for a different event"
    elif reason == InvalidReason.MALFORMED:
        message, detail = "INVALID TICKET", "Not a ticket code"
    else:
        message, detail = "INVALID TICKET", "Ticket not found"
    return ScanResult(
        state=ScanState.INVALID,
        message=message,
        detail=detail,
        code=code,
        ticket=ticket,
        reason=reason,
    )


class CheckinVerifier:
    """Door scan classification bound to one scanning station's event."""

    def __init__(self, db: Session) -> None:
        self.store = TicketStore(db)

    def classify(self, scanned: Optional[str], station_event_id: int) -> ScanResult:
        code = parse_scanned_code(scanned)
        if code is None:
            return _invalid(InvalidReason.MALFORMED, None)

        ticket = self.store.get_by_code(code)
        if ticket is None:
            return _invalid(InvalidReason.NOT_FOUND, code)

        if ticket.event_id != station_event_id:
            return _invalid(InvalidReason.WRONG_EVENT, code, ticket)

        if ticket.payment_status != PaymentStatus.COMPLETED:
            return ScanResult(
                state=ScanState.NOT_PAID,
                message="PAYMENT NOT CONFIRMED",
                detail="DO NOT ADMIT - Payment pending",
                code=code,
                ticket=ticket,
            )

        if ticket.checked_in:
            return self._already_checked_in(ticket, ticket.checked_in_at)

        return ScanResult(
            state=ScanState.VALID_ADMIT,
            message="VERIFIED - ADMIT",
            detail=f"Payment confirmed - admits {ticket.quantity}",
            code=code,
            ticket=ticket,
        )

    def confirm(
        self,
        scanned: Optional[str],
        station_event_id: int,
        at: Optional[datetime] = None,
    ) -> ScanResult:
        """Check in a VALID_ADMIT ticket; any other classification is returned untouched."""
        result = self.classify(scanned, station_event_id)
        if result.state != ScanState.VALID_ADMIT:
            return result

        try:
            ticket = self.store.mark_checked_in(result.code, at=at)
        except AlreadyCheckedInError as e:
            logger.warning("Lost check-in race for %s at event %s", result.code, station_event_id)
            return self._already_checked_in(result.ticket, e.checked_in_at)

        logger.info(
            "Checked in %s at event %s (admits %d)",
            ticket.code, station_event_id, ticket.quantity,
        )
        return ScanResult(
            state=ScanState.CHECKED_IN_SUCCESS,
            message="CHECKED IN",
            detail=f"{ticket.buyer_name} admitted successfully",
            code=ticket.code,
            ticket=ticket,
            checked_in_at=ticket.checked_in_at,
        )

    @staticmethod
    def _already_checked_in(ticket: Ticket, checked_in_at: Optional[datetime]) -> ScanResult:
        return ScanResult(
            state=ScanState.ALREADY_CHECKED_IN,
            message="ALREADY CHECKED IN",
            detail="This ticket was already used",
            code=ticket.code,
            ticket=ticket,
            checked_in_at=checked_in_at,
        )

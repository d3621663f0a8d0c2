from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from boxoffice.database import get_db
from boxoffice.schemas import ScanRequest, ScanResponse, TicketResponse
from boxoffice.services.checkin import CheckinVerifier, ScanResult, ScanState

router = APIRouter(prefix="/checkin", tags=["checkin"])


def _scan_response(result: ScanResult) -> ScanResponse:
    # Tickets for other events are not disclosed to the scanning station
    ticket = None
    if result.ticket is not None and result.state != ScanState.INVALID:
        ticket = TicketResponse.model_validate(result.ticket)
    return ScanResponse(
        state=result.state,
        message=result.message,
        detail=result.detail,
        code=result.code,
        reason=result.reason,
        admits=result.admits,
        checked_in_at=result.checked_in_at,
        ticket=ticket,
    )


@router.post("/scan", response_model=ScanResponse)
def scan_ticket(scan: ScanRequest, db: Session = Depends(get_db)):
    """Classify a scanned code. Read-only; safe to repeat or dismiss."""
    return _scan_response(CheckinVerifier(db).classify(scan.code, scan.event_id))


@router.post("/confirm", response_model=ScanResponse)
def confirm_checkin(scan: ScanRequest, db: Session = Depends(get_db)):
    """Admit a ticket after the operator confirms a VALID_ADMIT scan."""
    return _scan_response(CheckinVerifier(db).confirm(scan.code, scan.event_id))

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from boxoffice.database import get_db
from boxoffice.schemas import QrPayloadResponse, TicketResponse
from boxoffice.services.ticket_codes import qr_payload
from boxoffice.services.ticket_store import TicketStore

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.get("/{code}", response_model=TicketResponse)
def get_ticket(code: str, db: Session = Depends(get_db)):
    """Get ticket details by code."""
    return TicketStore(db).find_by_code(code)


@router.get("/{code}/qr-payload", response_model=QrPayloadResponse)
def get_ticket_qr_payload(code: str, db: Session = Depends(get_db)):
    """The string an external renderer should encode as the ticket's QR code."""
    ticket = TicketStore(db).find_by_code(code)
    return QrPayloadResponse(code=ticket.code, payload=qr_payload(ticket.code))

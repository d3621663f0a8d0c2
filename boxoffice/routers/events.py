from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from boxoffice.database import get_db
from boxoffice.schemas import EventStatsResponse, TicketResponse
from boxoffice.services.ticket_store import TicketStore

router = APIRouter(prefix="/events", tags=["events"])


@router.get("/{event_id}/tickets", response_model=list[TicketResponse])
def list_event_tickets(event_id: int, db: Session = Depends(get_db)):
    """List an event's tickets, newest first."""
    store = TicketStore(db)
    store.get_event(event_id)
    return store.list_by_event(event_id)


@router.get("/{event_id}/stats", response_model=EventStatsResponse)
def get_event_stats(event_id: int, db: Session = Depends(get_db)):
    """Dashboard totals: admissions sold, orders, revenue and check-ins."""
    store = TicketStore(db)
    return store.event_stats(store.get_event(event_id))

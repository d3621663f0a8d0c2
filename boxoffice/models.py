from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Boolean, Numeric
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum

from boxoffice.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class Gateway(str, enum.Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    ticket_price = Column(Numeric(10, 2), nullable=False)
    capacity = Column(Integer, nullable=True)  # null = unlimited
    host_id = Column(String(255), nullable=False, index=True)
    payment_gateway = Column(Enum(Gateway), nullable=False, default=Gateway.STRIPE)
    # Stripe connected account or PayPal merchant id; null until host onboarding completes
    gateway_account_id = Column(String(255), nullable=True)
    currency = Column(String(3), nullable=False, default="usd")
    created_at = Column(DateTime(timezone=True), default=utcnow)

    tickets = relationship("Ticket", back_populates="event", cascade="all, delete-orphan")

    @property
    def is_unlimited(self) -> bool:
        return self.capacity is None


class Ticket(Base):
    """One paid order: `quantity` admissions behind a single code."""
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(64), unique=True, nullable=False, index=True)
    buyer_name = Column(String(255), nullable=False)
    buyer_email = Column(String(255), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)

    # Snapshotted at issuance, never re-read from the event
    unit_price = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False)
    total_paid = Column(Numeric(10, 2), nullable=False)

    payment_gateway = Column(Enum(Gateway), nullable=False)
    gateway_transaction_id = Column(String(255), unique=True, nullable=False, index=True)
    payment_status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)

    checked_in = Column(Boolean, nullable=False, default=False)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    email_sent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    event = relationship("Event", back_populates="tickets")

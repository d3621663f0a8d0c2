from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional
from boxoffice.models import Gateway, PaymentStatus
from boxoffice.services.checkin import InvalidReason, ScanState


# ============== Fee Schemas ==============

class FeeBreakdownResponse(BaseModel):
    gateway: Gateway
    unit_price: Decimal
    quantity: int
    subtotal: Decimal
    platform_fee: Decimal
    buyer_total: Decimal
    gateway_fee: Decimal
    host_receives: Decimal
    application_fee: Optional[Decimal] = None  # Stripe only

    class Config:
        from_attributes = True


# ============== Ticket Schemas ==============

class TicketResponse(BaseModel):
    id: int
    event_id: int
    code: str
    buyer_name: str
    buyer_email: str
    quantity: int
    unit_price: Decimal
    platform_fee: Decimal
    total_paid: Decimal
    payment_gateway: Gateway
    payment_status: PaymentStatus
    checked_in: bool
    checked_in_at: Optional[datetime] = None
    email_sent: bool
    created_at: datetime

    class Config:
        from_attributes = True


class QrPayloadResponse(BaseModel):
    code: str
    payload: str


class EventStatsResponse(BaseModel):
    event_id: int
    tickets_sold: int
    orders: int
    revenue: Decimal
    platform_fees: Decimal
    checked_in: int
    checked_in_orders: int
    capacity: Optional[int] = None  # null = unlimited
    remaining: Optional[int] = None
    emails_pending: int

    class Config:
        from_attributes = True


# ============== Payment Schemas ==============

class PurchaseBase(BaseModel):
    event_id: int
    quantity: int = Field(default=1, ge=1, le=50)
    buyer_name: str = Field(min_length=1, max_length=255)
    buyer_email: EmailStr


class StripeIntentRequest(PurchaseBase):
    pass


class StripeIntentResponse(BaseModel):
    payment_intent_id: str
    client_secret: str
    publishable_key: Optional[str] = None
    fees: FeeBreakdownResponse


class PayPalOrderRequest(PurchaseBase):
    pass


class PayPalOrderResponse(BaseModel):
    order_id: str
    status: str
    approve_url: Optional[str] = None
    fees: FeeBreakdownResponse


class PayPalConfirmRequest(PurchaseBase):
    order_id: str


class IssuedTicketResponse(BaseModel):
    created: bool
    qr_payload: str
    ticket: TicketResponse


# ============== Check-in Schemas ==============

class ScanRequest(BaseModel):
    code: str  # raw scanned QR payload
    event_id: int  # event the scanning station is bound to


class ScanResponse(BaseModel):
    state: ScanState
    message: str
    detail: str
    code: Optional[str] = None
    reason: Optional[InvalidReason] = None
    admits: int = 0
    checked_in_at: Optional[datetime] = None
    ticket: Optional[TicketResponse] = None

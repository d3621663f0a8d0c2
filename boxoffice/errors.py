"""Domain error codes for ticket issuance and check-in."""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    TICKET_NOT_PAID = "TICKET_NOT_PAID"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    DUPLICATE_CODE = "DUPLICATE_CODE"
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    GATEWAY_NOT_CONNECTED = "GATEWAY_NOT_CONNECTED"
    SOLD_OUT = "SOLD_OUT"
    ORDER_MISMATCH = "ORDER_MISMATCH"
    WRONG_GATEWAY = "WRONG_GATEWAY"
    UNSUPPORTED_CURRENCY = "UNSUPPORTED_CURRENCY"
    INVALID_CHECKIN_TIME = "INVALID_CHECKIN_TIME"


@dataclass(eq=False)
class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    message: str
    retryable: bool = False

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class TicketNotFoundError(DomainError):
    """Raised when no ticket carries the given code."""

    def __init__(self, code: str) -> None:
        super().__init__(
            code=ErrorCode.TICKET_NOT_FOUND,
            message="Ticket not found",
        )
        self.ticket_code = code


class EventNotFoundError(DomainError):
    """Raised when an event is not found."""

    def __init__(self, event_id: int) -> None:
        super().__init__(
            code=ErrorCode.EVENT_NOT_FOUND,
            message="Event not found",
        )
        self.event_id = event_id


class AlreadyCheckedInError(DomainError):
    """Raised when the conditional check-in update finds the ticket already used."""

    def __init__(self, code: str, checked_in_at=None) -> None:
        super().__init__(
            code=ErrorCode.ALREADY_CHECKED_IN,
            message="Ticket already checked in",
        )
        self.ticket_code = code
        self.checked_in_at = checked_in_at


class TicketNotPaidError(DomainError):
    def __init__(self, code: str) -> None:
        super().__init__(
            code=ErrorCode.TICKET_NOT_PAID,
            message="Ticket payment not completed",
        )
        self.ticket_code = code


class AmountMismatchError(DomainError):
    """Raised when the captured amount differs from the server-side total."""

    def __init__(self, expected: Decimal, captured: Decimal, currency: str) -> None:
        super().__init__(
            code=ErrorCode.AMOUNT_MISMATCH,
            message="Captured amount does not match the expected total",
        )
        self.expected = expected
        self.captured = captured
        self.currency = currency


class DuplicateCodeError(DomainError):
    """Internal: a generated ticket code collided. Retried during issuance."""

    def __init__(self, code: str) -> None:
        super().__init__(
            code=ErrorCode.DUPLICATE_CODE,
            message="Ticket code already in use",
        )
        self.ticket_code = code


class DuplicateTransactionError(DomainError):
    """Raised when a ticket already exists for a gateway transaction."""

    def __init__(self, ticket) -> None:
        super().__init__(
            code=ErrorCode.DUPLICATE_TRANSACTION,
            message="Payment already reconciled",
        )
        self.ticket = ticket


class PersistenceError(DomainError):
    """Raised when the ticket store is unreachable or a statement fails."""

    def __init__(self, message: str = "Ticket store unavailable, please retry") -> None:
        super().__init__(
            code=ErrorCode.PERSISTENCE_ERROR,
            message=message,
            retryable=True,
        )


class GatewayError(DomainError):
    """Raised when a payment gateway call fails or times out."""

    def __init__(self, message: str = "Payment gateway unavailable, please retry") -> None:
        super().__init__(
            code=ErrorCode.GATEWAY_ERROR,
            message=message,
            retryable=True,
        )


class GatewayNotConnectedError(DomainError):
    def __init__(self, event_id: int) -> None:
        super().__init__(
            code=ErrorCode.GATEWAY_NOT_CONNECTED,
            message="Event host has not finished payment onboarding",
        )
        self.event_id = event_id


class SoldOutError(DomainError):
    def __init__(self, event_id: int, remaining: int) -> None:
        super().__init__(
            code=ErrorCode.SOLD_OUT,
            message=f"Only {remaining} tickets available",
        )
        self.event_id = event_id
        self.remaining = remaining


class OrderMismatchError(DomainError):
    """Raised when a gateway payment was made for a different event or quantity."""

    def __init__(self, message: str = "Payment does not match this order") -> None:
        super().__init__(
            code=ErrorCode.ORDER_MISMATCH,
            message=message,
        )


class WrongGatewayError(DomainError):
    """Raised when an event is paid through a gateway its host does not use."""

    def __init__(self, event_id: int, gateway) -> None:
        super().__init__(
            code=ErrorCode.WRONG_GATEWAY,
            message=f"Event does not accept {gateway.value} payments",
        )
        self.event_id = event_id
        self.gateway = gateway


class UnsupportedCurrencyError(DomainError):
    def __init__(self, currency: str) -> None:
        super().__init__(
            code=ErrorCode.UNSUPPORTED_CURRENCY,
            message=f"Currency {currency.upper()} is not supported",
        )
        self.currency = currency


class InvalidCheckinTimeError(DomainError):
    """Raised when a check-in would be dated before the ticket was issued."""

    def __init__(self, code: str) -> None:
        super().__init__(
            code=ErrorCode.INVALID_CHECKIN_TIME,
            message="Check-in time is before the ticket was issued",
        )
        self.ticket_code = code

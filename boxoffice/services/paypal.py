"""PayPal orders.

The backend creates every order itself, priced from the event and checked
against capacity, and stamps the purchase unit's `custom_id` with the event
and quantity. The buyer approves and captures the order in the browser; the
backend then reads the order back from PayPal so the captured amount and the
order binding always come from PayPal and never from the client.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests as http_requests
from sqlalchemy.orm import Session

from boxoffice.config import get_settings
from boxoffice.errors import GatewayError, OrderMismatchError, WrongGatewayError
from boxoffice.models import Event, Gateway
from boxoffice.services.fees import FeeBreakdown, compute_fees, ensure_supported_currency
from boxoffice.services.reconciliation import Buyer, GatewayConfirmation
from boxoffice.services.ticket_store import TicketStore

logger = logging.getLogger(__name__)

# PayPal rejects longer purchase unit descriptions and custom ids
MAX_FIELD_LENGTH = 127


@dataclass(frozen=True)
class PayPalOrderQuote:
    order_id: str
    status: str
    approve_url: Optional[str]
    fees: FeeBreakdown


def order_reference(event_id: int, quantity: int) -> str:
    """The `custom_id` binding an order to the purchase it pays for."""
    return json.dumps({"event_id": event_id, "quantity": quantity}, separators=(",", ":"))


def parse_order_reference(custom_id: Optional[str]) -> tuple[int, int]:
    """Return (event_id, quantity) from an order's `custom_id`.

    Raises OrderMismatchError when the order was not created by this service.
    """
    try:
        reference = json.loads(custom_id)
        return int(reference["event_id"]), int(reference["quantity"])
    except (TypeError, ValueError, KeyError) as exc:
        raise OrderMismatchError("PayPal order was not created for a ticket purchase") from exc


class PayPalClient:
    """Minimal PayPal REST client for creating and reading orders."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.client_id = client_id or settings.paypal_client_id
        self.client_secret = client_secret or settings.paypal_client_secret
        self.api_base = (api_base or settings.paypal_api_base).rstrip("/")
        self.timeout = timeout or settings.gateway_timeout_seconds

    def _access_token(self) -> str:
        if not self.client_id or not self.client_secret:
            raise GatewayError("PayPal not configured")
        try:
            resp = http_requests.post(
                f"{self.api_base}/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except http_requests.RequestException as exc:
            logger.warning("PayPal token request failed: %s", exc)
            raise GatewayError() from exc
        if resp.status_code != 200:
            logger.error("PayPal token request returned HTTP %s", resp.status_code)
            raise GatewayError("PayPal authentication failed")
        return resp.json()["access_token"]

    def create_order(self, purchase_unit: dict) -> dict:
        token = self._access_token()
        try:
            resp = http_requests.post(
                f"{self.api_base}/v2/checkout/orders",
                json={"intent": "CAPTURE", "purchase_units": [purchase_unit]},
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except http_requests.RequestException as exc:
            logger.warning("PayPal order creation failed: %s", exc)
            raise GatewayError() from exc
        if resp.status_code not in (200, 201):
            logger.error("PayPal order creation returned HTTP %s", resp.status_code)
            raise GatewayError("Payment could not be started")
        return resp.json()

    def get_order(self, order_id: str) -> dict:
        token = self._access_token()
        try:
            resp = http_requests.get(
                f"{self.api_base}/v2/checkout/orders/{order_id}",
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
                timeout=self.timeout,
            )
        except http_requests.RequestException as exc:
            logger.warning("PayPal order lookup failed for %s: %s", order_id, exc)
            raise GatewayError() from exc
        if resp.status_code == 404:
            raise GatewayError("PayPal order not found")
        if resp.status_code != 200:
            logger.error("PayPal order lookup for %s returned HTTP %s", order_id, resp.status_code)
            raise GatewayError()
        return resp.json()

    def confirm_order(self, order_id: str) -> GatewayConfirmation:
        """Return the confirmation for a captured order.

        Raises GatewayError if the order has no completed capture and
        OrderMismatchError if it carries no purchase binding.
        """
        return confirmation_from_order(self.get_order(order_id))


def _money(amount: Decimal, currency: str) -> dict:
    return {"currency_code": currency.upper(), "value": str(amount)}


def build_purchase_unit(event: Event, quantity: int, fees: FeeBreakdown) -> dict:
    unit = {
        "amount": {
            **_money(fees.buyer_total, event.currency),
            "breakdown": {
                "item_total": _money(fees.subtotal, event.currency),
                "handling": _money(fees.platform_fee, event.currency),
            },
        },
        "description": f"{event.name} - {quantity} ticket(s)"[:MAX_FIELD_LENGTH],
        "custom_id": order_reference(event.id, quantity),
    }
    if event.gateway_account_id:
        unit["payee"] = {"merchant_id": event.gateway_account_id}
    return unit


def create_paypal_order(
    db: Session,
    event_id: int,
    quantity: int,
    buyer: Buyer,
    client: Optional[PayPalClient] = None,
) -> PayPalOrderQuote:
    """
    Create a PayPal order whose amount is derived from the event's price.

    Raises:
        EventNotFoundError: If the event does not exist.
        WrongGatewayError: If the event is not sold through PayPal.
        UnsupportedCurrencyError: If the event currency has no cents.
        SoldOutError: If the order exceeds remaining capacity.
        GatewayError: If PayPal is unconfigured, unreachable or rejects the call.
    """
    store = TicketStore(db)
    event = store.get_event(event_id)
    if event.payment_gateway != Gateway.PAYPAL:
        raise WrongGatewayError(event_id, Gateway.PAYPAL)
    ensure_supported_currency(event.currency)
    store.ensure_capacity(event, quantity)

    fees = compute_fees(event.ticket_price, quantity, gateway=Gateway.PAYPAL).rounded()
    order = (client or PayPalClient()).create_order(build_purchase_unit(event, quantity, fees))

    approve_url = next(
        (link.get("href") for link in order.get("links") or []
         if link.get("rel") in ("approve", "payer-action")),
        None,
    )
    logger.info(
        "Created PayPal order %s for event %s (qty %d, %s %s) for %s",
        order.get("id"), event.id, quantity, fees.buyer_total, event.currency, buyer.email,
    )
    return PayPalOrderQuote(
        order_id=order["id"],
        status=order.get("status", "CREATED"),
        approve_url=approve_url,
        fees=fees,
    )


def confirmation_from_order(order: dict) -> GatewayConfirmation:
    if order.get("status") != "COMPLETED":
        raise GatewayError("PayPal order is not completed")

    for unit in order.get("purchase_units") or []:
        captures = (unit.get("payments") or {}).get("captures") or []
        for capture in captures:
            if capture.get("status") != "COMPLETED":
                continue
            amount = capture.get("amount") or {}
            try:
                value = Decimal(str(amount.get("value")))
            except InvalidOperation as exc:
                raise GatewayError("PayPal capture has no amount") from exc
            event_id, quantity = parse_order_reference(unit.get("custom_id"))
            return GatewayConfirmation(
                gateway=Gateway.PAYPAL,
                transaction_id=capture["id"],
                amount_captured=value,
                currency=(amount.get("currency_code") or "").lower(),
                event_id=event_id,
                quantity=quantity,
            )

    raise GatewayError("PayPal order has no completed capture")

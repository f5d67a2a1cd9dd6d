"""
Payment gateway client for session payment orders.

Creates orders on the Razorpay orders API. The client only creates orders;
callback signatures are checked by ``counselbook.lib.payment_signature``.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Optional

import httpx

from counselbook.lib.errors import PaymentGatewayUnavailableException
from counselbook.lib.settings import settings
from counselbook.lib.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentOrder:
    """Gateway-side order for an amount to collect."""
    id: str
    amount: int
    currency: str
    receipt: Optional[str]
    status: str

    def to_dict(self) -> dict:
        return asdict(self)


class PaymentGateway(ABC):
    """Abstract payment gateway used by the booking lifecycle."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether credentials are configured."""

    @abstractmethod
    def create_order(self, amount: int, currency: str, receipt: str) -> PaymentOrder:
        """
        Create a payment order.

        Args:
            amount: Amount in the smallest currency unit
            currency: ISO currency code
            receipt: Merchant reference, the booking id

        Raises:
            PaymentGatewayUnavailableException: not configured, timed out,
                unreachable, or the gateway rejected the request
        """


class RazorpayGateway(PaymentGateway):
    """
    Razorpay orders API client over httpx.
    """

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize Razorpay client.

        Args:
            key_id: API key id (defaults to settings.razorpay_key_id)
            key_secret: API key secret (defaults to settings.razorpay_key_secret)
            api_base: REST base URL (defaults to settings.razorpay_api_base)
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.key_id = key_id if key_id is not None else settings.razorpay_key_id
        self.key_secret = key_secret if key_secret is not None else settings.razorpay_key_secret
        self.api_base = (api_base or settings.razorpay_api_base).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.payment_gateway_timeout_seconds
        self._transport = transport

        if not self.is_available():
            logger.warning("Razorpay credentials not configured. Paid bookings will be unavailable.")

    def is_available(self) -> bool:
        """Check that both key id and secret are set."""
        return bool(self.key_id and self.key_secret)

    def create_order(self, amount: int, currency: str, receipt: str) -> PaymentOrder:
        if not self.is_available():
            raise PaymentGatewayUnavailableException("Payment gateway not configured")

        body = {"amount": amount, "currency": currency, "receipt": receipt}

        try:
            with httpx.Client(
                base_url=self.api_base,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = client.post("/orders", json=body)
        except httpx.TimeoutException as e:
            logger.error(f"Payment gateway timed out: {e}", extra={"receipt": receipt})
            raise PaymentGatewayUnavailableException("Payment gateway timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Payment gateway unreachable: {e}", extra={"receipt": receipt})
            raise PaymentGatewayUnavailableException("Payment gateway unreachable") from e

        if response.status_code >= 400:
            logger.error(
                "Payment gateway rejected order",
                extra={"receipt": receipt, "status_code": response.status_code},
            )
            raise PaymentGatewayUnavailableException(
                "Payment gateway rejected the order",
                details={"gateway_status": response.status_code},
            )

        try:
            data = response.json()
            order = PaymentOrder(
                id=data["id"],
                amount=int(data.get("amount", amount)),
                currency=data.get("currency", currency),
                receipt=data.get("receipt", receipt),
                status=data.get("status", "created"),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Malformed payment gateway response: {e}", extra={"receipt": receipt})
            raise PaymentGatewayUnavailableException("Malformed payment gateway response") from e

        logger.info(
            "Payment order created",
            extra={"order_id": order.id, "amount": order.amount, "currency": order.currency},
        )
        return order


def get_payment_gateway() -> PaymentGateway:
    """
    Get the configured payment gateway.

    Returns:
        Razorpay client using application settings
    """
    return RazorpayGateway()

"""
Payment Gateway Protocol - Gateway-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from licensing.models.maksekeskus import PaymentNotification


@dataclass(frozen=True)
class TransactionParams:
    """
    Request to open a hosted-checkout transaction.

    Amounts are integer minor units (cents).
    """

    amount_cents: int
    currency: str
    reference: str
    customer_ip: str
    return_url: str
    cancel_url: str
    notification_url: str
    locale: str | None = None
    country: str | None = None


@dataclass(frozen=True)
class GatewayTransaction:
    """
    Transaction created at the gateway.

    payment_methods is the gateway's own listing, passed to clients unchanged.
    """

    transaction_id: str
    status: str | None
    payment_methods: Any


@dataclass(frozen=True)
class SignedPayload:
    """
    A notification body exactly as signed by the gateway.

    json_string must be the original bytes the MAC was computed over.
    """

    json_string: str
    mac: str


class PaymentGateway(Protocol):
    """
    Payment gateway protocol.

    The checkout, catalog and webhook services depend on this interface
    rather than on a concrete HTTP client.
    """

    async def create_transaction(self, params: TransactionParams) -> GatewayTransaction:
        """
        Create a transaction with the gateway.

        Raises:
            PaymentProviderError: If the gateway is unreachable or rejects the request
        """
        ...

    async def list_payment_methods(self, country: str, currency: str) -> Any:
        """
        Fetch the payment methods available for a country and currency.

        Raises:
            PaymentProviderError: If the gateway is unreachable or rejects the request
        """
        ...

    def verify_notification(self, payload: SignedPayload) -> PaymentNotification:
        """
        Verify a notification's MAC and parse it.

        Raises:
            WebhookVerificationError: If the MAC does not match
            ValueError: If the verified body is not a valid notification
        """
        ...

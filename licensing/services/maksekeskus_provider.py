"""
Maksekeskus Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.

Uses the Maksekeskus REST API for hosted-checkout transactions.
https://developer.maksekeskus.ee/reference.php
"""

import base64
import hashlib
import hmac
import time
from typing import Any

import httpx
from pydantic import ValidationError

from licensing.config import Settings
from licensing.exceptions import PaymentProviderError, WebhookVerificationError
from licensing.models.maksekeskus import (
    CustomerDetails,
    PaymentNotification,
    TransactionDetails,
    TransactionRequest,
    TransactionResponse,
    TransactionUrls,
)
from licensing.observability import get_logger, metrics, trace_operation
from licensing.services.payment_provider import (
    GatewayTransaction,
    SignedPayload,
    TransactionParams,
)

logger = get_logger(__name__)

DEFAULT_COUNTRY = "ee"
DEFAULT_LOCALE = "et"


def create_auth_header(shop_id: str, secret_key: str) -> str:
    """HTTP Basic credentials for the gateway API."""
    token = base64.b64encode(f"{shop_id}:{secret_key}".encode()).decode("ascii")
    return f"Basic {token}"


def compute_mac(json_string: str, secret_key: str) -> str:
    """Upper-case hex SHA-512 of the signed JSON text followed by the secret."""
    return hashlib.sha512((json_string + secret_key).encode("utf-8")).hexdigest().upper()


def verify_mac(json_string: str, received_mac: str, secret_key: str) -> bool:
    """
    Check a notification MAC.

    The comparison is exact and case-sensitive: a lower-case MAC with the
    right digits does not verify.
    """
    expected = compute_mac(json_string, secret_key)
    return hmac.compare_digest(expected.encode("utf-8"), received_mac.encode("utf-8"))


def format_amount(amount_cents: int) -> str:
    """849 -> "8.49", 1000 -> "10.00", 5 -> "0.05"."""
    return f"{amount_cents // 100}.{amount_cents % 100:02d}"


def build_transaction_payload(params: TransactionParams) -> TransactionRequest:
    """Build the POST /v1/transactions body for a checkout."""
    return TransactionRequest(
        transaction=TransactionDetails(
            amount=format_amount(params.amount_cents),
            currency=params.currency,
            reference=params.reference,
        ),
        customer=CustomerDetails(
            ip=params.customer_ip,
            country=params.country or DEFAULT_COUNTRY,
            locale=params.locale or DEFAULT_LOCALE,
        ),
        transaction_url=TransactionUrls(
            return_url=params.return_url,
            cancel_url=params.cancel_url,
            notification_url=params.notification_url,
        ),
    )


class MaksekeskusProvider:
    """
    Maksekeskus API provider.

    Handles transaction creation, payment method lookup and notification
    verification. The httpx client is owned by the caller.
    """

    def __init__(self, client: httpx.AsyncClient, shop_id: str, secret_key: str) -> None:
        """
        Initialize Maksekeskus provider.

        Args:
            client: HTTP client with base_url set to the gateway API
            shop_id: Shop identifier (Basic auth user)
            secret_key: Shop secret (Basic auth password and MAC key)
        """
        self.client = client
        self.shop_id = shop_id
        self._secret_key = secret_key

        logger.info("maksekeskus_provider_initialized", base_url=str(client.base_url))

    @classmethod
    def from_settings(cls, settings: Settings) -> "MaksekeskusProvider":
        """Build a provider with its own client for the configured environment."""
        client = httpx.AsyncClient(
            base_url=settings.mk_base_url,
            timeout=settings.mk_request_timeout,
        )
        return cls(client, settings.mk_shop_id, settings.mk_secret_key)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": create_auth_header(self.shop_id, self._secret_key),
            "Accept": "application/json",
        }

    async def _request(self, operation: str, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an authenticated request and return the decoded JSON body."""
        start = time.perf_counter()
        try:
            response = await self.client.request(
                method, endpoint, headers=self._headers, **kwargs
            )
        except httpx.HTTPError as e:
            logger.error("maksekeskus_request_failed", operation=operation, error=str(e))
            raise PaymentProviderError(f"Gateway unreachable: {e}") from e
        finally:
            metrics.record_gateway_request(operation, time.perf_counter() - start)

        if response.status_code == 401:
            raise PaymentProviderError("Invalid API credentials", status_code=401)
        if response.status_code >= 400:
            logger.error(
                "maksekeskus_api_error",
                operation=operation,
                status=response.status_code,
                error=response.text[:500],
            )
            raise PaymentProviderError(
                f"API error: {response.status_code}", status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise PaymentProviderError("Gateway returned invalid JSON") from e

    async def create_transaction(self, params: TransactionParams) -> GatewayTransaction:
        """
        Create a transaction.

        Returns:
            Gateway transaction id, status and payment methods

        Raises:
            PaymentProviderError: If the call fails or the answer lacks an id
        """
        payload = build_transaction_payload(params)

        with trace_operation(
            "maksekeskus.create_transaction",
            reference=params.reference,
            amount_cents=params.amount_cents,
        ):
            data = await self._request(
                "create_transaction",
                "POST",
                "/v1/transactions",
                json=payload.model_dump(),
            )

        try:
            parsed = TransactionResponse.model_validate(data)
        except ValidationError as e:
            logger.error("maksekeskus_transaction_response_invalid", reference=params.reference)
            raise PaymentProviderError("Gateway response missing transaction id") from e

        logger.info(
            "maksekeskus_transaction_created",
            transaction_id=parsed.id,
            reference=params.reference,
            status=parsed.status,
        )

        return GatewayTransaction(
            transaction_id=parsed.id,
            status=parsed.status,
            payment_methods=parsed.payment_methods,
        )

    async def list_payment_methods(
        self, country: str = DEFAULT_COUNTRY, currency: str = "EUR"
    ) -> Any:
        """Fetch the current payment method listing, unchanged."""
        with trace_operation("maksekeskus.list_payment_methods", country=country):
            return await self._request(
                "list_payment_methods",
                "GET",
                "/v1/methods",
                params={"country": country, "currency": currency},
            )

    def verify_notification(self, payload: SignedPayload) -> PaymentNotification:
        """
        Verify a notification MAC, then parse the signed JSON.

        Raises:
            WebhookVerificationError: If the MAC does not match
            ValidationError: If the signed JSON is not a notification
        """
        if not verify_mac(payload.json_string, payload.mac, self._secret_key):
            raise WebhookVerificationError("MAC mismatch")

        return PaymentNotification.model_validate_json(payload.json_string)

"""
Checkout Orchestrator - Opens a gateway transaction and records the purchase.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

import secrets
import time
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from licensing.config import Settings
from licensing.db.models import Product, Purchase
from licensing.exceptions import InvalidInputError, PaymentProviderError, ResourceNotFoundError
from licensing.models.api import PaymentStatus
from licensing.models.domain import CheckoutResult
from licensing.observability import get_logger, metrics
from licensing.services.payment_provider import PaymentGateway, TransactionParams
from licensing.services.validation import is_valid_uuid

logger = get_logger(__name__)

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    """Lower-case base36 of a non-negative integer."""
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_purchase_token() -> str:
    """64 hex chars from a CSPRNG."""
    return secrets.token_hex(32)


def generate_reference(prefix: str) -> str:
    """Short human-visible merchant reference, e.g. ``TS-m2x9k1a0``."""
    return f"{prefix}-{to_base36(time.time_ns() // 1_000_000)}"


class CheckoutService:
    """Creates purchases backed by a gateway transaction."""

    def __init__(self, session: AsyncSession, gateway: PaymentGateway, settings: Settings) -> None:
        """Initialize checkout service with database session and gateway."""
        self.session = session
        self.gateway = gateway
        self.settings = settings

    async def create_checkout(self, product_id: str | None, customer_ip: str) -> CheckoutResult:
        """
        Start a checkout for an active product.

        The gateway is called before anything is written, so a gateway
        failure leaves no purchase row behind.

        Raises:
            InvalidInputError: If product_id is not a UUID
            ResourceNotFoundError: If the product does not exist or is inactive
            PaymentProviderError: If the gateway call fails
        """
        if not product_id or not is_valid_uuid(product_id):
            raise InvalidInputError("Valid product_id is required")

        stmt = select(Product).where(
            Product.id == UUID(product_id),
            Product.is_active.is_(True),
        )
        product = (await self.session.execute(stmt)).scalar_one_or_none()
        if product is None:
            raise ResourceNotFoundError("product", product_id)

        purchase_token = generate_purchase_token()
        reference = generate_reference(self.settings.purchase_reference_prefix)
        portal = self.settings.self_service_url.rstrip("/")

        params = TransactionParams(
            amount_cents=product.price_cents,
            currency=product.currency,
            reference=reference,
            customer_ip=customer_ip,
            return_url=f"{portal}/payment/success?token={purchase_token}",
            cancel_url=f"{portal}/payment/cancelled",
            notification_url=self.settings.notification_url,
            locale=self.settings.mk_locale,
            country=self.settings.mk_country,
        )

        try:
            transaction = await self.gateway.create_transaction(params)
        except PaymentProviderError as e:
            metrics.record_checkout(success=False, error_type="gateway")
            logger.error(
                "checkout_gateway_failed",
                product_id=product_id,
                reference=reference,
                error=e.message,
            )
            raise

        purchase = Purchase(
            product_id=product.id,
            purchase_token=purchase_token,
            mk_transaction_id=transaction.transaction_id,
            mk_status=PaymentStatus.CREATED.value,
            mk_amount_cents=product.price_cents,
            mk_currency=product.currency,
            mk_reference=reference,
            customer_ip=customer_ip,
        )
        self.session.add(purchase)
        await self.session.commit()

        metrics.record_checkout(success=True)
        logger.info(
            "checkout_created",
            product_id=product_id,
            app_slug=product.app_slug,
            transaction_id=transaction.transaction_id,
            reference=reference,
        )

        return CheckoutResult(
            purchase_token=purchase_token,
            transaction_id=transaction.transaction_id,
            payment_methods=transaction.payment_methods,
        )

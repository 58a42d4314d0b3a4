"""
Catalog Service - Product listing and cached gateway payment methods.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from licensing.db.models import PaymentMethodsCache, Product
from licensing.exceptions import InvalidInputError, PaymentProviderError
from licensing.models.api import ProductResponse
from licensing.observability import get_logger
from licensing.services.payment_provider import PaymentGateway

logger = get_logger(__name__)

CACHE_ROW_ID = "singleton"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class CatalogService:
    """Read-only product catalog plus the payment method cache."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize catalog service with database session."""
        self.session = session

    async def list_products(self, app_slug: str | None) -> list[ProductResponse]:
        """Active products of an app, by sort_order then price."""
        if not app_slug:
            raise InvalidInputError("app_slug parameter is required")

        stmt = (
            select(Product)
            .where(Product.app_slug == app_slug, Product.is_active.is_(True))
            .order_by(Product.sort_order, Product.price_cents)
        )
        products = (await self.session.execute(stmt)).scalars().all()

        return [
            ProductResponse(
                id=product.id,
                app_slug=product.app_slug,
                name=product.name,
                description=product.description,
                price_cents=product.price_cents,
                currency=product.currency,
                duration_days=product.duration_days,
                max_devices=product.max_devices,
                sort_order=product.sort_order,
            )
            for product in products
        ]

    async def get_payment_methods(self, gateway: PaymentGateway, ttl_seconds: int) -> Any:
        """
        Payment methods from the cache row, refreshed from the gateway when stale.

        A stale row is served when the gateway is unavailable.

        Raises:
            PaymentProviderError: If the gateway fails and nothing is cached
        """
        cached = await self.session.get(PaymentMethodsCache, CACHE_ROW_ID)
        now = _utc_now()

        if cached is not None and now - cached.fetched_at < timedelta(seconds=ttl_seconds):
            return cached.methods

        try:
            methods = await gateway.list_payment_methods("ee", "EUR")
        except PaymentProviderError as e:
            if cached is None:
                raise
            logger.warning(
                "payment_methods_stale_cache_served",
                fetched_at=cached.fetched_at.isoformat(),
                error=e.message,
            )
            return cached.methods

        if cached is None:
            self.session.add(
                PaymentMethodsCache(id=CACHE_ROW_ID, methods=methods, fetched_at=now)
            )
        else:
            cached.methods = methods
            cached.fetched_at = now
        await self.session.commit()

        logger.info("payment_methods_refreshed")
        return methods

"""
License Issuance Workflow - Turns a completed purchase into a license.

NO DICTIONARIES - All operations use strongly typed domain models.

Issuance is idempotent per purchase: the purchase row is locked while the
license is created, and a purchase that already has a license returns it.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from licensing.db.models import License, Product, Purchase
from licensing.exceptions import (
    InvalidInputError,
    LicenseKeyGenerationError,
    PaymentNotCompletedError,
    ResourceNotFoundError,
)
from licensing.models.api import PaymentStatus
from licensing.models.domain import IssuedLicense
from licensing.observability import get_logger, metrics
from licensing.services.entitlements import calculate_expires_at
from licensing.services.license_key import generate_license_key
from licensing.services.validation import is_valid_email, normalize_email

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class LicenseIssuanceService:
    """Issues licenses for completed purchases."""

    def __init__(self, session: AsyncSession, max_key_attempts: int = 5) -> None:
        """Initialize issuance service with database session."""
        self.session = session
        self.max_key_attempts = max_key_attempts

    async def claim_license(self, purchase_token: str | None, email: str | None) -> IssuedLicense:
        """
        Collect the buyer's email and issue the license for a purchase.

        Raises:
            InvalidInputError: If token or email is missing, or email is malformed
            ResourceNotFoundError: If no purchase has this token
            PaymentNotCompletedError: If the purchase is not COMPLETED
            LicenseKeyGenerationError: If no unused key was found
        """
        if not purchase_token or not email:
            raise InvalidInputError("purchase_token and email are required")
        if not is_valid_email(email):
            raise InvalidInputError("Invalid email format")

        stmt = select(Purchase).where(Purchase.purchase_token == purchase_token).with_for_update()
        purchase = (await self.session.execute(stmt)).scalar_one_or_none()
        if purchase is None:
            raise ResourceNotFoundError("purchase")

        if purchase.mk_status != PaymentStatus.COMPLETED.value:
            raise PaymentNotCompletedError(purchase.mk_status)

        if purchase.license_id is not None:
            existing = await self.session.get(License, purchase.license_id)
            if existing is not None:
                logger.info(
                    "license_already_issued",
                    purchase_id=str(purchase.id),
                    license_id=str(existing.id),
                )
                return IssuedLicense(
                    license_key=existing.license_key,
                    app_slug=existing.app_slug,
                    expires_at=existing.expires_at,
                    created=False,
                )

        product = await self.session.get(Product, purchase.product_id)
        if product is None:
            raise ResourceNotFoundError("product", str(purchase.product_id))

        owner_email = normalize_email(email)
        starts_at = _utc_now()
        license = await self._create_license(
            product,
            owner_email,
            starts_at,
            calculate_expires_at(starts_at, product.duration_days),
        )

        purchase.license_id = license.id
        purchase.customer_email = owner_email
        purchase.email_collected_at = starts_at
        await self.session.commit()

        metrics.record_license_issued(license.app_slug)
        logger.info(
            "license_issued",
            purchase_id=str(purchase.id),
            license_id=str(license.id),
            app_slug=license.app_slug,
            expires_at=license.expires_at.isoformat(),
        )

        return IssuedLicense(
            license_key=license.license_key,
            app_slug=license.app_slug,
            expires_at=license.expires_at,
            created=True,
        )

    async def _create_license(
        self,
        product: Product,
        owner_email: str,
        starts_at: datetime,
        expires_at: datetime,
    ) -> License:
        """Insert a license under a fresh key, retrying on key collisions."""
        for attempt in range(1, self.max_key_attempts + 1):
            license_key = generate_license_key()

            taken = await self.session.execute(
                select(License.id).where(License.license_key == license_key)
            )
            if taken.scalar_one_or_none() is not None:
                metrics.record_license_key_collision()
                logger.warning("license_key_collision", attempt=attempt)
                continue

            license = License(
                id=uuid4(),
                license_key=license_key,
                product_id=product.id,
                owner_email=owner_email,
                app_slug=product.app_slug,
                max_devices=product.max_devices,
                starts_at=starts_at,
                expires_at=expires_at,
                is_revoked=False,
            )
            try:
                # Savepoint: a concurrent insert of the same key must not
                # abort the outer transaction holding the purchase lock
                async with self.session.begin_nested():
                    self.session.add(license)
                    await self.session.flush()
            except IntegrityError:
                metrics.record_license_key_collision()
                logger.warning("license_key_collision", attempt=attempt, concurrent=True)
                continue

            return license

        logger.error("license_key_generation_exhausted", attempts=self.max_key_attempts)
        raise LicenseKeyGenerationError(self.max_key_attempts)

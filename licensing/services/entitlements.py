"""
Entitlement Engine - License validity, device admission and premium checks.

NO DICTIONARIES - All operations use strongly typed domain models.

The decision rules are pure functions over snapshots; EntitlementService
does the reads and writes around them.
"""

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from licensing.db.models import DeviceActivation, License
from licensing.exceptions import InvalidInputError, ResourceNotFoundError
from licensing.models.api import (
    ActivationStatus,
    DeviceInfo,
    LicenseProductInfo,
    LicenseSummary,
)
from licensing.models.domain import (
    ActivationResult,
    ActivationSnapshot,
    DeactivationResult,
    LicenseSnapshot,
    PremiumStatus,
    UserIdentity,
)
from licensing.observability import get_logger, metrics
from licensing.services.license_key import is_valid_license_key
from licensing.services.validation import is_valid_uuid, mask_email

logger = get_logger(__name__)

DEFAULT_MANAGE_URL = "https://minu.tarksober.ee"

# Unique (license_id, device_id) constraint on device_activations
DEVICE_BINDING_CONSTRAINT = "uq_device_activation_license_device"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


# ============================================================================
# Decision rules
# ============================================================================


def check_license_validity(license: LicenseSnapshot | None, now: datetime | None = None) -> bool:
    """A license is valid iff it exists, is not revoked and now < expires_at."""
    if license is None:
        return False
    if license.is_revoked:
        return False
    return (now or _utc_now()) < license.expires_at


def determine_activation_result(
    license: LicenseSnapshot,
    active_device_count: int,
    device_already_active: bool,
    manage_url: str = DEFAULT_MANAGE_URL,
) -> ActivationResult:
    """
    Decide whether a device may use a license.

    The caller has already checked validity. A device that is already bound
    is always admitted, even when the license is at its cap.
    """
    if device_already_active:
        return ActivationResult(status=ActivationStatus.ACTIVE, expires_at=license.expires_at)

    if active_device_count >= license.max_devices:
        return ActivationResult(
            status=ActivationStatus.DEVICE_LIMIT_REACHED,
            owner_email_hint=mask_email(license.owner_email),
            manage_url=manage_url,
        )

    return ActivationResult(status=ActivationStatus.ACTIVE, expires_at=license.expires_at)


def is_premium_active(
    activations: Iterable[ActivationSnapshot], now: datetime | None = None
) -> PremiumStatus:
    """First active binding to a valid license wins."""
    now = now or _utc_now()
    for activation in activations:
        if activation.is_active and check_license_validity(activation.license, now):
            return PremiumStatus(is_premium=True, expires_at=activation.license.expires_at)
    return PremiumStatus(is_premium=False)


def calculate_expires_at(starts_at: datetime, duration_days: int) -> datetime:
    """Expiry of a license issued at starts_at."""
    return starts_at + timedelta(days=duration_days)


def snapshot_license(license: License) -> LicenseSnapshot:
    """Convert ORM model to the snapshot the decision rules read."""
    return LicenseSnapshot(
        license_id=license.id,
        license_key=license.license_key,
        app_slug=license.app_slug,
        owner_email=license.owner_email,
        max_devices=license.max_devices,
        expires_at=license.expires_at,
        is_revoked=license.is_revoked,
    )


# ============================================================================
# Service
# ============================================================================


class EntitlementService:
    """Device activation, deactivation and entitlement queries."""

    def __init__(self, session: AsyncSession, manage_url: str = DEFAULT_MANAGE_URL) -> None:
        """Initialize entitlement service with database session."""
        self.session = session
        self.manage_url = manage_url

    async def activate_device(
        self,
        license_key: str | None,
        device_id: str | None,
        app_slug: str | None,
    ) -> ActivationResult:
        """
        Bind a device to a license if the license admits it.

        Malformed, unknown, wrong-app, revoked and expired keys all answer
        ``invalid`` so the response does not reveal which check failed.
        """
        if not license_key or not device_id or not app_slug:
            raise InvalidInputError("license_key, device_id, and app_slug are required")

        result = await self._activate(license_key, device_id, app_slug)
        metrics.record_activation(result.status.value)
        logger.info(
            "device_activation_evaluated",
            app_slug=app_slug,
            status=result.status.value,
        )
        return result

    async def _activate(self, license_key: str, device_id: str, app_slug: str) -> ActivationResult:
        if not is_valid_license_key(license_key):
            return ActivationResult(status=ActivationStatus.INVALID)

        stmt = select(License).where(
            License.license_key == license_key,
            License.app_slug == app_slug,
        )
        license = (await self.session.execute(stmt)).scalar_one_or_none()
        if license is None:
            return ActivationResult(status=ActivationStatus.INVALID)

        snapshot = snapshot_license(license)
        if not check_license_validity(snapshot, _utc_now()):
            return ActivationResult(status=ActivationStatus.INVALID)

        stmt = select(DeviceActivation).where(
            DeviceActivation.license_id == license.id,
            DeviceActivation.device_id == device_id,
        )
        existing = (await self.session.execute(stmt)).scalar_one_or_none()
        already_active = existing is not None and existing.is_active

        active_count = 0
        if not already_active:
            count_stmt = (
                select(func.count())
                .select_from(DeviceActivation)
                .where(
                    DeviceActivation.license_id == license.id,
                    DeviceActivation.is_active.is_(True),
                )
            )
            active_count = (await self.session.execute(count_stmt)).scalar_one()

        decision = determine_activation_result(
            snapshot, active_count, already_active, self.manage_url
        )
        if decision.status != ActivationStatus.ACTIVE or already_active:
            return decision

        now = _utc_now()
        if existing is not None:
            # Previously deactivated on this license - revive the same row
            existing.is_active = True
            existing.activated_at = now
            existing.deactivated_at = None
            await self.session.commit()
            return decision

        self.session.add(
            DeviceActivation(
                license_id=license.id,
                device_id=device_id,
                activated_at=now,
                is_active=True,
            )
        )
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            if DEVICE_BINDING_CONSTRAINT not in str(e.orig):
                raise
            # Same device bound concurrently by another request
            logger.info("device_activation_race_resolved", license_id=str(snapshot.license_id))

        return decision

    async def deactivate_device(
        self, activation_id: str | None, user: UserIdentity
    ) -> DeactivationResult:
        """
        Release a device binding owned by the user.

        Raises:
            InvalidInputError: If activation_id is not a UUID
            ResourceNotFoundError: If no such binding belongs to the user
        """
        if not activation_id or not is_valid_uuid(activation_id):
            raise InvalidInputError("Valid activation_id is required")

        stmt = (
            select(DeviceActivation)
            .join(License, DeviceActivation.license_id == License.id)
            .where(
                DeviceActivation.id == UUID(activation_id),
                License.user_id == user.external_id,
            )
        )
        activation = (await self.session.execute(stmt)).scalar_one_or_none()
        if activation is None:
            raise ResourceNotFoundError("activation")

        if not activation.is_active:
            return DeactivationResult(ok=True, message="Already deactivated")

        activation.is_active = False
        activation.deactivated_at = _utc_now()
        await self.session.commit()

        logger.info(
            "device_deactivated",
            activation_id=activation_id,
            user_id=user.external_id,
        )
        return DeactivationResult(ok=True)

    async def list_user_licenses(self, user: UserIdentity) -> list[LicenseSummary]:
        """Licenses linked to the user, newest first, with their active devices."""
        stmt = (
            select(License)
            .where(License.user_id == user.external_id)
            .order_by(License.created_at.desc())
        )
        licenses = (await self.session.execute(stmt)).scalars().all()

        now = _utc_now()
        summaries: list[LicenseSummary] = []
        for license in licenses:
            devices = [
                DeviceInfo(
                    id=activation.id,
                    device_id=activation.device_id,
                    activated_at=activation.activated_at,
                    is_active=activation.is_active,
                )
                for activation in license.activations
                if activation.is_active
            ]
            product = None
            if license.product is not None:
                product = LicenseProductInfo(
                    name=license.product.name,
                    description=license.product.description,
                    duration_days=license.product.duration_days,
                )
            summaries.append(
                LicenseSummary(
                    id=license.id,
                    license_key=license.license_key,
                    app_slug=license.app_slug,
                    max_devices=license.max_devices,
                    starts_at=license.starts_at,
                    expires_at=license.expires_at,
                    is_revoked=license.is_revoked,
                    is_expired=license.expires_at <= now,
                    product=product,
                    active_device_count=len(devices),
                    devices=devices,
                )
            )
        return summaries

    async def get_premium_status(
        self, device_id: str | None, app_slug: str | None
    ) -> PremiumStatus:
        """Whether the device holds an active binding to a valid license for the app."""
        if not device_id or not app_slug:
            raise InvalidInputError("device_id and app_slug parameters are required")

        stmt = (
            select(DeviceActivation)
            .join(License, DeviceActivation.license_id == License.id)
            .where(
                DeviceActivation.device_id == device_id,
                DeviceActivation.is_active.is_(True),
                License.app_slug == app_slug,
            )
        )
        activations = (await self.session.execute(stmt)).scalars().all()

        return is_premium_active(
            ActivationSnapshot(
                is_active=activation.is_active,
                license=snapshot_license(activation.license),
            )
            for activation in activations
        )

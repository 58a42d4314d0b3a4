"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from licensing.models.api import ActivationStatus


@dataclass(frozen=True)
class UserIdentity:
    """Authenticated user supplied by the identity provider."""

    external_id: str
    email: str | None = None
    email_verified: bool = False
    name: str | None = None

    def __post_init__(self) -> None:
        """Validate identity fields."""
        if not self.external_id:
            raise ValueError("external_id cannot be empty")


@dataclass(frozen=True)
class LicenseSnapshot:
    """Immutable view of a license used by the entitlement rules."""

    license_id: UUID
    license_key: str
    app_slug: str
    owner_email: str
    max_devices: int
    expires_at: datetime
    is_revoked: bool


@dataclass(frozen=True)
class ActivationSnapshot:
    """A device binding together with the license it points at."""

    is_active: bool
    license: LicenseSnapshot


@dataclass(frozen=True)
class ActivationResult:
    """Admission decision for a device activation."""

    status: ActivationStatus
    expires_at: datetime | None = None
    owner_email_hint: str | None = None
    manage_url: str | None = None


@dataclass(frozen=True)
class PremiumStatus:
    """Whether a device currently holds a valid entitlement."""

    is_premium: bool
    expires_at: datetime | None = None


@dataclass(frozen=True)
class DeactivationResult:
    """Result of deactivating a device binding."""

    ok: bool
    message: str | None = None


@dataclass(frozen=True)
class CheckoutResult:
    """Result of a successful checkout."""

    purchase_token: str
    transaction_id: str
    payment_methods: Any


@dataclass(frozen=True)
class IssuedLicense:
    """Public fields of an issued license and whether this call created it."""

    license_key: str
    app_slug: str
    expires_at: datetime
    created: bool


class WebhookOutcome(str, Enum):
    """What the webhook processor did with a delivery."""

    MALFORMED = "malformed"
    INVALID_SIGNATURE = "invalid_signature"
    UNKNOWN_TRANSACTION = "unknown_transaction"
    ALREADY_COMPLETED = "already_completed"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True)
class WebhookDecision:
    """Transition chosen for a purchase given an incoming gateway status."""

    outcome: WebhookOutcome
    next_status: str | None = None
    stamp_paid_at: bool = False

"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentStatus(str, Enum):
    """Gateway transaction statuses the service acts on."""

    CREATED = "CREATED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class ActivationStatus(str, Enum):
    """Outcome of a device activation request."""

    ACTIVE = "active"
    INVALID = "invalid"
    DEVICE_LIMIT_REACHED = "device_limit_reached"


# ============================================================================
# Catalog Models
# ============================================================================


class ProductResponse(BaseModel):
    """Public product listing entry."""

    id: UUID
    app_slug: str
    name: str
    description: str | None = None
    price_cents: int
    currency: str
    duration_days: int
    max_devices: int
    sort_order: int


# ============================================================================
# Checkout Models
# ============================================================================


class CheckoutRequest(BaseModel):
    """POST /v1/checkout request body."""

    product_id: str | None = Field(None, max_length=64)


class CheckoutResponse(BaseModel):
    """POST /v1/checkout response."""

    purchase_token: str
    payment_methods: Any = Field(
        None, description="Gateway payment-method listing, passed through unchanged"
    )
    transaction_id: str


# ============================================================================
# License Claim Models
# ============================================================================


class ClaimLicenseRequest(BaseModel):
    """POST /v1/licenses/claim request body."""

    purchase_token: str | None = Field(None, max_length=128)
    email: str | None = Field(None, max_length=255)


class ClaimLicenseResponse(BaseModel):
    """Public fields of an issued license."""

    license_key: str
    app_slug: str
    expires_at: datetime


# ============================================================================
# Device Activation Models
# ============================================================================


class ActivateDeviceRequest(BaseModel):
    """POST /v1/devices/activate request body."""

    license_key: str | None = Field(None, max_length=64)
    device_id: str | None = Field(None, max_length=255)
    app_slug: str | None = Field(None, max_length=100)


class ActivationResponse(BaseModel):
    """POST /v1/devices/activate response."""

    status: ActivationStatus
    expires_at: datetime | None = None
    owner_email_hint: str | None = None
    manage_url: str | None = None


class DeactivateDeviceRequest(BaseModel):
    """POST /v1/devices/deactivate request body."""

    activation_id: str | None = Field(None, max_length=64)


class DeactivateDeviceResponse(BaseModel):
    """POST /v1/devices/deactivate response."""

    ok: bool
    message: str | None = None


# ============================================================================
# Account Models
# ============================================================================


class LicenseProductInfo(BaseModel):
    """Product fields shown with a license."""

    name: str
    description: str | None = None
    duration_days: int


class DeviceInfo(BaseModel):
    """An active device bound to a license."""

    id: UUID
    device_id: str
    activated_at: datetime
    is_active: bool


class LicenseSummary(BaseModel):
    """One license in GET /v1/licenses/mine."""

    id: UUID
    license_key: str
    app_slug: str
    max_devices: int
    starts_at: datetime
    expires_at: datetime
    is_revoked: bool
    is_expired: bool
    product: LicenseProductInfo | None = None
    active_device_count: int
    devices: list[DeviceInfo]


class LinkAccountResponse(BaseModel):
    """POST /v1/account/link response."""

    linked_count: int


class PremiumStatusResponse(BaseModel):
    """GET /v1/premium-status response."""

    is_premium: bool
    expires_at: datetime | None = None


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: datetime

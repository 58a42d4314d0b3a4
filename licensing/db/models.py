"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Product(Base):
    """
    ORM model for products table.

    A sellable SKU. Rows referenced by a purchase or license are never
    edited, so price and duration history stay intact.
    """

    __tablename__ = "products"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    app_slug: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    max_devices: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_product_price_non_negative"),
        CheckConstraint("duration_days > 0", name="ck_product_duration_positive"),
        CheckConstraint("max_devices > 0", name="ck_product_max_devices_positive"),
        Index("idx_products_app_slug_active", "app_slug", "is_active"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Product(id={self.id}, app_slug={self.app_slug}, "
            f"price_cents={self.price_cents}, duration_days={self.duration_days})>"
        )


class Purchase(Base):
    """
    ORM model for purchases table.

    One checkout attempt and its gateway status. Status is written only by
    the webhook processor; email and license link only by license issuance.
    """

    __tablename__ = "purchases"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    product_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )

    # Buyer-facing capability to claim the license
    purchase_token: Mapped[str] = mapped_column(String(64), nullable=False)

    # Gateway transaction
    mk_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mk_status: Mapped[str] = mapped_column(String(50), nullable=False, default="CREATED")
    mk_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    mk_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    mk_reference: Mapped[str] = mapped_column(String(100), nullable=False)

    customer_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_collected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    license_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("licenses.id", ondelete="SET NULL"), nullable=True
    )

    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("purchase_token", name="uq_purchases_token"),
        UniqueConstraint("mk_transaction_id", name="uq_purchases_mk_transaction"),
        CheckConstraint("mk_amount_cents >= 0", name="ck_purchase_amount_non_negative"),
        Index("idx_purchases_mk_status", "mk_status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Purchase(id={self.id}, mk_transaction_id={self.mk_transaction_id}, "
            f"mk_status={self.mk_status})>"
        )


class License(Base):
    """
    ORM model for licenses table.

    The entitlement itself. expires_at and max_devices are fixed at issuance
    and never recomputed from the product.
    """

    __tablename__ = "licenses"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    license_key: Mapped[str] = mapped_column(String(14), nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )

    owner_email: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    app_slug: Mapped[str] = mapped_column(String(100), nullable=False)
    max_devices: Mapped[int] = mapped_column(Integer, nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    product: Mapped[Product] = relationship(lazy="selectin")
    activations: Mapped[list["DeviceActivation"]] = relationship(
        back_populates="license", lazy="selectin"
    )

    __table_args__ = (
        UniqueConstraint("license_key", name="uq_licenses_license_key"),
        CheckConstraint("max_devices > 0", name="ck_license_max_devices_positive"),
        CheckConstraint("expires_at > starts_at", name="ck_license_expiry_after_start"),
        Index("idx_licenses_owner_email", "owner_email"),
        Index("idx_licenses_user_id", "user_id", postgresql_where=(user_id.isnot(None))),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<License(id={self.id}, license_key={self.license_key}, "
            f"app_slug={self.app_slug}, expires_at={self.expires_at})>"
        )


class DeviceActivation(Base):
    """
    ORM model for device_activations table.

    One row per (license, device). Deactivation flips is_active instead of
    deleting, so the history is preserved.
    """

    __tablename__ = "device_activations"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    license_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("licenses.id", ondelete="CASCADE"), nullable=False
    )
    device_id: Mapped[str] = mapped_column(String(255), nullable=False)

    activated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    license: Mapped[License] = relationship(back_populates="activations", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("license_id", "device_id", name="uq_device_activation_license_device"),
        Index("idx_device_activations_device_id", "device_id"),
        Index(
            "idx_device_activations_active",
            "license_id",
            postgresql_where=(is_active.is_(True)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<DeviceActivation(id={self.id}, license_id={self.license_id}, "
            f"device_id={self.device_id}, is_active={self.is_active})>"
        )


class PaymentMethodsCache(Base):
    """
    ORM model for payment_methods_cache table.

    Single row holding the last payment-method listing fetched from the
    gateway.
    """

    __tablename__ = "payment_methods_cache"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default="singleton")
    methods: Mapped[Any] = mapped_column(JSONB, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

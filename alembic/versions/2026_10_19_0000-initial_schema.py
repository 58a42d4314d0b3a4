"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create products, licenses, purchases, device activations and the payment method cache."""

    # ========================================================================
    # Create products table
    # ========================================================================
    op.create_table(
        'products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('app_slug', sa.String(100), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='EUR'),
        sa.Column('duration_days', sa.Integer(), nullable=False),
        sa.Column('max_devices', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('price_cents >= 0', name='ck_product_price_non_negative'),
        sa.CheckConstraint('duration_days > 0', name='ck_product_duration_positive'),
        sa.CheckConstraint('max_devices > 0', name='ck_product_max_devices_positive'),
    )
    op.create_index('idx_products_app_slug_active', 'products', ['app_slug', 'is_active'])

    # ========================================================================
    # Create licenses table
    # ========================================================================
    op.create_table(
        'licenses',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('license_key', sa.String(14), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('owner_email', sa.String(255), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=True),
        sa.Column('app_slug', sa.String(100), nullable=False),
        sa.Column('max_devices', sa.Integer(), nullable=False),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('license_key', name='uq_licenses_license_key'),
        sa.CheckConstraint('max_devices > 0', name='ck_license_max_devices_positive'),
        sa.CheckConstraint('expires_at > starts_at', name='ck_license_expiry_after_start'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_licenses_product', ondelete='RESTRICT'),
    )
    op.create_index('idx_licenses_owner_email', 'licenses', ['owner_email'])
    op.create_index('idx_licenses_user_id', 'licenses', ['user_id'], postgresql_where=sa.text('user_id IS NOT NULL'))

    # ========================================================================
    # Create purchases table
    # ========================================================================
    op.create_table(
        'purchases',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('purchase_token', sa.String(64), nullable=False),
        sa.Column('mk_transaction_id', sa.String(255), nullable=True),
        sa.Column('mk_status', sa.String(50), nullable=False, server_default='CREATED'),
        sa.Column('mk_amount_cents', sa.Integer(), nullable=False),
        sa.Column('mk_currency', sa.String(3), nullable=False),
        sa.Column('mk_reference', sa.String(100), nullable=False),
        sa.Column('customer_ip', sa.String(64), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('email_collected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('license_id', UUID(as_uuid=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('purchase_token', name='uq_purchases_token'),
        sa.UniqueConstraint('mk_transaction_id', name='uq_purchases_mk_transaction'),
        sa.CheckConstraint('mk_amount_cents >= 0', name='ck_purchase_amount_non_negative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_purchases_product', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['license_id'], ['licenses.id'], name='fk_purchases_license', ondelete='SET NULL'),
    )
    op.create_index('idx_purchases_mk_status', 'purchases', ['mk_status'])

    # ========================================================================
    # Create device_activations table
    # ========================================================================
    op.create_table(
        'device_activations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('license_id', UUID(as_uuid=True), nullable=False),
        sa.Column('device_id', sa.String(255), nullable=False),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),

        sa.UniqueConstraint('license_id', 'device_id', name='uq_device_activation_license_device'),
        sa.ForeignKeyConstraint(['license_id'], ['licenses.id'], name='fk_device_activations_license', ondelete='CASCADE'),
    )
    op.create_index('idx_device_activations_device_id', 'device_activations', ['device_id'])
    op.create_index('idx_device_activations_active', 'device_activations', ['license_id'], postgresql_where=sa.text('is_active'))

    # ========================================================================
    # Create payment_methods_cache table
    # ========================================================================
    op.create_table(
        'payment_methods_cache',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('methods', JSONB(), nullable=False),
        sa.Column('fetched_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('payment_methods_cache')
    op.drop_table('device_activations')
    op.drop_table('purchases')
    op.drop_table('licenses')
    op.drop_table('products')

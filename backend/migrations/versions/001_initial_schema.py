"""
Alembic migration: Initial marketplace schema.

Creates users, sites, orders, order_status_history and comments. Enumerated
columns are stored as constrained VARCHARs holding the lower-case enum values,
and the orders table enforces that a rental expiry exists exactly while an
order is rented.

Revision ID: 001
Revises:
Create Date: 2026-10-18 10:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment='Timestamp when record was created',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment='Timestamp when record was last updated',
        ),
    ]


def upgrade() -> None:
    """
    Create the marketplace tables, constraints and indexes.
    """
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column(
            'role',
            sa.String(length=20),
            nullable=False,
            server_default=sa.text("'user'"),
        ),
        sa.Column(
            'is_active',
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        *_timestamps(),
        sa.CheckConstraint('length(email) >= 3', name='ck_users_email_min_length'),
        sa.CheckConstraint("role IN ('user', 'admin')", name='ck_users_role'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'sites',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('price_sale', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('price_rent', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('main_image_url', sa.String(length=1024), nullable=False),
        sa.Column('site_link', sa.String(length=1024), nullable=False),
        sa.Column('additional_links', sa.JSON(), nullable=False),
        sa.Column(
            'is_available',
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        *_timestamps(),
        sa.CheckConstraint(
            'price_sale IS NULL OR price_sale >= 0',
            name='ck_sites_price_sale_non_negative',
        ),
        sa.CheckConstraint(
            'price_rent IS NULL OR price_rent >= 0',
            name='ck_sites_price_rent_non_negative',
        ),
    )
    op.create_index(
        'ix_sites_available_created', 'sites', ['is_available', 'created_at']
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'user_id',
            sa.Integer(),
            sa.ForeignKey('users.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'site_id',
            sa.Integer(),
            sa.ForeignKey('sites.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('purchase_type', sa.String(length=10), nullable=False),
        sa.Column(
            'transaction_amount',
            sa.Numeric(precision=10, scale=2),
            nullable=False,
            comment='Charged amount, immutable after creation',
        ),
        sa.Column(
            'status',
            sa.String(length=20),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column('payment_method', sa.String(length=10), nullable=False),
        sa.Column(
            'gateway_reference',
            sa.String(length=255),
            nullable=True,
            comment='Payment gateway identifier, assigned at most once',
        ),
        sa.Column('rent_expiry_date', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('gateway_reference', name='uq_orders_gateway_reference'),
        sa.CheckConstraint('transaction_amount > 0', name='ck_orders_amount_positive'),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'rented', 'rejected')",
            name='ck_orders_status',
        ),
        sa.CheckConstraint(
            "purchase_type IN ('sale', 'rent')",
            name='ck_orders_purchase_type',
        ),
        sa.CheckConstraint(
            "(status = 'rented' AND rent_expiry_date IS NOT NULL) "
            "OR (status <> 'rented' AND rent_expiry_date IS NULL)",
            name='ck_orders_rent_expiry_iff_rented',
        ),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_site_id', 'orders', ['site_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'])
    op.create_index(
        'ix_orders_user_site_status', 'orders', ['user_id', 'site_id', 'status']
    )

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'order_id',
            sa.Integer(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('from_status', sa.String(length=20), nullable=False),
        sa.Column('to_status', sa.String(length=20), nullable=False),
        sa.Column('gateway_payment_id', sa.String(length=255), nullable=True),
        sa.Column('gateway_status', sa.String(length=50), nullable=True),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        'ix_order_status_history_order_created',
        'order_status_history',
        ['order_id', 'created_at'],
    )

    op.create_table(
        'comments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('comment_text', sa.Text(), nullable=True),
        sa.Column(
            'user_id',
            sa.Integer(),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'site_id',
            sa.Integer(),
            sa.ForeignKey('sites.id', ondelete='CASCADE'),
            nullable=False,
        ),
        *_timestamps(),
        sa.CheckConstraint(
            'rating >= 1 AND rating <= 5', name='ck_comments_rating_range'
        ),
        sa.UniqueConstraint('user_id', 'site_id', name='uq_comments_user_site'),
    )
    op.create_index('ix_comments_user_id', 'comments', ['user_id'])
    op.create_index('ix_comments_site_id', 'comments', ['site_id'])


def downgrade() -> None:
    """
    Drop all marketplace tables in reverse dependency order.
    """
    op.drop_table('comments')
    op.drop_table('order_status_history')
    op.drop_table('orders')
    op.drop_table('sites')
    op.drop_table('users')

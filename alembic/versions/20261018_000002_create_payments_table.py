"""Create payments table

Revision ID: 20261018_000002
Revises: 20261018_000001
Create Date: 2026-10-18

Rent payments made through M-Pesa STK push. Callbacks are matched on
checkout_request_id, which is unique once assigned.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261018_000002'
down_revision: Union[str, None] = '20261018_000001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CORRELATED_ONLY = sa.text("checkout_request_id IS NOT NULL")


def upgrade() -> None:
    """Create the payments table."""
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('lease_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('phone_number', sa.String(length=20), nullable=True),
        sa.Column(
            'status',
            sa.Enum('pending', 'successful', 'failed', name='payment_status',
                    native_enum=False, create_constraint=True),
            nullable=False,
            server_default='pending',
        ),
        sa.Column('transaction_ref', sa.String(length=64), nullable=False),
        sa.Column('merchant_request_id', sa.String(length=100), nullable=True),
        sa.Column('checkout_request_id', sa.String(length=100), nullable=True),
        sa.Column('mpesa_receipt_number', sa.String(length=50), nullable=True),
        sa.Column('settled_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_ref', name='uq_payments_transaction_ref'),
        sa.ForeignKeyConstraint(['tenant_id'], ['users.id'], name='fk_payments_tenant_id'),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], name='fk_payments_unit_id'),
        sa.ForeignKeyConstraint(
            ['lease_id'],
            ['leases.id'],
            name='fk_payments_lease_id',
            ondelete='SET NULL',
        ),
    )

    # Create indexes for common queries
    op.create_index('ix_payments_tenant_id', 'payments', ['tenant_id'])
    op.create_index('ix_payments_unit_id', 'payments', ['unit_id'])
    op.create_index('ix_payments_lease_id', 'payments', ['lease_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index(
        'uq_payments_checkout_request_id',
        'payments',
        ['checkout_request_id'],
        unique=True,
        postgresql_where=CORRELATED_ONLY,
        sqlite_where=CORRELATED_ONLY,
        mssql_where=CORRELATED_ONLY,
    )


def downgrade() -> None:
    """Drop the payments table."""
    op.drop_index('uq_payments_checkout_request_id', table_name='payments')
    op.drop_table('payments')

"""Add payment method and receipt url to payments

Revision ID: 20261018_000003
Revises: 20261018_000002
Create Date: 2026-10-18

Payments made outside M-Pesa (bank, cash, other) are recorded without a
gateway push and settled by the landlord, optionally with a receipt link.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261018_000003'
down_revision: Union[str, None] = '20261018_000002'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add payment_method (existing rows are M-Pesa) and receipt_url."""
    with op.batch_alter_table('payments') as batch_op:
        batch_op.add_column(
            sa.Column(
                'payment_method',
                sa.Enum('mpesa', 'bank', 'cash', 'other', name='payment_method',
                        native_enum=False, create_constraint=True),
                nullable=False,
                server_default='mpesa',
            )
        )
        batch_op.add_column(sa.Column('receipt_url', sa.String(length=500), nullable=True))


def downgrade() -> None:
    """Drop payment_method and receipt_url."""
    with op.batch_alter_table('payments') as batch_op:
        batch_op.drop_column('receipt_url')
        batch_op.drop_column('payment_method')

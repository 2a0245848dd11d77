"""Rate limit window store

Revision ID: 001_rate_limits
Revises: 
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision: str = '001_rate_limits'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create the rate_limits table:
    - unique (identifier, action, window_start): the increment upsert key
    - idx_rate_limits_lookup: live-count aggregation
    - idx_rate_limits_window_end: expired-window sweep
    """
    bind = op.get_bind()
    inspector = inspect(bind)

    if 'rate_limits' in inspector.get_table_names():
        return

    op.create_table(
        'rate_limits',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('identifier', sa.String(length=200), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('window_start', sa.BigInteger(), nullable=False),
        sa.Column('window_end', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('identifier', 'action', 'window_start', name='uq_rate_limits_window'),
    )

    op.create_index(
        'idx_rate_limits_lookup',
        'rate_limits',
        ['identifier', 'action', 'window_end']
    )

    op.create_index(
        'idx_rate_limits_window_end',
        'rate_limits',
        ['window_end']
    )


def downgrade() -> None:
    """Drop the rate_limits table and its indexes."""
    op.drop_index('idx_rate_limits_window_end', table_name='rate_limits')
    op.drop_index('idx_rate_limits_lookup', table_name='rate_limits')
    op.drop_table('rate_limits')

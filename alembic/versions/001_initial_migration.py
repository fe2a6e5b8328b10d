"""Initial migration - indexed transactions and staking events

Revision ID: 001
Revises: 
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum types
    op.execute("CREATE TYPE ingestionsource AS ENUM ('BACKFILL', 'REALTIME')")
    op.execute("CREATE TYPE eventtype AS ENUM ('DEPOSIT', 'WITHDRAW', 'FEE_UPDATE', 'UNKNOWN')")

    # Create indexed_transactions table
    op.create_table('indexed_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('program_id', sa.String(length=44), nullable=False, comment='Monitored program address'),
        sa.Column('signature', sa.String(length=88), nullable=False, comment='Transaction signature'),
        sa.Column('slot', sa.BigInteger(), nullable=False, comment='Blockchain slot number'),
        sa.Column('block_time', sa.BigInteger(), nullable=True, comment='Unix block timestamp'),
        sa.Column('err', sa.JSON(), nullable=True, comment='On-chain error, null on success'),
        sa.Column('logs', sa.JSON(), nullable=False, comment='Raw log lines'),
        sa.Column('source', postgresql.ENUM('BACKFILL', 'REALTIME', name='ingestionsource', create_type=False), nullable=False, comment='Indexing mode that stored the row'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='Row creation time'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='Row update time'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_tx_program_signature_unique', 'indexed_transactions', ['program_id', 'signature'], unique=True)
    op.create_index('idx_tx_program_slot', 'indexed_transactions', ['program_id', 'slot'])

    # Create staking_events table
    op.create_table('staking_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_type', postgresql.ENUM('DEPOSIT', 'WITHDRAW', 'FEE_UPDATE', 'UNKNOWN', name='eventtype', create_type=False), nullable=False, comment='Type of event'),
        sa.Column('signature', sa.String(length=88), nullable=False, comment='Transaction signature'),
        sa.Column('log_index', sa.Integer(), nullable=False, comment='Position of the log line within the transaction'),
        sa.Column('program_id', sa.String(length=44), nullable=False, comment='Emitting program address'),
        sa.Column('slot', sa.BigInteger(), nullable=False, comment='Blockchain slot number'),
        sa.Column('block_time', sa.BigInteger(), nullable=True, comment='Unix block timestamp'),
        sa.Column('staker', sa.String(length=44), nullable=True),
        sa.Column('amount', sa.String(length=20), nullable=True),
        sa.Column('fee', sa.String(length=20), nullable=True),
        sa.Column('total_staked', sa.String(length=20), nullable=True),
        sa.Column('old_fee', sa.String(length=20), nullable=True),
        sa.Column('new_fee', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='Row creation time'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='Row update time'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_event_signature_unique', 'staking_events', ['signature', 'event_type', 'log_index'], unique=True)
    op.create_index('idx_event_program_type_slot', 'staking_events', ['program_id', 'event_type', 'slot'])
    op.create_index('idx_event_staker_slot', 'staking_events', ['staker', 'slot'])


def downgrade() -> None:
    op.drop_index('idx_event_staker_slot', table_name='staking_events')
    op.drop_index('idx_event_program_type_slot', table_name='staking_events')
    op.drop_index('idx_event_signature_unique', table_name='staking_events')
    op.drop_table('staking_events')

    op.drop_index('idx_tx_program_slot', table_name='indexed_transactions')
    op.drop_index('idx_tx_program_signature_unique', table_name='indexed_transactions')
    op.drop_table('indexed_transactions')

    op.execute('DROP TYPE IF EXISTS eventtype')
    op.execute('DROP TYPE IF EXISTS ingestionsource')

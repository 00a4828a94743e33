"""Create outbox_events and outbox_health tables

Revision ID: 20260301000000
Revises:
Create Date: 2026-03-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20260301000000'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'outbox_events',
        sa.Column('id', sa.Uuid(), primary_key=True, nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False,
                  comment='studio.sync, client.sync, client.stats, studio.owner.sync'),
        sa.Column('payload', sa.Text(), nullable=False, comment='JSON body sent to the admin system as is'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('next_retry_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('locked_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("status in ('pending','processing')", name='ck_outbox_events_status'),
    )
    op.create_index('ix_outbox_events_event_type', 'outbox_events', ['event_type'])
    op.create_index('ix_outbox_events_claim', 'outbox_events', ['status', 'next_retry_at', 'created_at'])

    op.create_table(
        'outbox_health',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default=sa.text("'healthy'")),
        sa.Column('pending_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('oldest_pending_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('last_degraded_at', sa.DateTime(), nullable=True),
        sa.Column('last_recovered_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("status in ('healthy','degraded')", name='ck_outbox_health_status'),
    )


def downgrade() -> None:
    op.drop_table('outbox_health')

    op.drop_index('ix_outbox_events_claim', table_name='outbox_events')
    op.drop_index('ix_outbox_events_event_type', table_name='outbox_events')
    op.drop_table('outbox_events')

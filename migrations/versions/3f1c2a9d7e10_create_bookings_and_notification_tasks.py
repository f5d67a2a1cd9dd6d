"""create_bookings_and_notification_tasks

Revision ID: 3f1c2a9d7e10
Revises:
Create Date: 2026-10-19 09:12:44.318205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7e10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


BOOKING_STATUSES = ('pending', 'payment_pending', 'confirmed', 'completed', 'cancelled')
NOTIFICATION_KINDS = ('confirmation', 'reschedule', 'cancellation')
NOTIFICATION_STATUSES = ('pending', 'sent', 'failed')

ACTIVE_EMAIL_PREDICATE = sa.text("status IN ('pending', 'confirmed') AND payment_id IS NULL")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'bookings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True, comment='Account id when booked by a signed-in user'),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column(
            'status',
            sa.Enum(*BOOKING_STATUSES, name='booking_status', native_enum=False, length=32),
            nullable=False,
        ),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('meeting_id', sa.String(length=32), nullable=True),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('payment_id', sa.String(length=64), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=True, comment='Smallest currency unit (paise, cents)'),
        sa.Column('currency', sa.String(length=8), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
    )
    op.create_index('ix_bookings_email', 'bookings', ['email'])
    op.create_index('ix_bookings_user_id', 'bookings', ['user_id'])
    op.create_index('ix_bookings_status', 'bookings', ['status'])
    op.create_index('ix_bookings_scheduled_at', 'bookings', ['scheduled_at'])
    # At most one unpaid pending/confirmed booking per requester
    op.create_index(
        'uq_bookings_active_email',
        'bookings',
        ['email'],
        unique=True,
        postgresql_where=ACTIVE_EMAIL_PREDICATE,
        sqlite_where=ACTIVE_EMAIL_PREDICATE,
    )

    op.create_table(
        'notification_tasks',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=False),
        sa.Column(
            'kind',
            sa.Enum(*NOTIFICATION_KINDS, name='notification_kind', native_enum=False, length=32),
            nullable=False,
        ),
        sa.Column('recipient', sa.String(length=320), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False, comment='Template data rendered at delivery time'),
        sa.Column(
            'status',
            sa.Enum(*NOTIFICATION_STATUSES, name='notification_status', native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notification_tasks_booking_id', 'notification_tasks', ['booking_id'])
    op.create_index('ix_notification_tasks_status', 'notification_tasks', ['status'])
    op.create_index('ix_notification_tasks_next_attempt_at', 'notification_tasks', ['next_attempt_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_notification_tasks_next_attempt_at', table_name='notification_tasks')
    op.drop_index('ix_notification_tasks_status', table_name='notification_tasks')
    op.drop_index('ix_notification_tasks_booking_id', table_name='notification_tasks')
    op.drop_table('notification_tasks')

    op.drop_index('uq_bookings_active_email', table_name='bookings')
    op.drop_index('ix_bookings_scheduled_at', table_name='bookings')
    op.drop_index('ix_bookings_status', table_name='bookings')
    op.drop_index('ix_bookings_user_id', table_name='bookings')
    op.drop_index('ix_bookings_email', table_name='bookings')
    op.drop_table('bookings')

"""create notification tables

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = 'e1f2a3b4c5d6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='UNREAD'),
        sa.Column('priority', sa.String(16), nullable=False, server_default='NORMAL'),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('action_url', sa.String(1000), nullable=True),
        sa.Column('action_text', sa.String(100), nullable=True),
        sa.Column('data', JSON_TYPE, nullable=True),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('group_key', sa.String(100), nullable=True),
        sa.Column('batch_id', sa.String(100), nullable=True),
        sa.Column('push_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('delivered', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    for column in ('id', 'user_id', 'type', 'status', 'priority', 'scheduled_for', 'group_key', 'batch_id'):
        op.create_index(f'ix_notifications_{column}', 'notifications', [column])
    # List queries filter by user and sort newest first
    op.create_index('ix_notifications_user_created', 'notifications', ['user_id', 'created_at'])

    op.create_table(
        'notification_preferences',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('push_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('in_app_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('type_preferences', JSON_TYPE, nullable=False),
        sa.Column('quiet_hours_start', sa.String(5), nullable=True),
        sa.Column('quiet_hours_end', sa.String(5), nullable=True),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='UTC'),
        sa.Column('digest_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('digest_frequency', sa.String(10), nullable=False, server_default='daily'),
        sa.Column('digest_time', sa.String(5), nullable=False, server_default='09:00'),
        sa.Column('batching_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('batching_delay', sa.Integer(), nullable=False, server_default='300'),
        *_timestamps(),
    )
    op.create_index('ix_notification_preferences_id', 'notification_preferences', ['id'])
    op.create_index('ix_notification_preferences_user_id', 'notification_preferences', ['user_id'], unique=True)

    op.create_table(
        'notification_subscriptions',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('endpoint', sa.Text(), nullable=False),
        sa.Column('p256dh_key', sa.String(255), nullable=False),
        sa.Column('auth_key', sa.String(255), nullable=False),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_used', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'endpoint', name='uq_notification_subscriptions_user_endpoint'),
    )
    for column in ('id', 'user_id', 'is_active'):
        op.create_index(f'ix_notification_subscriptions_{column}', 'notification_subscriptions', [column])


def downgrade() -> None:
    op.drop_table('notification_subscriptions')
    op.drop_table('notification_preferences')
    op.drop_table('notifications')
    op.drop_table('users')

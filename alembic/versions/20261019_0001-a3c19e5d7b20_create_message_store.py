"""create_message_store

Revision ID: a3c19e5d7b20
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a3c19e5d7b20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create the durable message store.

    - messages: every direct, group and channel message, keyed by conversation_key
    - message_deliveries: per-recipient delivery state (sent/delivered/seen)
    - message_reactions: one reaction per user per message
    - user_deleted_messages: "delete for me" tombstones
    - conversation_members / user_blocks: local read models for access checks
    """
    op.create_table('messages',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('conversation_key', sa.String(length=255), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('sender_id', sa.String(length=255), nullable=False),
        sa.Column('recipient_id', sa.String(length=255), nullable=True),
        sa.Column('target_id', sa.String(length=255), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('content_hash', sa.String(length=64), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('media_id', sa.String(length=255), nullable=True),
        sa.Column('reply_to_id', sa.String(length=64), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deletion_state', sa.String(length=32), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_pinned', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('pinned_by', sa.String(length=255), nullable=True),
        sa.Column('pinned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_messages_conversation_key', 'messages', ['conversation_key'], unique=False)
    op.create_index('ix_messages_sender_id', 'messages', ['sender_id'], unique=False)
    op.create_index('ix_messages_sent_at', 'messages', ['sent_at'], unique=False)
    op.create_index('ix_messages_expires_at', 'messages', ['expires_at'], unique=False)
    op.create_index(
        'idx_messages_conversation_sent',
        'messages',
        ['conversation_key', sa.text('sent_at DESC')],
        unique=False
    )

    op.create_table('message_deliveries',
        sa.Column('message_id', sa.String(length=64), nullable=False),
        sa.Column('recipient_id', sa.String(length=255), nullable=False),
        sa.Column('state', sa.String(length=16), nullable=False),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('seen_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('message_id', 'recipient_id')
    )

    op.create_table('message_reactions',
        sa.Column('message_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('reaction', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('message_id', 'user_id')
    )

    op.create_table('user_deleted_messages',
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('message_id', sa.String(length=64), nullable=False),
        sa.Column('conversation_key', sa.String(length=255), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', 'message_id')
    )
    op.create_index(
        'idx_user_deleted_messages_user_conversation',
        'user_deleted_messages',
        ['user_id', 'conversation_key'],
        unique=False
    )

    op.create_table('conversation_members',
        sa.Column('conversation_key', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('joined_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('conversation_key', 'user_id')
    )
    op.create_index('idx_conversation_members_user', 'conversation_members', ['user_id'], unique=False)

    op.create_table('user_blocks',
        sa.Column('blocker_id', sa.String(length=255), nullable=False),
        sa.Column('blocked_id', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('blocker_id', 'blocked_id')
    )
    op.create_index('idx_user_blocks_blocked', 'user_blocks', ['blocked_id'], unique=False)


def downgrade() -> None:
    """Drop the message store."""
    op.drop_index('idx_user_blocks_blocked', table_name='user_blocks')
    op.drop_table('user_blocks')
    op.drop_index('idx_conversation_members_user', table_name='conversation_members')
    op.drop_table('conversation_members')
    op.drop_index('idx_user_deleted_messages_user_conversation', table_name='user_deleted_messages')
    op.drop_table('user_deleted_messages')
    op.drop_table('message_reactions')
    op.drop_table('message_deliveries')
    op.drop_index('idx_messages_conversation_sent', table_name='messages')
    op.drop_index('ix_messages_expires_at', table_name='messages')
    op.drop_index('ix_messages_sent_at', table_name='messages')
    op.drop_index('ix_messages_sender_id', table_name='messages')
    op.drop_index('ix_messages_conversation_key', table_name='messages')
    op.drop_table('messages')

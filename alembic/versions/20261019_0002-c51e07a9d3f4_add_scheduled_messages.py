"""add_scheduled_messages

Revision ID: c51e07a9d3f4
Revises: a3c19e5d7b20
Create Date: 2026-10-19 15:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'c51e07a9d3f4'
down_revision: Union[str, None] = 'a3c19e5d7b20'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Add scheduled_messages for deferred sends.

    Due rows are read in (send_at, id) order by the scheduled-send job.
    """
    op.create_table('scheduled_messages',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('conversation_key', sa.String(length=255), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('sender_id', sa.String(length=255), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('media_id', sa.String(length=255), nullable=True),
        sa.Column('reply_to_id', sa.String(length=64), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('send_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_scheduled_messages_sender_id', 'scheduled_messages', ['sender_id'], unique=False)
    op.create_index('ix_scheduled_messages_send_at', 'scheduled_messages', ['send_at'], unique=False)
    op.create_index('idx_scheduled_messages_send_at_id', 'scheduled_messages', ['send_at', 'id'], unique=False)


def downgrade() -> None:
    """Drop scheduled_messages."""
    op.drop_index('idx_scheduled_messages_send_at_id', table_name='scheduled_messages')
    op.drop_index('ix_scheduled_messages_send_at', table_name='scheduled_messages')
    op.drop_index('ix_scheduled_messages_sender_id', table_name='scheduled_messages')
    op.drop_table('scheduled_messages')

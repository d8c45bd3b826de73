"""Create contacts, conversations, messages, knowledge and automation tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql


revision = "001_create_conversation_tables"
down_revision = None
branch_labels = None
depends_on = None


_TAGS = postgresql.ARRAY(sa.Text())
_NOW = sa.text("now()")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
    ]


def upgrade() -> None:
    """Create the conversation store tables with their uniqueness constraints."""

    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "contacts",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("phone", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("tags", _TAGS, nullable=False, server_default=sa.text("'{}'")),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
    )
    op.create_index("ix_contacts_phone_unique", "contacts", ["phone"], unique=True)

    op.create_table(
        "conversations",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column(
            "contact_id",
            sa.Text(),
            sa.ForeignKey("contacts.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'active'")),
        sa.Column("priority", sa.Text(), nullable=False, server_default=sa.text("'medium'")),
        sa.Column("sentiment", sa.Text(), nullable=True),
        sa.Column("assigned_agent", sa.Text(), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tags", _TAGS, nullable=False, server_default=sa.text("'{}'")),
        *_timestamps(),
    )
    op.create_index(
        "ix_conversations_contact_id_unique", "conversations", ["contact_id"], unique=True
    )
    op.create_index(
        "ix_conversations_last_message_at", "conversations", [sa.text("last_message_at DESC")]
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column(
            "conversation_id",
            sa.Text(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider_message_id", sa.Text(), nullable=True),
        sa.Column("dedup_key", sa.Text(), nullable=False),
        sa.Column("direction", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("type", sa.Text(), nullable=False, server_default=sa.text("'text'")),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'sent'")),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.UniqueConstraint("conversation_id", "dedup_key", name="uq_messages_dedup"),
    )
    op.create_index(
        "ix_messages_conversation_order", "messages", ["conversation_id", "timestamp", "id"]
    )
    op.create_index("ix_messages_provider_message_id", "messages", ["provider_message_id"])

    op.create_table(
        "knowledge_entries",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False, server_default=sa.text("'general'")),
        sa.Column("tags", _TAGS, nullable=False, server_default=sa.text("'{}'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("embedding", Vector(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "automation_rules",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trigger_type", sa.Text(), nullable=False),
        sa.Column("trigger_value", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("action_type", sa.Text(), nullable=False),
        sa.Column("action_value", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ordinal", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("execution_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_executed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "automation_executions",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column(
            "rule_id",
            sa.Text(),
            sa.ForeignKey("automation_rules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("conversation_id", sa.Text(), nullable=False),
        sa.Column("message_id", sa.Text(), nullable=True),
        sa.Column("action_type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "execution_time_ms", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
    )
    op.create_index(
        "ix_automation_executions_rule",
        "automation_executions",
        ["rule_id", sa.text("executed_at DESC")],
    )


def downgrade() -> None:
    """Drop the conversation store tables in dependency order."""

    op.drop_index("ix_automation_executions_rule", table_name="automation_executions")
    op.drop_table("automation_executions")
    op.drop_table("automation_rules")
    op.drop_table("knowledge_entries")
    op.drop_index("ix_messages_provider_message_id", table_name="messages")
    op.drop_index("ix_messages_conversation_order", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_conversations_last_message_at", table_name="conversations")
    op.drop_index("ix_conversations_contact_id_unique", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("ix_contacts_phone_unique", table_name="contacts")
    op.drop_table("contacts")

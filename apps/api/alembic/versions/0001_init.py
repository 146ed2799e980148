"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
  return sa.Column("id", sa.String(length=36), primary_key=True)


def _ts(name: str, nullable: bool = False) -> sa.Column:
  return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
  op.create_table(
    "users",
    _id(),
    sa.Column("email", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    _ts("created_at"),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)
  op.create_index("ix_users_name", "users", ["name"], unique=False)

  op.create_table(
    "api_tokens",
    _id(),
    sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("token_hash", sa.String(), nullable=False),
    sa.Column("token_hint", sa.String(), nullable=False),
    _ts("created_at"),
    _ts("last_used_at", nullable=True),
    _ts("revoked_at", nullable=True),
  )
  op.create_index("ix_api_tokens_user_id", "api_tokens", ["user_id"], unique=False)
  op.create_index("ix_api_tokens_token_hash", "api_tokens", ["token_hash"], unique=True)

  op.create_table(
    "events",
    _id(),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=False, server_default=""),
    sa.Column("location", sa.String(), nullable=False, server_default=""),
    _ts("date_time"),
    sa.Column("created_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("attendees", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
    _ts("created_at"),
    _ts("updated_at"),
  )
  op.create_index("ix_events_date_time", "events", ["date_time"], unique=False)

  op.create_table(
    "posts",
    _id(),
    sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("user_name", sa.String(), nullable=False, server_default=""),
    sa.Column("content", sa.Text(), nullable=False, server_default=""),
    _ts("created_at"),
    _ts("updated_at"),
  )
  op.create_index("ix_posts_user_id", "posts", ["user_id"], unique=False)

  op.create_table(
    "comments",
    _id(),
    sa.Column("post_id", sa.String(length=36), sa.ForeignKey("posts.id"), nullable=False),
    sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("user_name", sa.String(), nullable=False, server_default=""),
    sa.Column("text", sa.Text(), nullable=False),
    _ts("created_at"),
  )
  op.create_index("ix_comments_post_id", "comments", ["post_id"], unique=False)

  op.create_table(
    "reminders",
    _id(),
    sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(length=36), nullable=False),
    _ts("scheduled_time"),
    _ts("snooze_until", nullable=True),
    sa.Column("reminder_type", sa.String(), nullable=False, server_default="custom"),
    sa.Column("is_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("title", sa.String(), nullable=False, server_default=""),
    sa.Column("body", sa.Text(), nullable=False, server_default=""),
    _ts("created_at"),
    _ts("updated_at"),
  )
  op.create_index("ix_reminders_user_id", "reminders", ["user_id"], unique=False)
  op.create_index("ix_reminders_scheduled_time", "reminders", ["scheduled_time"], unique=False)
  op.create_index("ix_reminders_is_sent", "reminders", ["is_sent"], unique=False)
  op.create_index("ix_reminders_entity", "reminders", ["entity_type", "entity_id", "reminder_type"], unique=False)

  op.create_table(
    "notifications",
    _id(),
    sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("type", sa.String(), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False, server_default=""),
    sa.Column("entity_id", sa.String(length=36), nullable=False, server_default=""),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("body", sa.Text(), nullable=False, server_default=""),
    sa.Column("data", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
    _ts("sent_at"),
    _ts("read_at", nullable=True),
    _ts("created_at"),
  )
  op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)

  op.create_table(
    "device_tokens",
    _id(),
    sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("token", sa.String(), nullable=False),
    sa.Column("platform", sa.String(), nullable=False),
    _ts("last_updated"),
    _ts("created_at"),
  )
  op.create_index("ix_device_tokens_user_id", "device_tokens", ["user_id"], unique=False)
  op.create_index("ix_device_tokens_token", "device_tokens", ["token"], unique=True)

  op.create_table(
    "notification_preferences",
    _id(),
    sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("events", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("posts", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("messages", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("comments", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("mentions", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("quiet_hours_start", sa.String(length=5), nullable=True),
    sa.Column("quiet_hours_end", sa.String(length=5), nullable=True),
    sa.Column("timezone", sa.String(), nullable=True),
    _ts("created_at"),
    _ts("updated_at"),
  )
  op.create_index("ix_notification_preferences_user_id", "notification_preferences", ["user_id"], unique=True)

  op.create_table(
    "audit_events",
    _id(),
    sa.Column("actor_id", sa.String(length=36), nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(), nullable=True),
    sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
    _ts("created_at"),
  )


def downgrade() -> None:
  for table in (
    "audit_events",
    "notification_preferences",
    "device_tokens",
    "notifications",
    "reminders",
    "comments",
    "posts",
    "events",
    "api_tokens",
    "users",
  ):
    op.drop_table(table)

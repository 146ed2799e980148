from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, Text, TypeDecorator
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def _uuid() -> str:
  return str(uuid.uuid4())


class UtcDateTime(TypeDecorator):
  """Timezone-aware datetime that always round-trips as UTC, including on SQLite."""

  impl = DateTime(timezone=True)
  cache_ok = True

  def process_bind_param(self, value, dialect):
    if value is None:
      return value
    if value.tzinfo is None:
      value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    if dialect.name == "sqlite":
      return value.replace(tzinfo=None)
    return value

  def process_result_value(self, value, dialect):
    if value is None:
      return value
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


JsonDoc = JSON().with_variant(JSONB(), "postgresql")


class NotificationType(str, enum.Enum):
  EVENT_REMINDER = "event_reminder"
  NEW_POST = "new_post"
  NEW_COMMENT = "new_comment"
  NEW_MESSAGE = "new_message"
  EVENT_RSVP = "event_rsvp"
  MENTION = "mention"


class ReminderType(str, enum.Enum):
  AUTO = "auto"
  CUSTOM = "custom"


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False, index=True)
  active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)


class ApiToken(Base):
  __tablename__ = "api_tokens"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  token_hash: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  token_hint: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
  last_used_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
  revoked_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)


class Event(Base):
  __tablename__ = "events"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  location: Mapped[str] = mapped_column(String, nullable=False, default="")
  date_time: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, index=True)
  created_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  attendees: Mapped[list[str]] = mapped_column(JsonDoc, nullable=False, default=list)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Post(Base):
  __tablename__ = "posts"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  user_name: Mapped[str] = mapped_column(String, nullable=False, default="")
  content: Mapped[str] = mapped_column(Text, nullable=False, default="")
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Comment(Base):
  __tablename__ = "comments"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  post_id: Mapped[str] = mapped_column(String(36), ForeignKey("posts.id"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
  user_name: Mapped[str] = mapped_column(String, nullable=False, default="")
  text: Mapped[str] = mapped_column(Text, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)


class Reminder(Base):
  __tablename__ = "reminders"
  __table_args__ = (Index("ix_reminders_entity", "entity_type", "entity_id", "reminder_type"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)  # event | post | message
  entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
  scheduled_time: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, index=True)
  snooze_until: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
  reminder_type: Mapped[str] = mapped_column(String, nullable=False, default=ReminderType.CUSTOM.value)  # auto | custom
  is_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False, default="")
  body: Mapped[str] = mapped_column(Text, nullable=False, default="")
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)

  @property
  def effective_time(self) -> datetime:
    return self.snooze_until if self.snooze_until is not None else self.scheduled_time


class Notification(Base):
  __tablename__ = "notifications"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  type: Mapped[str] = mapped_column(String, nullable=False)
  entity_type: Mapped[str] = mapped_column(String, nullable=False, default="")
  entity_id: Mapped[str] = mapped_column(String(36), nullable=False, default="")
  title: Mapped[str] = mapped_column(String, nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False, default="")
  data: Mapped[dict[str, Any]] = mapped_column(JsonDoc, nullable=False, default=dict)
  sent_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
  read_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)


class DeviceToken(Base):
  __tablename__ = "device_tokens"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  token: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  platform: Mapped[str] = mapped_column(String, nullable=False)  # android | ios | web
  last_updated: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)


class NotificationPreference(Base):
  __tablename__ = "notification_preferences"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, unique=True, index=True)
  events: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  posts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  messages: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  comments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  mentions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  quiet_hours_start: Mapped[str | None] = mapped_column(String(5), nullable=True)  # HH:MM
  quiet_hours_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
  timezone: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class AuditEvent(Base):
  __tablename__ = "audit_events"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  actor_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
  payload: Mapped[dict[str, Any]] = mapped_column(JsonDoc, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TZ_SUFFIX_RE = re.compile(r"(Z|[+-]\d{2}:\d{2})$")
_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _parse_dt_utc_require_tz(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    if value.tzinfo is None:
      raise ValueError("datetime must include timezone")
    return value.astimezone(timezone.utc)
  if isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      raise ValueError("datetime must include time and timezone")
    if not _TZ_SUFFIX_RE.search(s):
      raise ValueError("datetime must include timezone")
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
      raise ValueError("datetime must include timezone")
    return dt.astimezone(timezone.utc)
  return value


class DeviceRegisterIn(BaseModel):
  token: str = Field(min_length=1, max_length=4096)
  platform: Literal["android", "ios", "web"]


class DeviceTokenOut(BaseModel):
  id: str
  userId: str
  token: str
  platform: str
  lastUpdated: datetime
  createdAt: datetime


class NotificationOut(BaseModel):
  id: str
  userId: str
  type: str
  entityType: str
  entityId: str
  title: str
  body: str
  data: dict[str, Any] = {}
  sentAt: datetime
  readAt: datetime | None = None
  createdAt: datetime


class UnreadCountOut(BaseModel):
  count: int


class NotificationPreferencesOut(BaseModel):
  events: bool = True
  posts: bool = True
  messages: bool = True
  comments: bool = True
  mentions: bool = True
  quietHoursStart: str | None = None
  quietHoursEnd: str | None = None
  timezone: str | None = None


class NotificationPreferencesIn(BaseModel):
  events: bool = True
  posts: bool = True
  messages: bool = True
  comments: bool = True
  mentions: bool = True
  quietHoursStart: str | None = Field(default=None, max_length=5)
  quietHoursEnd: str | None = Field(default=None, max_length=5)
  timezone: str | None = Field(default=None, max_length=64)

  @field_validator("quietHoursStart", "quietHoursEnd", mode="before")
  @classmethod
  def _hhmm(cls, v: object) -> object:
    if v is None:
      return None
    s = str(v).strip()
    if not s:
      return None
    if not _HHMM_RE.fullmatch(s):
      raise ValueError("Time must be HH:MM")
    return s

  @field_validator("timezone")
  @classmethod
  def _known_zone(cls, v: str | None) -> str | None:
    s = (v or "").strip()
    if not s:
      return None
    try:
      ZoneInfo(s)
    except (ZoneInfoNotFoundError, ValueError) as e:
      raise ValueError("Unknown timezone") from e
    return s

  @model_validator(mode="after")
  def _both_or_neither(self) -> "NotificationPreferencesIn":
    if (self.quietHoursStart is None) != (self.quietHoursEnd is None):
      raise ValueError("quietHoursStart and quietHoursEnd must be set together")
    return self


class ReminderCreateIn(BaseModel):
  entityType: Literal["event", "post", "message"]
  entityId: str = Field(min_length=1, max_length=64)
  scheduledTime: datetime
  title: str = Field(min_length=1, max_length=200)
  body: str = Field(default="", max_length=2000)

  @field_validator("scheduledTime", mode="before")
  @classmethod
  def _scheduled_to_utc(cls, v: object) -> object:
    return _parse_dt_utc_require_tz(v)


class ReminderUpdateIn(BaseModel):
  scheduledTime: datetime | None = None
  title: str | None = Field(default=None, min_length=1, max_length=200)
  body: str | None = Field(default=None, max_length=2000)

  @field_validator("scheduledTime", mode="before")
  @classmethod
  def _scheduled_to_utc(cls, v: object) -> object:
    return _parse_dt_utc_require_tz(v)


class ReminderSnoozeIn(BaseModel):
  duration: int = Field(ge=1, le=7 * 24 * 60)  # minutes


class ReminderOut(BaseModel):
  id: str
  userId: str
  entityType: str
  entityId: str
  scheduledTime: datetime
  snoozeUntil: datetime | None = None
  reminderType: str
  isSent: bool
  title: str
  body: str
  createdAt: datetime
  updatedAt: datetime


class EventIn(BaseModel):
  title: str = Field(min_length=1, max_length=200)
  description: str = Field(default="", max_length=5000)
  location: str = Field(default="", max_length=500)
  dateTime: datetime
  attendees: list[str] = []

  @field_validator("dateTime", mode="before")
  @classmethod
  def _date_time_to_utc(cls, v: object) -> object:
    return _parse_dt_utc_require_tz(v)


class EventOut(BaseModel):
  id: str
  title: str
  description: str
  location: str
  dateTime: datetime
  createdBy: str | None = None
  attendees: list[str]
  createdAt: datetime
  updatedAt: datetime


class PostCreateIn(BaseModel):
  content: str = Field(min_length=1, max_length=10000)


class PostOut(BaseModel):
  id: str
  userId: str
  userName: str
  content: str
  createdAt: datetime


class CommentCreateIn(BaseModel):
  text: str = Field(min_length=1, max_length=5000)


class CommentOut(BaseModel):
  id: str
  postId: str
  userId: str
  userName: str
  text: str
  createdAt: datetime

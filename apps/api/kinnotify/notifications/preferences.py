from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.config import settings
from kinnotify.models import NotificationPreference, NotificationType

# new_message and event_rsvp have no toggle and are always allowed.
TOGGLE_FOR_TYPE: dict[NotificationType, str] = {
  NotificationType.EVENT_REMINDER: "events",
  NotificationType.NEW_POST: "posts",
  NotificationType.NEW_COMMENT: "comments",
  NotificationType.MENTION: "mentions",
}


@dataclass(frozen=True)
class PreferenceSnapshot:
  events: bool = True
  posts: bool = True
  messages: bool = True
  comments: bool = True
  mentions: bool = True
  quiet_hours_start: str | None = None
  quiet_hours_end: str | None = None
  timezone: str | None = None

  @classmethod
  def from_row(cls, row: NotificationPreference | None) -> "PreferenceSnapshot":
    if row is None:
      return cls()
    return cls(
      events=bool(row.events),
      posts=bool(row.posts),
      messages=bool(row.messages),
      comments=bool(row.comments),
      mentions=bool(row.mentions),
      quiet_hours_start=row.quiet_hours_start,
      quiet_hours_end=row.quiet_hours_end,
      timezone=row.timezone,
    )


def minutes_of_day(hhmm: str | None) -> int | None:
  s = (hhmm or "").strip()
  if not s or len(s) != 5 or s[2] != ":":
    return None
  hh, mm = s[:2], s[3:]
  if not (hh.isdigit() and mm.isdigit()):
    return None
  hhi, mmi = int(hh), int(mm)
  if hhi < 0 or hhi > 23 or mmi < 0 or mmi > 59:
    return None
  return hhi * 60 + mmi


def in_quiet_hours(start: int | None, end: int | None, current: int) -> bool:
  if start is None or end is None:
    return False
  if start <= end:
    return start <= current <= end
  # Window wraps midnight.
  return current >= start or current <= end


def zone_for(name: str | None) -> ZoneInfo | timezone:
  try:
    return ZoneInfo(name or settings.default_timezone or "UTC")
  except (ZoneInfoNotFoundError, ValueError):
    return timezone.utc


def local_minute(now: datetime, tz_name: str | None) -> int:
  local = now.astimezone(zone_for(tz_name))
  return local.hour * 60 + local.minute


async def load_preferences(db: AsyncSession, user_id: str) -> PreferenceSnapshot:
  res = await db.execute(select(NotificationPreference).where(NotificationPreference.user_id == user_id))
  return PreferenceSnapshot.from_row(res.scalar_one_or_none())


class PreferenceGate:
  """Answers "may this notification fire now?" for one user. Never writes."""

  async def allowed(
    self,
    db: AsyncSession,
    user_id: str,
    notification_type: NotificationType | str,
    *,
    now: datetime | None = None,
  ) -> bool:
    prefs = await load_preferences(db, user_id)
    return self.evaluate(prefs, notification_type, now=now)

  def evaluate(
    self,
    prefs: PreferenceSnapshot,
    notification_type: NotificationType | str,
    *,
    now: datetime | None = None,
  ) -> bool:
    try:
      ntype = NotificationType(notification_type)
    except ValueError:
      ntype = None
    key = TOGGLE_FOR_TYPE.get(ntype) if ntype is not None else None
    if key and not bool(getattr(prefs, key)):
      return False

    start = minutes_of_day(prefs.quiet_hours_start)
    end = minutes_of_day(prefs.quiet_hours_end)
    if start is None or end is None:
      return True
    now = now or datetime.now(timezone.utc)
    return not in_quiet_hours(start, end, local_minute(now, prefs.timezone))

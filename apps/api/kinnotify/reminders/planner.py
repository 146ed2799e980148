from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.models import Event, Reminder, ReminderType, User
from kinnotify.notifications.preferences import zone_for

logger = logging.getLogger(__name__)

EVENT_ENTITY = "event"


def clock_time(dt: datetime) -> str:
  local = dt.astimezone(zone_for(None))
  return local.strftime("%I:%M %p").lstrip("0")


def _offsets(event: Event) -> list[tuple[timedelta, str, str]]:
  at = clock_time(event.date_time)
  return [
    (timedelta(hours=24), f"Event Tomorrow: {event.title}", f"{event.title} is happening tomorrow at {at}"),
    (timedelta(hours=1), f"Event in 1 Hour: {event.title}", f"{event.title} starts in 1 hour at {at}"),
  ]


class EventReminderPlanner:
  """Derives auto reminders from an event and keeps them in step with edits."""

  async def plan(self, db: AsyncSession, event: Event, *, now: datetime | None = None) -> list[Reminder]:
    now = now or datetime.now(timezone.utc)
    attendees = list(dict.fromkeys(a for a in (event.attendees or []) if a))
    if not attendees:
      return []
    # Attendee lists can outlive a user; reminders must point at a real one.
    res = await db.execute(select(User.id).where(User.id.in_(attendees)))
    known = set(res.scalars().all())
    stale = [a for a in attendees if a not in known]
    if stale:
      logger.warning("Event %s lists unknown attendees %s; not planning for them", event.id, stale)
    attendees = [a for a in attendees if a in known]

    created: list[Reminder] = []
    for user_id in attendees:
      for before, title, body in _offsets(event):
        at = event.date_time - before
        if at <= now:
          continue
        r = Reminder(
          user_id=user_id,
          entity_type=EVENT_ENTITY,
          entity_id=event.id,
          scheduled_time=at,
          reminder_type=ReminderType.AUTO.value,
          is_sent=False,
          title=title,
          body=body,
          created_at=now,
          updated_at=now,
        )
        db.add(r)
        created.append(r)
    await db.flush()
    logger.info("Planned %s reminders for event %s", len(created), event.id)
    return created

  async def replan(self, db: AsyncSession, event: Event, *, now: datetime | None = None) -> list[Reminder]:
    await db.execute(
      delete(Reminder).where(
        Reminder.entity_id == event.id,
        Reminder.entity_type == EVENT_ENTITY,
        Reminder.reminder_type == ReminderType.AUTO.value,
      )
    )
    return await self.plan(db, event, now=now)

  async def forget(self, db: AsyncSession, event_id: str) -> int:
    res = await db.execute(delete(Reminder).where(Reminder.entity_id == event_id, Reminder.entity_type == EVENT_ENTITY))
    return int(res.rowcount or 0)

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.models import Reminder


def is_due(r: Reminder, now: datetime) -> bool:
  return not r.is_sent and r.effective_time <= now


def due_clause(now: datetime):
  return and_(
    Reminder.is_sent.is_(False),
    or_(
      and_(Reminder.snooze_until.is_(None), Reminder.scheduled_time <= now),
      and_(Reminder.snooze_until.is_not(None), Reminder.snooze_until <= now),
    ),
  )


def effective_time_expr():
  return func.coalesce(Reminder.snooze_until, Reminder.scheduled_time)


async def load_due_reminders(
  db: AsyncSession, *, now: datetime, limit: int, after: tuple[datetime, str] | None = None
) -> list[Reminder]:
  """Due reminders in (effective time, id) order; `after` resumes past a previous page."""
  effective = effective_time_expr()
  q = select(Reminder).where(due_clause(now))
  if after is not None:
    at, last_id = after
    q = q.where(or_(effective > at, and_(effective == at, Reminder.id > last_id)))
  res = await db.execute(q.order_by(effective.asc(), Reminder.id.asc()).limit(int(limit)))
  return list(res.scalars().all())


def snooze(r: Reminder, *, minutes: int, now: datetime | None = None) -> None:
  # Also re-arms a reminder that already fired.
  now = now or datetime.now(timezone.utc)
  r.snooze_until = now + timedelta(minutes=int(minutes))
  r.is_sent = False
  r.updated_at = now

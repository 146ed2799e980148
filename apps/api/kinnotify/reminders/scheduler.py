from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kinnotify.config import settings
from kinnotify.metrics import runtime_metrics
from kinnotify.models import Event, NotificationType, Reminder
from kinnotify.notifications.dispatcher import NotificationDispatcher
from kinnotify.notifications.preferences import zone_for
from kinnotify.reminders.planner import EVENT_ENTITY, clock_time
from kinnotify.reminders.service import load_due_reminders

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
  return datetime.now(timezone.utc)


@dataclass
class TickResult:
  at: datetime
  due: int = 0
  sent: int = 0
  skipped: int = 0
  failed: int = 0
  failed_ids: list[str] = field(default_factory=list)


async def render_reminder(db: AsyncSession, r: Reminder) -> tuple[str, str] | None:
  if (r.title or "").strip() and (r.body or "").strip():
    return r.title, r.body
  if r.entity_type == EVENT_ENTITY:
    res = await db.execute(select(Event).where(Event.id == r.entity_id))
    ev = res.scalar_one_or_none()
    if ev is not None:
      local = ev.date_time.astimezone(zone_for(None))
      return f"Event Reminder: {ev.title}", f"{ev.title} at {local:%b} {local.day}, {clock_time(ev.date_time)}"
  return None


class ReminderScheduler:
  """
  Polls for due reminders on a fixed interval and hands each to the dispatcher.

  Single-instance by assumption: reminders are marked sent only after their
  dispatch, so two schedulers on the same store can double-deliver.
  """

  def __init__(
    self,
    dispatcher: NotificationDispatcher,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    interval_seconds: float = 60,
    batch_limit: int | None = None,
    clock: Callable[[], datetime] = _utcnow,
  ) -> None:
    self.dispatcher = dispatcher
    self.session_factory = session_factory
    self.interval_seconds = interval_seconds
    self.batch_limit = batch_limit or settings.reminder_batch_limit
    self.clock = clock
    self.last_tick: TickResult | None = None
    self._stop = asyncio.Event()
    self._task: asyncio.Task | None = None

  @property
  def running(self) -> bool:
    return self._task is not None and not self._task.done()

  def start(self) -> None:
    if self.running:
      return
    self._stop.clear()
    self._task = asyncio.create_task(self._loop())
    logger.info("Reminder scheduler started (every %ss)", self.interval_seconds)

  async def stop(self) -> None:
    self._stop.set()
    if self._task is not None:
      await self._task
      self._task = None
    logger.info("Reminder scheduler stopped")

  async def _loop(self) -> None:
    while not self._stop.is_set():
      try:
        await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
        break
      except asyncio.TimeoutError:
        pass
      try:
        await self.tick()
      except Exception:
        # Never let one bad tick kill the loop.
        logger.exception("Reminder scheduler tick failed")

  async def tick(self, now: datetime | None = None) -> TickResult:
    now = now or self.clock()
    result = TickResult(at=now)
    after: tuple[datetime, str] | None = None

    # Page past rows that stay unsent (unrenderable or failing) so they can't
    # hold every slot; at most `batch_limit` reminders are delivered per tick.
    while result.sent < self.batch_limit:
      async with self.session_factory() as db:
        page = [(r.id, r.effective_time) for r in await load_due_reminders(db, now=now, limit=self.batch_limit, after=after)]
      result.due += len(page)

      # One session per reminder so a rollback can't touch its siblings.
      for reminder_id, _ in page:
        if result.sent >= self.batch_limit:
          break
        async with self.session_factory() as db:
          r = await db.get(Reminder, reminder_id)
          if r is None or r.is_sent:
            result.skipped += 1
            continue
          await self._process(db, r, now=now, result=result)

      if len(page) < self.batch_limit:
        break
      last_id, last_at = page[-1]
      after = (last_at, last_id)

    self.last_tick = result
    runtime_metrics.observe_tick(result)
    if result.due:
      logger.info(
        "Reminder tick: due=%s sent=%s skipped=%s failed=%s", result.due, result.sent, result.skipped, result.failed
      )
    return result

  async def _process(self, db: AsyncSession, r: Reminder, *, now: datetime, result: TickResult) -> None:
    reminder_id = r.id
    try:
      content = await render_reminder(db, r)
      if content is None:
        logger.warning("Reminder %s has nothing to render; skipping", reminder_id)
        result.skipped += 1
        return
      title, body = content
      await self.dispatcher.send(
        db,
        user_id=r.user_id,
        type=NotificationType.EVENT_REMINDER,
        entity_type=r.entity_type,
        entity_id=r.entity_id,
        title=title,
        body=body,
        now=now,
      )
      r.is_sent = True
      r.updated_at = now
      await db.commit()
      result.sent += 1
    except Exception as e:
      # Left unsent; the next tick retries it.
      await db.rollback()
      logger.warning("Failed to send reminder %s: %s", reminder_id, e)
      result.failed += 1
      result.failed_ids.append(reminder_id)

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from conftest import FakePushChannel, add_device, make_user, set_preferences
from kinnotify.db import SessionLocal
from kinnotify.models import Event, Notification, Reminder, ReminderType
from kinnotify.notifications.dispatcher import NotificationDispatcher
from kinnotify.reminders.planner import EventReminderPlanner
from kinnotify.reminders.scheduler import ReminderScheduler, render_reminder
from kinnotify.reminders.service import is_due, load_due_reminders, snooze

T0 = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


async def _reminder(user_id: str, *, at: datetime, **kwargs) -> Reminder:
  values = {"entity_type": "event", "entity_id": "evt-1", "title": "Soon", "body": "Very soon"}
  values.update(kwargs)
  async with SessionLocal() as db:
    r = Reminder(user_id=user_id, scheduled_time=at, **values)
    db.add(r)
    await db.commit()
    return r


async def _reload(reminder_id: str) -> Reminder:
  async with SessionLocal() as db:
    return await db.get(Reminder, reminder_id)


async def _notification_count(user_id: str) -> int:
  async with SessionLocal() as db:
    res = await db.execute(select(Notification).where(Notification.user_id == user_id))
    return len(res.scalars().all())


@pytest.mark.anyio
async def test_snoozed_reminder_is_due_only_after_snooze() -> None:
  u = await make_user("Snoozer")
  r = await _reminder(u.id, at=T0 - timedelta(hours=1))
  snooze(r, minutes=30, now=T0)
  assert r.snooze_until == T0 + timedelta(minutes=30)
  assert not is_due(r, T0 + timedelta(minutes=10))
  assert is_due(r, T0 + timedelta(minutes=30))


@pytest.mark.anyio
async def test_snooze_rearms_a_sent_reminder() -> None:
  u = await make_user("Rearm")
  r = await _reminder(u.id, at=T0 - timedelta(hours=1), is_sent=True)
  assert not is_due(r, T0)
  snooze(r, minutes=15, now=T0)
  assert r.is_sent is False
  assert is_due(r, T0 + timedelta(minutes=15))


@pytest.mark.anyio
async def test_due_query_honours_snooze() -> None:
  u = await make_user("Query")
  plain = await _reminder(u.id, at=T0 - timedelta(minutes=5))
  future = await _reminder(u.id, at=T0 + timedelta(minutes=5))
  snoozed = await _reminder(u.id, at=T0 - timedelta(hours=2), snooze_until=T0 + timedelta(minutes=20))
  woke = await _reminder(u.id, at=T0 + timedelta(hours=2), snooze_until=T0 - timedelta(minutes=1))
  await _reminder(u.id, at=T0 - timedelta(hours=3), is_sent=True)

  async with SessionLocal() as db:
    due = await load_due_reminders(db, now=T0, limit=50)
  assert [r.id for r in due] == [plain.id, woke.id]
  assert future.id not in [r.id for r in due]
  assert snoozed.id not in [r.id for r in due]


@pytest.mark.anyio
async def test_tick_sends_due_reminder_once(dispatcher: NotificationDispatcher, push: FakePushChannel) -> None:
  u = await make_user("Tick")
  await add_device(u.id, "tick-phone")
  r = await _reminder(u.id, at=T0 - timedelta(minutes=1))
  scheduler = ReminderScheduler(dispatcher, SessionLocal)

  result = await scheduler.tick(now=T0)
  assert (result.due, result.sent, result.failed) == (1, 1, 0)
  assert (await _reload(r.id)).is_sent is True
  assert push.calls[0]["title"] == "Soon"
  assert push.calls[0]["data"]["type"] == "event_reminder"
  assert push.calls[0]["data"]["entityId"] == "evt-1"

  again = await scheduler.tick(now=T0 + timedelta(minutes=1))
  assert again.due == 0
  assert await _notification_count(u.id) == 1


@pytest.mark.anyio
async def test_gate_blocked_reminder_still_counts_as_sent(dispatcher: NotificationDispatcher, push: FakePushChannel) -> None:
  u = await make_user("Muted")
  await add_device(u.id, "muted-phone")
  await set_preferences(u.id, events=False)
  r = await _reminder(u.id, at=T0 - timedelta(minutes=1))

  result = await ReminderScheduler(dispatcher, SessionLocal).tick(now=T0)
  assert result.sent == 1
  assert (await _reload(r.id)).is_sent is True
  assert push.calls == []
  assert await _notification_count(u.id) == 0


@pytest.mark.anyio
async def test_snoozed_reminder_fires_on_later_tick(dispatcher: NotificationDispatcher) -> None:
  u = await make_user("Later")
  r = await _reminder(u.id, at=T0 - timedelta(hours=1), snooze_until=T0 + timedelta(minutes=30))
  scheduler = ReminderScheduler(dispatcher, SessionLocal)
  assert (await scheduler.tick(now=T0 + timedelta(minutes=10))).due == 0
  assert (await scheduler.tick(now=T0 + timedelta(minutes=30))).sent == 1
  assert (await _reload(r.id)).is_sent is True


class _FlakyDispatcher:
  """Raises for chosen reminders the first time they are sent."""

  def __init__(self, inner: NotificationDispatcher, failing_entities: set[str]) -> None:
    self.inner = inner
    self.failing = set(failing_entities)

  async def send(self, db, **kwargs):
    if kwargs["entity_id"] in self.failing:
      self.failing.discard(kwargs["entity_id"])
      raise RuntimeError("database went away")
    return await self.inner.send(db, **kwargs)


@pytest.mark.anyio
async def test_failure_leaves_reminder_unsent_and_siblings_unaffected(dispatcher: NotificationDispatcher) -> None:
  u = await make_user("Retry")
  bad = await _reminder(u.id, at=T0 - timedelta(minutes=2), entity_id="evt-bad")
  good = await _reminder(u.id, at=T0 - timedelta(minutes=1), entity_id="evt-good")
  scheduler = ReminderScheduler(_FlakyDispatcher(dispatcher, {"evt-bad"}), SessionLocal)

  first = await scheduler.tick(now=T0)
  assert (first.due, first.sent, first.failed) == (2, 1, 1)
  assert first.failed_ids == [bad.id]
  assert (await _reload(bad.id)).is_sent is False
  assert (await _reload(good.id)).is_sent is True

  second = await scheduler.tick(now=T0 + timedelta(minutes=1))
  assert (second.due, second.sent, second.failed) == (1, 1, 0)
  assert (await _reload(bad.id)).is_sent is True


@pytest.mark.anyio
async def test_render_falls_back_to_event_details() -> None:
  u = await make_user("Render")
  async with SessionLocal() as db:
    e = Event(title="Reunion", date_time=datetime(2026, 7, 4, 18, 30, tzinfo=timezone.utc), attendees=[u.id])
    db.add(e)
    await db.commit()
  r = await _reminder(u.id, at=T0, entity_id=e.id, title="", body="")
  async with SessionLocal() as db:
    assert await render_reminder(db, r) == ("Event Reminder: Reunion", "Reunion at Jul 4, 6:30 PM")


@pytest.mark.anyio
async def test_unrenderable_reminder_is_skipped_and_kept(dispatcher: NotificationDispatcher) -> None:
  u = await make_user("Orphan")
  r = await _reminder(u.id, at=T0 - timedelta(minutes=1), entity_id="missing", title="", body="")
  result = await ReminderScheduler(dispatcher, SessionLocal).tick(now=T0)
  assert (result.due, result.sent, result.skipped) == (1, 0, 1)
  assert (await _reload(r.id)).is_sent is False


@pytest.mark.anyio
async def test_stuck_reminders_do_not_starve_later_ones(dispatcher: NotificationDispatcher, push: FakePushChannel) -> None:
  u = await make_user("Backlog")
  await add_device(u.id, "backlog-phone")
  stuck = [
    await _reminder(u.id, at=T0 - timedelta(hours=2), entity_type="post", entity_id=f"post-{i}", body="")
    for i in range(3)
  ]
  fresh = await _reminder(u.id, at=T0 - timedelta(minutes=1), title="Pick up Ava", body="School ends at 3")
  scheduler = ReminderScheduler(dispatcher, SessionLocal, batch_limit=3)

  result = await scheduler.tick(now=T0)
  assert (result.sent, result.skipped) == (1, 3)
  assert (await _reload(fresh.id)).is_sent is True
  assert push.calls[-1]["title"] == "Pick up Ava"
  for r in stuck:
    assert (await _reload(r.id)).is_sent is False

  again = await scheduler.tick(now=T0 + timedelta(minutes=1))
  assert (again.sent, again.skipped) == (0, 3)


@pytest.mark.anyio
async def test_tick_delivers_at_most_batch_limit(dispatcher: NotificationDispatcher) -> None:
  u = await make_user("Capped")
  rows = [await _reminder(u.id, at=T0 - timedelta(minutes=10 - i), entity_id=f"evt-{i}") for i in range(3)]
  scheduler = ReminderScheduler(dispatcher, SessionLocal, batch_limit=2)

  first = await scheduler.tick(now=T0)
  assert first.sent == 2
  assert [(await _reload(r.id)).is_sent for r in rows] == [True, True, False]

  second = await scheduler.tick(now=T0)
  assert second.sent == 1
  assert (await _reload(rows[2].id)).is_sent is True


@pytest.mark.anyio
async def test_planned_reminders_fire_end_to_end(dispatcher: NotificationDispatcher, push: FakePushChannel) -> None:
  a = await make_user("Uma")
  await add_device(a.id, "uma-phone")
  now = T0
  async with SessionLocal() as db:
    e = Event(title="Birthday", date_time=now + timedelta(hours=48), attendees=[a.id])
    db.add(e)
    await db.flush()
    await EventReminderPlanner().plan(db, e, now=now)
    await db.commit()

  scheduler = ReminderScheduler(dispatcher, SessionLocal)
  assert (await scheduler.tick(now=now + timedelta(hours=23))).due == 0

  day_before = await scheduler.tick(now=now + timedelta(hours=24))
  assert day_before.sent == 1
  assert push.calls[-1]["title"] == "Event Tomorrow: Birthday"

  hour_before = await scheduler.tick(now=now + timedelta(hours=47))
  assert hour_before.sent == 1
  assert push.calls[-1]["title"] == "Event in 1 Hour: Birthday"
  assert await _notification_count(a.id) == 2

  async with SessionLocal() as db:
    res = await db.execute(select(Reminder).where(Reminder.entity_id == e.id, Reminder.reminder_type == ReminderType.AUTO.value))
    assert all(r.is_sent for r in res.scalars().all())


@pytest.mark.anyio
async def test_scheduler_loop_ticks_and_stops(dispatcher: NotificationDispatcher) -> None:
  u = await make_user("Loop")
  r = await _reminder(u.id, at=datetime.now(timezone.utc) - timedelta(minutes=1))
  scheduler = ReminderScheduler(dispatcher, SessionLocal, interval_seconds=0.05)
  scheduler.start()
  assert scheduler.running
  for _ in range(100):
    if scheduler.last_tick is not None and scheduler.last_tick.sent:
      break
    await asyncio.sleep(0.02)
  await scheduler.stop()
  assert not scheduler.running
  assert (await _reload(r.id)).is_sent is True

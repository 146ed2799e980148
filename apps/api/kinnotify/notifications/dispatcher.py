from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.db import SessionLocal
from kinnotify.models import Notification, NotificationType
from kinnotify.notifications.channels import PushChannel
from kinnotify.notifications.delivery import DeliveryChannelAdapter
from kinnotify.notifications.preferences import PreferenceGate

logger = logging.getLogger(__name__)


class NotificationDispatcher:
  def __init__(self, gate: PreferenceGate, adapter: DeliveryChannelAdapter) -> None:
    self.gate = gate
    self.adapter = adapter

  async def send(
    self,
    db: AsyncSession,
    *,
    user_id: str,
    type: NotificationType | str,
    entity_type: str,
    entity_id: str,
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
    now: datetime | None = None,
  ) -> Notification | None:
    """
    Gate, fan out, then record one Notification.

    Returns None when the preference gate blocks the notification; blocked
    notifications leave no record. Raises only when the record can't be saved.
    """
    now = now or datetime.now(timezone.utc)
    ntype = NotificationType(type)
    if not await self.gate.allowed(db, user_id, ntype, now=now):
      logger.info("Notification blocked by preferences: user=%s type=%s", user_id, ntype.value)
      return None

    payload = {str(k): str(v) for k, v in (data or {}).items()}
    payload.update({"type": ntype.value, "entityType": entity_type, "entityId": entity_id})

    outcome = await self.adapter.deliver(db, user_id=user_id, title=title, body=body, data=payload)
    if outcome.attempted:
      logger.info(
        "Delivered %s to user %s: sent=%s pruned=%s failed=%s",
        ntype.value,
        user_id,
        outcome.sent,
        outcome.pruned,
        outcome.failed,
      )

    n = Notification(
      user_id=user_id,
      type=ntype.value,
      entity_type=entity_type,
      entity_id=entity_id,
      title=title,
      body=body,
      data=payload,
      sent_at=now,
      created_at=now,
    )
    db.add(n)
    try:
      await db.commit()
    except Exception:
      await db.rollback()
      logger.exception("Failed to save notification for user %s", user_id)
      raise
    return n

  async def send_batch(
    self,
    db: AsyncSession,
    user_ids: Iterable[str],
    *,
    type: NotificationType | str,
    entity_type: str,
    entity_id: str,
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
    now: datetime | None = None,
  ) -> int:
    created = 0
    for uid in user_ids:
      try:
        n = await self.send(
          db,
          user_id=uid,
          type=type,
          entity_type=entity_type,
          entity_id=entity_id,
          title=title,
          body=body,
          data=data,
          now=now,
        )
      except Exception as e:
        logger.warning("Failed to send notification to user %s: %s", uid, e)
        continue
      if n is not None:
        created += 1
    return created


def build_dispatcher(channel: PushChannel) -> NotificationDispatcher:
  return NotificationDispatcher(PreferenceGate(), DeliveryChannelAdapter(channel))


_background: set[asyncio.Task] = set()


def dispatch_in_background(work: Callable[[AsyncSession], Awaitable[Any]], *, label: str) -> asyncio.Task:
  """Run `work` off the request path on its own session; failures are only logged."""

  async def _run() -> None:
    async with SessionLocal() as db:
      try:
        await work(db)
      except Exception:
        logger.exception("Background notification work failed: %s", label)

  task = asyncio.create_task(_run())
  _background.add(task)
  task.add_done_callback(_background.discard)
  return task


async def drain_background() -> None:
  while _background:
    await asyncio.gather(*list(_background), return_exceptions=True)

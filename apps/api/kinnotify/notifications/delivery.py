from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.models import DeviceToken
from kinnotify.notifications.channels import PushChannel, SendResult

logger = logging.getLogger(__name__)


@dataclass
class DeliveryOutcome:
  attempted: int = 0
  sent: int = 0
  pruned: int = 0
  failed: int = 0

  @property
  def no_endpoints(self) -> bool:
    return self.attempted == 0


class DeliveryChannelAdapter:
  """
  Fans one logical notification out to every device a user registered.

  Best effort: a device that fails never stops the others, and tokens the
  channel reports as invalid are deleted so the registry heals itself.
  """

  def __init__(self, channel: PushChannel) -> None:
    self.channel = channel

  async def deliver(
    self,
    db: AsyncSession,
    *,
    user_id: str,
    title: str,
    body: str,
    data: dict[str, str],
  ) -> DeliveryOutcome:
    res = await db.execute(select(DeviceToken).where(DeviceToken.user_id == user_id))
    tokens = res.scalars().all()
    outcome = DeliveryOutcome()
    if not tokens:
      logger.debug("No device tokens for user %s", user_id)
      return outcome

    for t in tokens:
      outcome.attempted += 1
      try:
        result = await self.channel.send(token=t.token, title=title, body=body, data=dict(data))
      except Exception as e:
        logger.warning("Push to token %s... failed for user %s: %s", t.token[:10], user_id, e)
        outcome.failed += 1
        continue

      if result == SendResult.OK:
        outcome.sent += 1
      elif result == SendResult.INVALID_TOKEN:
        await self._prune(db, t)
        outcome.pruned += 1
      else:
        logger.warning("Push to token %s... failed for user %s", t.token[:10], user_id)
        outcome.failed += 1
    return outcome

  async def _prune(self, db: AsyncSession, token: DeviceToken) -> None:
    try:
      await db.execute(delete(DeviceToken).where(DeviceToken.id == token.id))
      await db.commit()
      logger.info("Removed invalid device token for user %s", token.user_id)
    except Exception:
      await db.rollback()
      logger.exception("Could not remove invalid device token %s", token.id)

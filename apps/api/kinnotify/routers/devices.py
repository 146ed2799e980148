from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.audit import write_audit
from kinnotify.deps import get_current_user, get_db
from kinnotify.models import DeviceToken, User
from kinnotify.schemas import DeviceRegisterIn, DeviceTokenOut

router = APIRouter(prefix="/devices", tags=["devices"])


def _device_out(t: DeviceToken) -> DeviceTokenOut:
  return DeviceTokenOut(
    id=t.id,
    userId=t.user_id,
    token=t.token,
    platform=t.platform,
    lastUpdated=t.last_updated,
    createdAt=t.created_at,
  )


@router.post("/register", response_model=DeviceTokenOut, status_code=status.HTTP_201_CREATED)
async def register_device(
  payload: DeviceRegisterIn,
  response: Response,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> DeviceTokenOut:
  now = datetime.now(timezone.utc)
  token = payload.token.strip()
  res = await db.execute(select(DeviceToken).where(DeviceToken.token == token))
  t = res.scalar_one_or_none()
  if t is not None:
    # Tokens are unique system-wide; a re-registration moves the device to the caller.
    previous_owner = t.user_id
    t.user_id = actor.id
    t.platform = payload.platform
    t.last_updated = now
    await write_audit(
      db,
      event_type="device.reassigned" if previous_owner != actor.id else "device.refreshed",
      entity_type="DeviceToken",
      entity_id=t.id,
      actor_id=actor.id,
      payload={"platform": payload.platform},
    )
    await db.commit()
    response.status_code = status.HTTP_200_OK
    return _device_out(t)

  t = DeviceToken(user_id=actor.id, token=token, platform=payload.platform, last_updated=now, created_at=now)
  db.add(t)
  await db.flush()
  await write_audit(db, event_type="device.registered", entity_type="DeviceToken", entity_id=t.id, actor_id=actor.id, payload={"platform": payload.platform})
  await db.commit()
  return _device_out(t)

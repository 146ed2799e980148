from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.audit import write_audit
from kinnotify.config import settings
from kinnotify.deps import get_current_user, get_db
from kinnotify.models import Notification, NotificationPreference, User
from kinnotify.schemas import (
  NotificationOut,
  NotificationPreferencesIn,
  NotificationPreferencesOut,
  UnreadCountOut,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _notification_out(n: Notification) -> NotificationOut:
  return NotificationOut(
    id=n.id,
    userId=n.user_id,
    type=n.type,
    entityType=n.entity_type,
    entityId=n.entity_id,
    title=n.title,
    body=n.body,
    data=dict(n.data or {}),
    sentAt=n.sent_at,
    readAt=n.read_at,
    createdAt=n.created_at,
  )


def _prefs_out(p: NotificationPreference) -> NotificationPreferencesOut:
  return NotificationPreferencesOut(
    events=bool(p.events),
    posts=bool(p.posts),
    messages=bool(p.messages),
    comments=bool(p.comments),
    mentions=bool(p.mentions),
    quietHoursStart=p.quiet_hours_start,
    quietHoursEnd=p.quiet_hours_end,
    timezone=p.timezone,
  )


async def _preferences_row(db: AsyncSession, user_id: str) -> NotificationPreference:
  res = await db.execute(select(NotificationPreference).where(NotificationPreference.user_id == user_id))
  p = res.scalar_one_or_none()
  if p is None:
    p = NotificationPreference(user_id=user_id, events=True, posts=True, messages=True, comments=True, mentions=True)
    db.add(p)
    await db.flush()
  return p


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
  unreadOnly: bool = False,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[NotificationOut]:
  stmt = select(Notification).where(Notification.user_id == actor.id)
  if unreadOnly:
    stmt = stmt.where(Notification.read_at.is_(None))
  stmt = stmt.order_by(Notification.created_at.desc()).limit(settings.notifications_list_limit)
  res = await db.execute(stmt)
  return [_notification_out(n) for n in res.scalars().all()]


@router.get("/unread-count", response_model=UnreadCountOut)
async def unread_count(actor: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> UnreadCountOut:
  res = await db.execute(
    select(func.count()).select_from(Notification).where(Notification.user_id == actor.id, Notification.read_at.is_(None))
  )
  return UnreadCountOut(count=int(res.scalar_one()))


@router.put("/read-all")
async def mark_all_read(actor: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  now = datetime.now(timezone.utc)
  await db.execute(update(Notification).where(Notification.user_id == actor.id, Notification.read_at.is_(None)).values(read_at=now))
  await write_audit(db, event_type="notifications.read_all", entity_type="Notification", entity_id=None, actor_id=actor.id)
  await db.commit()
  return {"ok": True}


@router.get("/preferences", response_model=NotificationPreferencesOut)
async def get_preferences(actor: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> NotificationPreferencesOut:
  p = await _preferences_row(db, actor.id)
  await db.commit()
  return _prefs_out(p)


@router.put("/preferences", response_model=NotificationPreferencesOut)
async def update_preferences(
  payload: NotificationPreferencesIn,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NotificationPreferencesOut:
  p = await _preferences_row(db, actor.id)
  p.events = payload.events
  p.posts = payload.posts
  p.messages = payload.messages
  p.comments = payload.comments
  p.mentions = payload.mentions
  p.quiet_hours_start = payload.quietHoursStart
  p.quiet_hours_end = payload.quietHoursEnd
  p.timezone = payload.timezone
  p.updated_at = datetime.now(timezone.utc)
  await write_audit(
    db,
    event_type="notifications.preferences.updated",
    entity_type="NotificationPreference",
    entity_id=p.id,
    actor_id=actor.id,
    payload=payload.model_dump(),
  )
  await db.commit()
  return _prefs_out(p)


@router.put("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
  notification_id: str,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NotificationOut:
  res = await db.execute(select(Notification).where(Notification.id == notification_id, Notification.user_id == actor.id))
  n = res.scalar_one_or_none()
  if not n:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
  n.read_at = datetime.now(timezone.utc)
  await db.commit()
  return _notification_out(n)

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.audit import write_audit
from kinnotify.deps import get_current_user, get_db
from kinnotify.models import Reminder, ReminderType, User
from kinnotify.reminders.service import snooze
from kinnotify.schemas import ReminderCreateIn, ReminderOut, ReminderSnoozeIn, ReminderUpdateIn

router = APIRouter(prefix="/reminders", tags=["reminders"])


def _reminder_out(r: Reminder) -> ReminderOut:
  return ReminderOut(
    id=r.id,
    userId=r.user_id,
    entityType=r.entity_type,
    entityId=r.entity_id,
    scheduledTime=r.scheduled_time,
    snoozeUntil=r.snooze_until,
    reminderType=r.reminder_type,
    isSent=bool(r.is_sent),
    title=r.title,
    body=r.body,
    createdAt=r.created_at,
    updatedAt=r.updated_at,
  )


async def _owned_reminder(db: AsyncSession, reminder_id: str, actor: User) -> Reminder:
  res = await db.execute(select(Reminder).where(Reminder.id == reminder_id, Reminder.user_id == actor.id))
  r = res.scalar_one_or_none()
  if not r:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reminder not found")
  return r


@router.get("", response_model=list[ReminderOut])
async def list_reminders(actor: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ReminderOut]:
  res = await db.execute(
    select(Reminder).where(Reminder.user_id == actor.id, Reminder.is_sent.is_(False)).order_by(Reminder.scheduled_time.asc())
  )
  return [_reminder_out(r) for r in res.scalars().all()]


@router.post("", response_model=ReminderOut, status_code=status.HTTP_201_CREATED)
async def create_reminder(
  payload: ReminderCreateIn,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ReminderOut:
  now = datetime.now(timezone.utc)
  r = Reminder(
    user_id=actor.id,
    entity_type=payload.entityType,
    entity_id=payload.entityId,
    scheduled_time=payload.scheduledTime,
    reminder_type=ReminderType.CUSTOM.value,
    is_sent=False,
    title=payload.title.strip(),
    body=payload.body.strip(),
    created_at=now,
    updated_at=now,
  )
  db.add(r)
  await db.flush()
  await write_audit(
    db,
    event_type="reminder.created",
    entity_type="Reminder",
    entity_id=r.id,
    actor_id=actor.id,
    payload={"entityType": r.entity_type, "entityId": r.entity_id, "scheduledTime": r.scheduled_time},
  )
  await db.commit()
  return _reminder_out(r)


@router.put("/{reminder_id}", response_model=ReminderOut)
async def update_reminder(
  reminder_id: str,
  payload: ReminderUpdateIn,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ReminderOut:
  r = await _owned_reminder(db, reminder_id, actor)
  if r.reminder_type == ReminderType.AUTO.value:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Automatic reminders follow their event and cannot be edited")

  changed = payload.model_dump(exclude_unset=True)
  if payload.scheduledTime is not None:
    r.scheduled_time = payload.scheduledTime
    # A new time means a fresh delivery.
    r.snooze_until = None
    r.is_sent = False
  if payload.title is not None:
    r.title = payload.title.strip()
  if payload.body is not None:
    r.body = payload.body.strip()
  r.updated_at = datetime.now(timezone.utc)
  await write_audit(db, event_type="reminder.updated", entity_type="Reminder", entity_id=r.id, actor_id=actor.id, payload=changed)
  await db.commit()
  return _reminder_out(r)


@router.put("/{reminder_id}/snooze", response_model=ReminderOut)
async def snooze_reminder(
  reminder_id: str,
  payload: ReminderSnoozeIn,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ReminderOut:
  r = await _owned_reminder(db, reminder_id, actor)
  snooze(r, minutes=payload.duration)
  await write_audit(
    db,
    event_type="reminder.snoozed",
    entity_type="Reminder",
    entity_id=r.id,
    actor_id=actor.id,
    payload={"duration": payload.duration, "snoozeUntil": r.snooze_until},
  )
  await db.commit()
  return _reminder_out(r)


@router.delete("/{reminder_id}")
async def delete_reminder(
  reminder_id: str,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  r = await _owned_reminder(db, reminder_id, actor)
  await db.delete(r)
  await write_audit(db, event_type="reminder.deleted", entity_type="Reminder", entity_id=reminder_id, actor_id=actor.id)
  await db.commit()
  return {"ok": True}

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.audit import write_audit
from kinnotify.deps import get_current_user, get_db, get_dispatcher
from kinnotify.models import Event, NotificationType, User
from kinnotify.notifications.dispatcher import NotificationDispatcher, dispatch_in_background
from kinnotify.reminders.planner import EVENT_ENTITY, EventReminderPlanner
from kinnotify.schemas import EventIn, EventOut

router = APIRouter(prefix="/events", tags=["events"])

planner = EventReminderPlanner()


def _event_out(e: Event) -> EventOut:
  return EventOut(
    id=e.id,
    title=e.title,
    description=e.description,
    location=e.location,
    dateTime=e.date_time,
    createdBy=e.created_by,
    attendees=list(e.attendees or []),
    createdAt=e.created_at,
    updatedAt=e.updated_at,
  )


async def _event_or_404(db: AsyncSession, event_id: str, *, for_update: bool = False) -> Event:
  q = select(Event).where(Event.id == event_id)
  if for_update:
    # Serialises edits, RSVPs and deletes so replans of one event can't interleave.
    q = q.with_for_update()
  res = await db.execute(q)
  e = res.scalar_one_or_none()
  if not e:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
  return e


def _require_creator(e: Event, actor: User) -> None:
  if e.created_by and e.created_by != actor.id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the event creator can change it")


async def _known_attendees(db: AsyncSession, attendees: list[str]) -> list[str]:
  wanted = list(dict.fromkeys(a for a in attendees if a))
  if not wanted:
    return []
  res = await db.execute(select(User.id).where(User.id.in_(wanted)))
  unknown = set(wanted) - set(res.scalars().all())
  if unknown:
    raise HTTPException(
      status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
      detail=f"Unknown attendee: {', '.join(sorted(unknown))}",
    )
  return wanted


@router.get("", response_model=list[EventOut])
async def list_events(actor: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[EventOut]:
  res = await db.execute(select(Event).order_by(Event.date_time.asc()))
  return [_event_out(e) for e in res.scalars().all()]


@router.post("", response_model=EventOut, status_code=status.HTTP_201_CREATED)
async def create_event(
  payload: EventIn,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> EventOut:
  now = datetime.now(timezone.utc)
  e = Event(
    title=payload.title.strip(),
    description=payload.description,
    location=payload.location,
    date_time=payload.dateTime,
    created_by=actor.id,
    attendees=await _known_attendees(db, payload.attendees),
    created_at=now,
    updated_at=now,
  )
  db.add(e)
  await db.flush()
  await planner.plan(db, e, now=now)
  await write_audit(db, event_type="event.created", entity_type="Event", entity_id=e.id, actor_id=actor.id, payload={"title": e.title})
  await db.commit()
  return _event_out(e)


@router.put("/{event_id}", response_model=EventOut)
async def update_event(
  event_id: str,
  payload: EventIn,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> EventOut:
  e = await _event_or_404(db, event_id, for_update=True)
  _require_creator(e, actor)
  now = datetime.now(timezone.utc)
  e.title = payload.title.strip()
  e.description = payload.description
  e.location = payload.location
  e.date_time = payload.dateTime
  e.attendees = await _known_attendees(db, payload.attendees)
  e.updated_at = now
  await planner.replan(db, e, now=now)
  await write_audit(db, event_type="event.updated", entity_type="Event", entity_id=e.id, actor_id=actor.id, payload={"title": e.title})
  await db.commit()
  return _event_out(e)


@router.delete("/{event_id}")
async def delete_event(
  event_id: str,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  e = await _event_or_404(db, event_id, for_update=True)
  _require_creator(e, actor)
  removed = await planner.forget(db, e.id)
  await db.delete(e)
  await write_audit(
    db, event_type="event.deleted", entity_type="Event", entity_id=event_id, actor_id=actor.id, payload={"remindersRemoved": removed}
  )
  await db.commit()
  return {"ok": True}


@router.post("/{event_id}/rsvp", response_model=EventOut)
async def toggle_rsvp(
  event_id: str,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> EventOut:
  e = await _event_or_404(db, event_id, for_update=True)
  now = datetime.now(timezone.utc)
  attendees = list(e.attendees or [])
  attending = actor.id not in attendees
  if attending:
    attendees.append(actor.id)
  else:
    attendees = [a for a in attendees if a != actor.id]
  # Reassign so the JSON column is flagged dirty.
  e.attendees = attendees
  e.updated_at = now
  await planner.replan(db, e, now=now)
  await write_audit(
    db, event_type="event.rsvp", entity_type="Event", entity_id=e.id, actor_id=actor.id, payload={"attending": attending}
  )
  await db.commit()

  creator_id = e.created_by
  if creator_id and creator_id != actor.id:
    title = e.title
    body = f"{actor.name} is attending {title}" if attending else f"{actor.name} is no longer attending {title}"

    async def _notify(bg: AsyncSession) -> None:
      await dispatcher.send(
        bg,
        user_id=creator_id,
        type=NotificationType.EVENT_RSVP,
        entity_type=EVENT_ENTITY,
        entity_id=event_id,
        title=f"RSVP: {title}",
        body=body,
      )

    dispatch_in_background(_notify, label=f"rsvp event {event_id}")
  return _event_out(e)

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.config import settings
from kinnotify.deps import get_current_user, get_db
from kinnotify.metrics import runtime_metrics
from kinnotify.models import DeviceToken, Reminder, User
from kinnotify.reminders.service import due_clause

router = APIRouter(prefix="/system", tags=["system"])


def _as_state(ok: bool, warn: bool = False) -> str:
  if not ok:
    return "red"
  return "yellow" if warn else "green"


@router.get("/status")
async def get_system_status(
  request: Request,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  now = datetime.now(timezone.utc)
  try:
    await db.execute(text("SELECT 1"))
    db_ok = True
  except Exception:
    db_ok = False

  backlog = 0
  devices = 0
  if db_ok:
    backlog = int((await db.execute(select(func.count()).select_from(Reminder).where(due_clause(now)))).scalar_one())
    devices = int((await db.execute(select(func.count()).select_from(DeviceToken))).scalar_one())

  scheduler = getattr(request.app.state, "scheduler", None)
  running = bool(scheduler is not None and scheduler.running)
  metrics = runtime_metrics.snapshot()
  return {
    "generatedAt": now,
    "version": settings.app_version,
    "database": _as_state(db_ok),
    "scheduler": {
      "state": _as_state(running or not settings.reminder_scheduler_enabled, warn=not running),
      "running": running,
      "intervalSeconds": settings.reminder_interval_seconds,
      "dueBacklog": backlog,
    },
    "pushProvider": settings.push_provider,
    "deviceTokens": devices,
    "metrics": metrics,
  }

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kinnotify.db import SessionLocal
from kinnotify.models import ApiToken, User
from kinnotify.notifications.dispatcher import NotificationDispatcher
from kinnotify.security import api_token_hash


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


def get_dispatcher(request: Request) -> NotificationDispatcher:
  return request.app.state.dispatcher


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
  # Identity is issued upstream; we only resolve a bearer token to its user.
  auth = request.headers.get("authorization")
  if not auth or not auth.lower().startswith("bearer "):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
  token = auth.split(" ", 1)[1].strip()
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

  tres = await db.execute(select(ApiToken).where(ApiToken.token_hash == api_token_hash(token), ApiToken.revoked_at.is_(None)))
  t = tres.scalar_one_or_none()
  if not t:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  ures = await db.execute(select(User).where(User.id == t.user_id))
  u = ures.scalar_one_or_none()
  if not u:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
  if not bool(u.active):
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User disabled")
  t.last_used_at = datetime.now(timezone.utc)
  await db.commit()
  return u

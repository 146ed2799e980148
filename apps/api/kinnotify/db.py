from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from kinnotify.config import settings


def _engine_for(url: str) -> AsyncEngine:
  kwargs: dict[str, Any] = {"pool_pre_ping": True}
  if url.startswith("sqlite"):
    kwargs = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url:
      # One shared connection so an in-memory database survives across sessions.
      kwargs["poolclass"] = StaticPool
  return create_async_engine(url, **kwargs)


engine = _engine_for(settings.database_url)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

from __future__ import annotations

import logging
from time import monotonic

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from kinnotify.config import settings
from kinnotify.db import SessionLocal
from kinnotify.metrics import runtime_metrics
from kinnotify.notifications.channels import channel_for
from kinnotify.notifications.dispatcher import build_dispatcher, drain_background
from kinnotify.reminders.scheduler import ReminderScheduler
from kinnotify.routers.devices import router as devices_router
from kinnotify.routers.events import router as events_router
from kinnotify.routers.notifications import router as notifications_router
from kinnotify.routers.posts import router as posts_router
from kinnotify.routers.reminders import router as reminders_router
from kinnotify.routers.system_status import router as system_status_router

logger = logging.getLogger("kinnotify")


def configure_logging() -> None:
  logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
  )


configure_logging()

app = FastAPI(
  title="Kin Notify API",
  version="0.1.0",
  docs_url="/docs" if settings.api_docs_enabled else None,
  redoc_url="/redoc" if settings.api_docs_enabled else None,
  openapi_url="/openapi.json" if settings.api_docs_enabled else None,
)

# Built eagerly so routers can resolve it without the startup hook having run.
app.state.dispatcher = build_dispatcher(channel_for(settings))
app.state.scheduler = None

app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_origin_regex=settings.cors_origin_regex,
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

app.include_router(devices_router)
app.include_router(notifications_router)
app.include_router(reminders_router)
app.include_router(events_router)
app.include_router(posts_router)
app.include_router(system_status_router)


@app.middleware("http")
async def _request_metrics_middleware(request, call_next):
  start = monotonic()
  response = await call_next(request)
  elapsed_ms = (monotonic() - start) * 1000.0
  runtime_metrics.observe_request(response.status_code, elapsed_ms)
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  return response


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version, "buildSha": settings.build_sha}


@app.on_event("startup")
async def _startup() -> None:
  if settings.is_test_db():
    return
  if not settings.app_secret or settings.app_secret.strip().lower() in {"dev-secret-change-me", "replace_with_strong_random_secret"}:
    logger.warning("APP_SECRET is a placeholder; API token hashes are not protected")
  if settings.reminder_scheduler_enabled and app.state.scheduler is None:
    scheduler = ReminderScheduler(
      app.state.dispatcher,
      SessionLocal,
      interval_seconds=settings.reminder_interval_seconds,
      batch_limit=settings.reminder_batch_limit,
    )
    scheduler.start()
    app.state.scheduler = scheduler


@app.on_event("shutdown")
async def _shutdown() -> None:
  scheduler = app.state.scheduler
  if scheduler is not None:
    await scheduler.stop()
    app.state.scheduler = None
  await drain_background()
  channel = app.state.dispatcher.adapter.channel
  if hasattr(channel, "aclose"):
    await channel.aclose()

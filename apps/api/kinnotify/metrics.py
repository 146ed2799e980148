from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from time import monotonic
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
  from kinnotify.reminders.scheduler import TickResult


@dataclass
class RequestSample:
  ts: datetime
  status_code: int
  latency_ms: float


class RuntimeMetrics:
  def __init__(self) -> None:
    self._started_monotonic = monotonic()
    self._started_at = datetime.now(timezone.utc)
    self._samples: deque[RequestSample] = deque()
    self._lock = Lock()
    self._ticks = 0
    self._reminders_sent = 0
    self._reminders_failed = 0
    self._last_tick: dict[str, Any] | None = None

  @property
  def started_at(self) -> datetime:
    return self._started_at

  def uptime_seconds(self) -> int:
    return max(0, int(monotonic() - self._started_monotonic))

  def observe_request(self, status_code: int, latency_ms: float) -> None:
    now = datetime.now(timezone.utc)
    with self._lock:
      self._samples.append(RequestSample(ts=now, status_code=status_code, latency_ms=latency_ms))
      self._prune_locked(now)

  def observe_tick(self, tick: TickResult) -> None:
    with self._lock:
      self._ticks += 1
      self._reminders_sent += tick.sent
      self._reminders_failed += tick.failed
      self._last_tick = {
        "at": tick.at,
        "due": tick.due,
        "sent": tick.sent,
        "skipped": tick.skipped,
        "failed": tick.failed,
      }

  def _prune_locked(self, now: datetime) -> None:
    cutoff = now - timedelta(hours=24)
    while self._samples and self._samples[0].ts < cutoff:
      self._samples.popleft()

  def snapshot(self) -> dict:
    now = datetime.now(timezone.utc)
    with self._lock:
      self._prune_locked(now)
      samples = list(self._samples)
      ticks = self._ticks
      sent = self._reminders_sent
      failed = self._reminders_failed
      last_tick = dict(self._last_tick) if self._last_tick else None

    cutoff_15 = now - timedelta(minutes=15)
    recent = [s for s in samples if s.ts >= cutoff_15]
    errors_24h = sum(1 for s in samples if s.status_code >= 500)

    return {
      "uptimeSeconds": self.uptime_seconds(),
      "startedAt": self._started_at,
      "requestCount15m": len(recent),
      "requestCount24h": len(samples),
      "errorCount24h": errors_24h,
      "schedulerTicks": ticks,
      "remindersSent": sent,
      "remindersFailed": failed,
      "lastTick": last_tick,
    }


runtime_metrics = RuntimeMetrics()

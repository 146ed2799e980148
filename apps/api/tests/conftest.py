from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

# Must be set before kinnotify builds its engine. A file (not :memory:) so background
# work gets its own connection instead of sharing the request's transaction.
TEST_DB = Path(tempfile.gettempdir()) / f"kinnotify_{os.getpid()}_test.db"
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{TEST_DB}")
os.environ.setdefault("PUSH_PROVIDER", "local")
os.environ.setdefault("DEFAULT_TIMEZONE", "UTC")

from kinnotify.config import settings
from kinnotify.db import SessionLocal, engine
from kinnotify.main import app
from kinnotify.models import ApiToken, Base, DeviceToken, NotificationPreference, User
from kinnotify.notifications.channels import SendResult
from kinnotify.notifications.dispatcher import NotificationDispatcher, build_dispatcher, drain_background
from kinnotify.security import new_api_token


class FakePushChannel:
  """Records every send; per-token outcomes can be a SendResult or an exception to raise."""

  def __init__(self) -> None:
    self.calls: list[dict] = []
    self.outcomes: dict[str, SendResult | Exception] = {}

  async def send(self, *, token: str, title: str, body: str, data: dict[str, str]) -> SendResult:
    self.calls.append({"token": token, "title": title, "body": body, "data": dict(data)})
    outcome = self.outcomes.get(token, SendResult.OK)
    if isinstance(outcome, Exception):
      raise outcome
    return outcome

  def tokens(self) -> list[str]:
    return [c["token"] for c in self.calls]


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture(autouse=True)
async def _fresh_schema(anyio_backend: str) -> None:
  if not settings.is_test_db():
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database."
    )
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
    await conn.run_sync(Base.metadata.create_all)
  yield
  await drain_background()
  # Pooled connections are bound to this test's event loop.
  await engine.dispose()


@pytest.fixture
def push() -> FakePushChannel:
  return FakePushChannel()


@pytest.fixture
def dispatcher(push: FakePushChannel) -> NotificationDispatcher:
  return build_dispatcher(push)


@pytest.fixture
async def client(dispatcher: NotificationDispatcher) -> AsyncClient:
  original = app.state.dispatcher
  app.state.dispatcher = dispatcher
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c
  app.state.dispatcher = original


async def make_user(name: str, *, email: str | None = None, active: bool = True) -> User:
  async with SessionLocal() as db:
    u = User(email=email or f"{name.lower()}@kin.local", name=name, active=active)
    db.add(u)
    await db.commit()
    return u


async def issue_token(user_id: str) -> str:
  plaintext, token_hash, hint = new_api_token()
  async with SessionLocal() as db:
    db.add(ApiToken(user_id=user_id, name="tests", token_hash=token_hash, token_hint=hint))
    await db.commit()
  return plaintext


async def login_as(name: str, **kwargs) -> tuple[User, dict[str, str]]:
  u = await make_user(name, **kwargs)
  token = await issue_token(u.id)
  return u, {"Authorization": f"Bearer {token}"}


async def add_device(user_id: str, token: str, platform: str = "android") -> None:
  async with SessionLocal() as db:
    db.add(DeviceToken(user_id=user_id, token=token, platform=platform))
    await db.commit()


async def set_preferences(user_id: str, **values) -> None:
  async with SessionLocal() as db:
    db.add(NotificationPreference(user_id=user_id, **values))
    await db.commit()

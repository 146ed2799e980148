from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from conftest import login_as, make_user
from kinnotify.db import SessionLocal
from kinnotify.models import DeviceToken, NotificationType
from kinnotify.notifications.dispatcher import NotificationDispatcher


async def _device_rows(token: str) -> list[DeviceToken]:
  async with SessionLocal() as db:
    res = await db.execute(select(DeviceToken).where(DeviceToken.token == token))
    return list(res.scalars().all())


@pytest.mark.anyio
async def test_requests_require_a_bearer_token(client: AsyncClient) -> None:
  r = await client.get("/notifications")
  assert r.status_code == 401, r.text
  r = await client.get("/notifications", headers={"Authorization": "Bearer kn_nope"})
  assert r.status_code == 401, r.text


@pytest.mark.anyio
async def test_disabled_user_is_rejected(client: AsyncClient) -> None:
  _, headers = await login_as("Gone", active=False)
  r = await client.get("/notifications", headers=headers)
  assert r.status_code == 403, r.text


@pytest.mark.anyio
async def test_register_device_then_reassign_to_another_user(client: AsyncClient) -> None:
  a, a_headers = await login_as("Alice")
  b, b_headers = await login_as("Bruno")

  first = await client.post("/devices/register", json={"token": "shared-phone", "platform": "android"}, headers=a_headers)
  assert first.status_code == 201, first.text
  assert first.json()["userId"] == a.id

  again = await client.post("/devices/register", json={"token": "shared-phone", "platform": "android"}, headers=a_headers)
  assert again.status_code == 200, again.text

  moved = await client.post("/devices/register", json={"token": "shared-phone", "platform": "ios"}, headers=b_headers)
  assert moved.status_code == 200, moved.text
  assert moved.json()["userId"] == b.id
  assert moved.json()["platform"] == "ios"

  rows = await _device_rows("shared-phone")
  assert len(rows) == 1
  assert rows[0].user_id == b.id


@pytest.mark.anyio
async def test_register_device_validates_platform(client: AsyncClient) -> None:
  _, headers = await login_as("Val")
  r = await client.post("/devices/register", json={"token": "t", "platform": "blackberry"}, headers=headers)
  assert r.status_code == 422, r.text


@pytest.mark.anyio
async def test_inbox_listing_unread_count_and_mark_read(client: AsyncClient, dispatcher: NotificationDispatcher) -> None:
  u, headers = await login_as("Inbox")
  other = await make_user("Other")
  async with SessionLocal() as db:
    for i in range(3):
      await dispatcher.send(
        db, user_id=u.id, type=NotificationType.NEW_POST, entity_type="post", entity_id=f"p{i}", title=f"Post {i}", body="b"
      )
    theirs = await dispatcher.send(
      db, user_id=other.id, type=NotificationType.NEW_POST, entity_type="post", entity_id="px", title="x", body="b"
    )

  listed = await client.get("/notifications", headers=headers)
  assert listed.status_code == 200, listed.text
  items = listed.json()
  assert len(items) == 3
  assert all(n["readAt"] is None for n in items)

  count = await client.get("/notifications/unread-count", headers=headers)
  assert count.json() == {"count": 3}

  read = await client.put(f"/notifications/{items[0]['id']}/read", headers=headers)
  assert read.status_code == 200, read.text
  assert read.json()["readAt"] is not None
  assert (await client.get("/notifications/unread-count", headers=headers)).json() == {"count": 2}

  unread = await client.get("/notifications", params={"unreadOnly": "true"}, headers=headers)
  assert len(unread.json()) == 2

  forbidden = await client.put(f"/notifications/{theirs.id}/read", headers=headers)
  assert forbidden.status_code == 404, forbidden.text

  all_read = await client.put("/notifications/read-all", headers=headers)
  assert all_read.status_code == 200, all_read.text
  assert (await client.get("/notifications/unread-count", headers=headers)).json() == {"count": 0}


@pytest.mark.anyio
async def test_preferences_default_then_full_replace(client: AsyncClient) -> None:
  _, headers = await login_as("Prefs")
  r = await client.get("/notifications/preferences", headers=headers)
  assert r.status_code == 200, r.text
  assert r.json() == {
    "events": True,
    "posts": True,
    "messages": True,
    "comments": True,
    "mentions": True,
    "quietHoursStart": None,
    "quietHoursEnd": None,
    "timezone": None,
  }

  upd = await client.put(
    "/notifications/preferences",
    json={"posts": False, "quietHoursStart": "22:00", "quietHoursEnd": "07:00", "timezone": "Europe/Berlin"},
    headers=headers,
  )
  assert upd.status_code == 200, upd.text
  body = upd.json()
  assert body["posts"] is False
  assert body["events"] is True
  assert body["quietHoursStart"] == "22:00"
  assert body["timezone"] == "Europe/Berlin"

  # Omitted fields reset to their defaults.
  reset = await client.put("/notifications/preferences", json={"comments": False}, headers=headers)
  assert reset.json()["posts"] is True
  assert reset.json()["quietHoursStart"] is None


@pytest.mark.anyio
async def test_preferences_validation(client: AsyncClient) -> None:
  _, headers = await login_as("Strict")
  bad_time = await client.put("/notifications/preferences", json={"quietHoursStart": "25:00", "quietHoursEnd": "07:00"}, headers=headers)
  assert bad_time.status_code == 422, bad_time.text
  half = await client.put("/notifications/preferences", json={"quietHoursStart": "22:00"}, headers=headers)
  assert half.status_code == 422, half.text
  bad_zone = await client.put("/notifications/preferences", json={"timezone": "Mars/Olympus"}, headers=headers)
  assert bad_zone.status_code == 422, bad_zone.text


@pytest.mark.anyio
async def test_health_version_and_system_status(client: AsyncClient) -> None:
  assert (await client.get("/health")).json() == {"ok": True}
  assert "version" in (await client.get("/version")).json()
  _, headers = await login_as("Ops")
  r = await client.get("/system/status", headers=headers)
  assert r.status_code == 200, r.text
  body = r.json()
  assert body["database"] == "green"
  assert body["scheduler"]["running"] is False
  assert body["metrics"]["requestCount24h"] >= 1

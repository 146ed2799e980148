from __future__ import annotations

import base64
import enum
import json
import logging
import time
from pathlib import Path
from typing import Any, Protocol

import httpx
import jwt

from kinnotify.config import Settings

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"

# Google access tokens live one hour; refresh a bit before that.
_ACCESS_TOKEN_SKEW_SECONDS = 5 * 60


class SendResult(str, enum.Enum):
  OK = "ok"
  INVALID_TOKEN = "invalid_token"
  ERROR = "error"


class PushChannelConfigError(RuntimeError):
  pass


class PushChannel(Protocol):
  async def send(self, *, token: str, title: str, body: str, data: dict[str, str]) -> SendResult: ...


class LocalPushChannel:
  """Delivers nowhere. Used in development and whenever FCM is not configured."""

  async def send(self, *, token: str, title: str, body: str, data: dict[str, str]) -> SendResult:
    logger.debug("local push to %s...: %s", token[:10], title)
    return SendResult.OK


def _load_service_account(path: str | None, b64: str | None) -> dict[str, Any]:
  raw: str | None = None
  if b64:
    try:
      raw = base64.b64decode(b64).decode("utf-8")
    except ValueError as e:
      raise PushChannelConfigError(f"FCM_CREDENTIALS_BASE64 decode failed: {e}") from e
  elif path:
    p = Path(path)
    if not p.exists():
      raise PushChannelConfigError(f"FCM credentials file not found: {path}")
    raw = p.read_text(encoding="utf-8")
  if not raw:
    raise PushChannelConfigError("FCM credentials are not configured")
  try:
    info = json.loads(raw)
  except json.JSONDecodeError as e:
    raise PushChannelConfigError(f"FCM credentials are not valid JSON: {e}") from e
  for key in ("client_email", "private_key"):
    if not info.get(key):
      raise PushChannelConfigError(f"FCM credentials missing {key}")
  return info


class FcmPushChannel:
  """Firebase Cloud Messaging HTTP v1 sender authenticated with a service account."""

  def __init__(
    self,
    *,
    project_id: str,
    service_account: dict[str, Any],
    android_channel_id: str,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> None:
    if not project_id:
      raise PushChannelConfigError("FCM project id is not configured")
    self.project_id = project_id
    self.service_account = service_account
    self.android_channel_id = android_channel_id
    self.timeout = timeout
    self.transport = transport
    self._access_token: tuple[str, float] | None = None
    self._client: httpx.AsyncClient | None = None

  def _assertion(self, now: float) -> str:
    sa = self.service_account
    headers = {"kid": sa["private_key_id"]} if sa.get("private_key_id") else None
    return jwt.encode(
      {
        "iss": sa["client_email"],
        "scope": FCM_SCOPE,
        "aud": sa.get("token_uri") or GOOGLE_TOKEN_URI,
        "iat": int(now),
        "exp": int(now) + 3600,
      },
      sa["private_key"],
      algorithm="RS256",
      headers=headers,
    )

  async def _bearer(self, client: httpx.AsyncClient) -> str:
    now = time.time()
    if self._access_token and self._access_token[1] > now:
      return self._access_token[0]
    r = await client.post(
      self.service_account.get("token_uri") or GOOGLE_TOKEN_URI,
      data={"grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer", "assertion": self._assertion(now)},
    )
    r.raise_for_status()
    payload = r.json()
    token = str(payload["access_token"])
    expires_in = int(payload.get("expires_in") or 3600)
    self._access_token = (token, now + max(60, expires_in - _ACCESS_TOKEN_SKEW_SECONDS))
    return token

  def _message(self, *, token: str, title: str, body: str, data: dict[str, str]) -> dict[str, Any]:
    return {
      "message": {
        "token": token,
        "notification": {"title": title, "body": body},
        "data": {str(k): str(v) for k, v in (data or {}).items()},
        "android": {
          "priority": "high",
          "notification": {
            "sound": "default",
            "channel_id": self.android_channel_id,
            "notification_priority": "PRIORITY_HIGH",
            "default_sound": True,
          },
        },
      }
    }

  def _http(self) -> httpx.AsyncClient:
    # One pooled client for every device in a fan-out.
    if self._client is None or self._client.is_closed:
      self._client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
    return self._client

  async def aclose(self) -> None:
    if self._client is not None:
      await self._client.aclose()
      self._client = None

  async def send(self, *, token: str, title: str, body: str, data: dict[str, str]) -> SendResult:
    client = self._http()
    bearer = await self._bearer(client)
    r = await client.post(
      FCM_SEND_URL.format(project_id=self.project_id),
      json=self._message(token=token, title=title, body=body, data=data),
      headers={"authorization": f"Bearer {bearer}"},
    )
    if r.is_success:
      return SendResult.OK
    if is_invalid_token_response(r.status_code, _json_or_empty(r)):
      return SendResult.INVALID_TOKEN
    logger.warning("FCM returned %s for token %s...: %s", r.status_code, token[:10], r.text[:300])
    return SendResult.ERROR


def _json_or_empty(r: httpx.Response) -> dict[str, Any]:
  try:
    obj = r.json()
  except ValueError:
    return {}
  return obj if isinstance(obj, dict) else {}


def is_invalid_token_response(status_code: int, payload: dict[str, Any]) -> bool:
  err = payload.get("error") or {}
  err_status = str(err.get("status") or "").upper()
  codes = {str(d.get("errorCode") or "").upper() for d in (err.get("details") or []) if isinstance(d, dict)}
  if "UNREGISTERED" in codes or "INVALID_ARGUMENT" in codes:
    return True
  if status_code == 404 or err_status == "NOT_FOUND":
    return True
  return status_code == 400 and err_status == "INVALID_ARGUMENT"


def channel_for(cfg: Settings) -> PushChannel:
  provider = (cfg.push_provider or "local").strip().lower()
  if provider == "fcm":
    try:
      info = _load_service_account(cfg.fcm_credentials_path, cfg.fcm_credentials_base64)
      return FcmPushChannel(
        project_id=cfg.fcm_project_id or str(info.get("project_id") or ""),
        service_account=info,
        android_channel_id=cfg.fcm_android_channel_id,
        timeout=cfg.fcm_timeout_seconds,
      )
    except PushChannelConfigError as e:
      logger.warning("FCM push channel unavailable, falling back to local delivery: %s", e)
  return LocalPushChannel()

from __future__ import annotations

import hashlib
import hmac
import secrets

from kinnotify.config import settings


def api_token_hash(token: str) -> str:
  # Keyed hash so DB leaks don't allow offline token matching.
  key = (settings.app_secret or "").encode("utf-8")
  msg = (token or "").strip().encode("utf-8")
  return hmac.new(key, msg, hashlib.sha256).hexdigest()


def new_api_token() -> tuple[str, str, str]:
  """Returns (plaintext, hash, hint). Only the hash and hint are stored."""
  token = "kn_" + secrets.token_urlsafe(32)
  return token, api_token_hash(token), f"…{token[-6:]}"

from __future__ import annotations

import hashlib
import hmac
import secrets

API_TOKEN_PREFIX = "tb_"


def new_api_token() -> str:
  return API_TOKEN_PREFIX + secrets.token_urlsafe(32)


def api_token_hint(token: str) -> str:
  return (token or "")[-4:]


def api_token_hash(token: str, secret: str) -> str:
  # Keyed hash so DB leaks don't allow offline token matching.
  key = (secret or "").encode("utf-8")
  msg = (token or "").strip().encode("utf-8")
  return hmac.new(key, msg, hashlib.sha256).hexdigest()

# app/security.py
"""
Device tokens and request throttling.

Tokens are HS256 JWTs carrying user_id + device_id. The rate limiter is an
in-process counter per client IP; it is only correct for a single instance.
"""

import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Dict, Optional

from jose import JWTError, jwt

ALGORITHM = "HS256"
ISSUER = "kwachatracker"


def create_access_token(user_id: str, device_id: str, secret: str, expiration_hours: int) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "user_id": user_id,
        "device_id": device_id,
        "iss": ISSUER,
        "iat": now,
        "exp": now + timedelta(hours=expiration_hours),
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_token(token: str, secret: str) -> Optional[Dict[str, str]]:
    """Returns the claims, or None if the token is invalid, expired or incomplete."""
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], issuer=ISSUER)
    except JWTError:
        return None
    if not payload.get("user_id"):
        return None
    return payload


class RateLimiter:
    """Fixed window: counts reset every `window` seconds."""

    def __init__(self, max_requests: int = 100, window: float = 60.0):
        self.max_requests = max_requests
        self.window = window
        self._counts: Dict[str, int] = defaultdict(int)
        self._last_reset = time.monotonic()
        self._lock = Lock()

    def allow(self, client: str) -> bool:
        with self._lock:
            now = time.monotonic()
            if now - self._last_reset > self.window:
                self._counts = defaultdict(int)
                self._last_reset = now
            self._counts[client] += 1
            return self._counts[client] <= self.max_requests

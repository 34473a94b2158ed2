from __future__ import annotations

import time
from collections import deque
from threading import Lock

from flask import current_app, request

from services.permissions import json_error


class RateLimiter:
    """Janela deslizante em memoria, por processo."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._buckets: dict[str, deque[float]] = {}

    def check(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int | None]:
        if limit <= 0 or window_seconds <= 0:
            return True, None

        now = time.time()
        cutoff = now - window_seconds
        with self._lock:
            bucket = self._buckets.setdefault(key, deque())
            while bucket and bucket[0] < cutoff:
                bucket.popleft()

            if len(bucket) >= limit:
                retry = int(window_seconds - (now - bucket[0]))
                return False, max(retry, 1)

            bucket.append(now)
            return True, None

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


limiter = RateLimiter()


def client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


def rate_limit_key(action: str, identifier: str | None = None) -> str:
    base = f"{action}:{client_ip()}"
    if identifier:
        base = f"{base}:{identifier}"
    return base


def user_key(action: str, user_id) -> str:
    # Checkout conta por usuario, independente do IP
    return f"{action}:user:{user_id}"


def enforce(key: str, config_prefix: str, *, default_limit: int, message: str):
    """Aplica RATE_LIMIT_<X> / RATE_LIMIT_<X>_WINDOW. Devolve a resposta 429 ou None."""
    limit = int(current_app.config.get(config_prefix, default_limit))
    window = int(current_app.config.get(f"{config_prefix}_WINDOW", 60))
    allowed, retry_after = limiter.check(key, limit=limit, window_seconds=window)
    if allowed:
        return None

    resp, status = json_error(message, 429, "RATE_LIMITED")
    resp.headers["Retry-After"] = str(retry_after or window)
    return resp, status

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any

import redis

from app.core.config import settings

_LOG = logging.getLogger(__name__)

_redis_client: redis.Redis | None = None
_redis_lock = threading.Lock()
_redis_down_until = 0.0


def _get_redis_client() -> redis.Redis | None:
    global _redis_client, _redis_down_until
    if _redis_client is not None:
        return _redis_client
    if time.monotonic() < _redis_down_until:
        return None
    with _redis_lock:
        if _redis_client is not None:
            return _redis_client
        if time.monotonic() < _redis_down_until:
            return None
        try:
            client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_timeout=0.25,
                socket_connect_timeout=0.25,
            )
            client.ping()
            _redis_client = client
            return _redis_client
        except Exception as exc:
            _LOG.warning("live channel unavailable: %s", exc)
            _redis_client = None
            _redis_down_until = time.monotonic() + settings.LIVE_CHANNEL_RETRY_SECONDS
            return None


def work_channel(work_id: Any) -> str:
    return f"work:{work_id}"


def technician_channel(technician_id: Any) -> str:
    return f"technician:{technician_id}"


def publish(channel: str, event: str, payload: dict[str, Any]) -> bool:
    """Fire-and-forget broadcast; subscribers see the last write, stale ones are superseded."""
    client = _get_redis_client()
    if client is None:
        return False
    message = json.dumps(
        {"event": event, "sent_at": datetime.now(timezone.utc).isoformat(), "data": payload},
        default=str,
    )
    try:
        client.publish(channel, message)
    except Exception as exc:
        _LOG.warning("live channel publish to %s failed: %s", channel, exc)
        return False
    return True

from __future__ import annotations

import json
import logging
from typing import Any, Literal, TYPE_CHECKING

from studio.core.config import settings

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from redis.asyncio import Redis as RedisClient

QueueState = Literal["disabled", "ok", "unavailable"]

_client: "RedisClient | None" = None


def get_redis() -> "RedisClient | None":
    """Shared client for the notification queue, or None when REDIS_URL is empty."""
    global _client
    url = (settings.redis_url or "").strip()
    if not url:
        return None
    if _client is None:
        from redis.asyncio import Redis

        _client = Redis.from_url(url, encoding="utf-8", decode_responses=True)
    return _client


async def queue_state() -> QueueState:
    client = get_redis()
    if client is None:
        return "disabled"
    try:
        await client.ping()
    except Exception as exc:
        logger.warning("notification_queue_unreachable", extra={"error": str(exc)})
        return "unavailable"
    return "ok"


async def close_redis() -> None:
    global _client
    client, _client = _client, None
    if client is None:
        return
    try:
        await client.aclose()
    except Exception:
        logger.exception("redis_close_failed")


def json_dumps(value: Any) -> str:
    """Compact JSON for queue payloads; UUIDs and datetimes fall back to str()."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)

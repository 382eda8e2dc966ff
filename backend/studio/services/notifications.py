from __future__ import annotations

import enum
import inspect
import logging
import threading
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, TypeVar, cast
from uuid import UUID

from studio.core.config import settings
from studio.core.redis_client import get_redis, json_dumps

logger = logging.getLogger(__name__)
T = TypeVar("T")


class NotificationKind(str, enum.Enum):
    deliverable_ready = "deliverable_ready"
    deliverable_approved = "deliverable_approved"
    deliverable_revision_requested = "deliverable_revision_requested"
    comment_added = "comment_added"


@dataclass(frozen=True, slots=True)
class Notification:
    kind: NotificationKind
    recipient_id: str
    asset_ids: tuple[UUID, ...]
    message: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "recipient_id": self.recipient_id,
            "asset_ids": [str(asset_id) for asset_id in self.asset_ids],
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class OutboxNotifier:
    """Collects notifications in memory until the HTTP layer drains and dispatches them."""

    def __init__(self) -> None:
        self._items: list[Notification] = []
        self._lock = threading.Lock()

    def notify(self, notification: Notification) -> None:
        with self._lock:
            self._items.append(notification)

    def drain(self) -> list[Notification]:
        with self._lock:
            items, self._items = self._items, []
        return items

    def pending(self) -> int:
        with self._lock:
            return len(self._items)


async def _await_if_needed(result: Awaitable[T] | T) -> T:
    if inspect.isawaitable(result):
        return await cast(Awaitable[T], result)
    return cast(T, result)


async def dispatch(notifications: Iterable[Notification]) -> int:
    """Fire-and-forget delivery: log every notification and queue it on Redis when configured."""
    sent = 0
    redis = get_redis()
    for notification in notifications:
        logger.info(
            "notification_dispatched",
            extra={
                "kind": notification.kind.value,
                "recipient_id": notification.recipient_id,
                "asset_count": len(notification.asset_ids),
            },
        )
        sent += 1
        if redis is None:
            continue
        try:
            await _await_if_needed(redis.rpush(settings.notification_queue_key, json_dumps(notification.to_payload())))
        except Exception:
            logger.exception("notification_queue_push_failed", extra={"recipient_id": notification.recipient_id})
    return sent

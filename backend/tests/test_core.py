import pytest

from studio.core import redis_client, sentry
from studio.core.logging_config import actor_id_ctx_var, request_id_ctx_var
from studio.middleware.request_log import MAX_REQUEST_ID_LENGTH, resolve_request_id


def test_request_id_is_reused_or_minted() -> None:
    assert resolve_request_id("  abc-123 ") == "abc-123"
    assert len(resolve_request_id("x" * 200)) == MAX_REQUEST_ID_LENGTH
    minted = resolve_request_id("   ")
    assert minted and minted != resolve_request_id(None)


def test_sentry_is_disabled_without_dsn() -> None:
    assert sentry.init_sentry() is False


def test_sentry_events_are_tagged_and_scrubbed() -> None:
    request_token = request_id_ctx_var.set("req-1")
    actor_token = actor_id_ctx_var.set("editor-1")
    try:
        event = sentry._tag_event(
            {"request": {"headers": {"Authorization": "Bearer secret", "Accept": "application/json"}}}, {}
        )
    finally:
        actor_id_ctx_var.reset(actor_token)
        request_id_ctx_var.reset(request_token)

    assert event["tags"] == {"request_id": "req-1", "actor_id": "editor-1"}
    assert event["request"]["headers"]["Authorization"] == "[scrubbed]"
    assert event["request"]["headers"]["Accept"] == "application/json"


class _PingRedis:
    def __init__(self, *, fail: bool) -> None:
        self.fail = fail

    async def ping(self) -> bool:
        if self.fail:
            raise ConnectionError("down")
        return True


@pytest.mark.anyio("asyncio")
async def test_queue_state(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(redis_client, "get_redis", lambda: None)
    assert await redis_client.queue_state() == "disabled"
    monkeypatch.setattr(redis_client, "get_redis", lambda: _PingRedis(fail=False))
    assert await redis_client.queue_state() == "ok"
    monkeypatch.setattr(redis_client, "get_redis", lambda: _PingRedis(fail=True))
    assert await redis_client.queue_state() == "unavailable"


def test_json_dumps_is_compact() -> None:
    assert redis_client.json_dumps({"a": [1, 2]}) == '{"a":[1,2]}'

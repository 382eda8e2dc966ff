from __future__ import annotations

import logging
from typing import Any

from studio.core.config import settings
from studio.core.logging_config import actor_id_ctx_var, request_id_ctx_var

_SCRUBBED_HEADERS = {"authorization", "cookie"}


def _tag_event(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any]:
    """Attach request/actor ids and drop bearer tokens before the event leaves the process."""
    tags = event.setdefault("tags", {})
    request_id = request_id_ctx_var.get()
    if request_id:
        tags["request_id"] = request_id
    actor_id = actor_id_ctx_var.get()
    if actor_id:
        tags["actor_id"] = actor_id
    headers = (event.get("request") or {}).get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in _SCRUBBED_HEADERS:
                headers[name] = "[scrubbed]"
    return event


def init_sentry() -> bool:
    """Initialise error reporting when SENTRY_DSN is set; returns whether it ran."""
    dsn = (settings.sentry_dsn or "").strip()
    if not dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations import Integration
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    integrations: list[Integration] = [FastApiIntegration(), SqlalchemyIntegration()]
    if settings.sentry_enable_logs:
        level_name = str(settings.sentry_log_level or "error").strip().upper()
        event_level = getattr(logging, level_name, logging.ERROR)
        integrations.append(LoggingIntegration(level=event_level, event_level=event_level))

    sentry_sdk.init(
        dsn=dsn,
        environment=settings.environment,
        release=f"studio-delivery@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=integrations,
        before_send=_tag_event,
        send_default_pii=False,
    )
    sentry_sdk.set_tag("service", settings.app_name)
    return True

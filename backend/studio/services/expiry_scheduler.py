from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from fastapi import FastAPI

from studio.core.config import settings
from studio.db.session import SessionLocal
from studio.services import asset_store
from studio.services.delivery import DeliveryWorkflow
from studio.services.errors import NotFound

logger = logging.getLogger(__name__)


async def _run_once(workflow: DeliveryWorkflow) -> int:
    expired = workflow.sweep_expired()
    if not expired:
        return 0
    async with SessionLocal() as session:
        for asset_id in expired:
            try:
                asset = workflow.catalog.get(asset_id)
            except NotFound:
                continue
            await asset_store.save_asset(session, asset)
            await asset_store.record_event(
                session,
                asset_id,
                "expired",
                from_status=asset.approval_status,
                to_status=asset.approval_status,
                note="access revoked (expired)",
            )
        await session.commit()
    return len(expired)


async def _loop(workflow: DeliveryWorkflow, stop: asyncio.Event) -> None:
    interval = max(30, int(getattr(settings, "expiry_sweep_interval_seconds", 300) or 300))
    while not stop.is_set():
        try:
            expired = await _run_once(workflow)
            if expired:
                logger.info("deliverables_expired", extra={"count": int(expired)})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.warning("expiry_scheduler_failed", extra={"error": str(exc)})

        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=interval)


def start(app: FastAPI) -> None:
    if not bool(getattr(settings, "expiry_sweep_enabled", True)):
        return
    if getattr(app.state, "expiry_scheduler_task", None) is not None:
        return

    stop = asyncio.Event()
    task = asyncio.create_task(_loop(app.state.workflow, stop))
    app.state.expiry_scheduler_stop = stop
    app.state.expiry_scheduler_task = task


async def stop(app: FastAPI) -> None:
    stop_event = getattr(app.state, "expiry_scheduler_stop", None)
    task = getattr(app.state, "expiry_scheduler_task", None)
    if stop_event:
        stop_event.set()
    if task:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    if getattr(app.state, "expiry_scheduler_stop", None) is not None:
        delattr(app.state, "expiry_scheduler_stop")
    if getattr(app.state, "expiry_scheduler_task", None) is not None:
        delattr(app.state, "expiry_scheduler_task")

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession

from studio.core.config import settings
from studio.schemas.asset import AssetRead, BatchFailureRead, BatchResultRead
from studio.services import asset_store, notifications
from studio.services.catalog import ApprovalStatus, Asset
from studio.services.delivery import BatchResult
from studio.services.notifications import OutboxNotifier


def asset_read(asset: Asset) -> AssetRead:
    return AssetRead.model_validate(asset)


def batch_read(result: BatchResult) -> BatchResultRead:
    return BatchResultRead(
        succeeded=[asset_read(asset) for asset in result.succeeded],
        failed=[
            BatchFailureRead(asset_id=failure.asset_id, code=failure.error.code, detail=failure.error.detail)
            for failure in result.failed
        ],
    )


def single_or_raise(result: BatchResult) -> Asset:
    if result.failed:
        raise result.failed[0].error
    return result.succeeded[0]


def expiry_from_days(days: int | None) -> timedelta:
    return timedelta(days=int(days or settings.deliverable_default_expiry_days))


async def persist(
    session: AsyncSession,
    assets: Iterable[Asset],
    *,
    action: str | None = None,
    actor_id: str | None = None,
    from_status: ApprovalStatus | None = None,
    note: str | None = None,
) -> None:
    for asset in assets:
        await asset_store.save_asset(session, asset)
        if action:
            await asset_store.record_event(
                session,
                asset.id,
                action,
                from_status=from_status,
                to_status=asset.approval_status,
                actor_id=actor_id,
                note=note,
            )
    await session.commit()


def dispatch_notifications(background_tasks: BackgroundTasks, notifier: OutboxNotifier) -> None:
    pending = notifier.drain()
    if pending:
        background_tasks.add_task(notifications.dispatch, pending)

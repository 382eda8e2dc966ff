from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from studio.api.v1.shared import asset_read, dispatch_notifications, expiry_from_days, persist, single_or_raise
from studio.core.dependencies import get_access_context, get_notifier, get_workflow, require_operator
from studio.db.session import get_session
from studio.schemas.asset import (
    AccessRequest,
    AnnotationCreate,
    AssetRead,
    ExpireDueResponse,
    RedeliverRequest,
    RequestRevisionRequest,
    RetrievalRefRead,
)
from studio.services.catalog import ApprovalStatus
from studio.services.delivery import AccessContext, DeliveryWorkflow
from studio.services.notifications import OutboxNotifier

router = APIRouter(prefix="/assets", tags=["delivery"])


@router.post("/expire-due", response_model=ExpireDueResponse)
async def expire_due(
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    context: AccessContext = Depends(require_operator),
) -> ExpireDueResponse:
    expired = workflow.sweep_expired()
    assets = [workflow.catalog.get(asset_id) for asset_id in expired if asset_id in workflow.catalog]
    await persist(session, assets, action="expired", actor_id=context.actor_id)
    return ExpireDueResponse(expired=expired)


@router.post("/{asset_id}/approve", response_model=AssetRead)
async def approve(
    asset_id: UUID,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    notifier: OutboxNotifier = Depends(get_notifier),
    context: AccessContext = Depends(get_access_context),
) -> AssetRead:
    asset = workflow.approve(asset_id, actor=context)
    await persist(session, [asset], action="approved", actor_id=context.actor_id, from_status=ApprovalStatus.pending)
    dispatch_notifications(background_tasks, notifier)
    return asset_read(asset)


@router.post("/{asset_id}/request-revision", response_model=AssetRead)
async def request_revision(
    asset_id: UUID,
    payload: RequestRevisionRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    notifier: OutboxNotifier = Depends(get_notifier),
    context: AccessContext = Depends(get_access_context),
) -> AssetRead:
    asset = workflow.request_revision(
        asset_id, payload.comment, actor=context, timecode_seconds=payload.timecode_seconds
    )
    await persist(
        session,
        [asset],
        action="revision_requested",
        actor_id=context.actor_id,
        from_status=ApprovalStatus.pending,
        note=payload.comment.strip(),
    )
    dispatch_notifications(background_tasks, notifier)
    return asset_read(asset)


@router.post("/{asset_id}/redeliver", response_model=AssetRead)
async def redeliver(
    asset_id: UUID,
    payload: RedeliverRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    notifier: OutboxNotifier = Depends(get_notifier),
    context: AccessContext = Depends(require_operator),
) -> AssetRead:
    expiry = None if payload.clear_expiry else expiry_from_days(payload.expiry_days)
    asset = single_or_raise(workflow.redeliver([asset_id], expiry, actor=context, message=payload.message))
    await persist(session, [asset], action="redelivered", actor_id=context.actor_id, note=payload.message)
    dispatch_notifications(background_tasks, notifier)
    return asset_read(asset)


@router.post("/{asset_id}/mark-delivered", response_model=AssetRead)
async def mark_delivered(
    asset_id: UUID,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    context: AccessContext = Depends(require_operator),
) -> AssetRead:
    asset = workflow.mark_delivered(asset_id, actor=context)
    await persist(session, [asset], action="delivered", actor_id=context.actor_id, from_status=ApprovalStatus.approved)
    return asset_read(asset)


@router.post("/{asset_id}/annotations", response_model=AssetRead)
async def add_annotation(
    asset_id: UUID,
    payload: AnnotationCreate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    notifier: OutboxNotifier = Depends(get_notifier),
    context: AccessContext = Depends(get_access_context),
) -> AssetRead:
    asset = workflow.add_annotation(asset_id, payload.text, actor=context, timecode_seconds=payload.timecode_seconds)
    await persist(session, [asset])
    dispatch_notifications(background_tasks, notifier)
    return asset_read(asset)


@router.post("/{asset_id}/annotations/{index}/resolve", response_model=AssetRead)
async def resolve_annotation(
    asset_id: UUID,
    index: int,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    context: AccessContext = Depends(get_access_context),
) -> AssetRead:
    asset = workflow.resolve_annotation(asset_id, index, actor=context)
    await persist(session, [asset])
    return asset_read(asset)


@router.post("/{asset_id}/access", response_model=RetrievalRefRead)
async def access(
    asset_id: UUID,
    payload: AccessRequest,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    context: AccessContext = Depends(get_access_context),
) -> RetrievalRefRead:
    ref = workflow.access(asset_id, payload.operation, context)
    await persist(session, [workflow.catalog.get(asset_id)])
    return RetrievalRefRead.model_validate(ref)

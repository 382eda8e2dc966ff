from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from studio.api.v1.shared import asset_read, dispatch_notifications, expiry_from_days, persist, single_or_raise
from studio.core.dependencies import get_access_context, get_notifier, get_workflow, require_operator
from studio.db.session import get_session
from studio.schemas.asset import AssetRead, AssetUpdateRequest, CropRead, CropRectRead, TranscodeReport
from studio.services import asset_store, focal_crop
from studio.services.catalog import AssetType, IngestStatus
from studio.services.delivery import AccessContext, DeliveryWorkflow
from studio.services.errors import StudioError, ValidationError
from studio.services.notifications import OutboxNotifier

router = APIRouter(prefix="/assets", tags=["assets"])


@router.get("/{asset_id}", response_model=AssetRead)
async def get_asset(
    asset_id: UUID,
    workflow: DeliveryWorkflow = Depends(get_workflow),
    context: AccessContext = Depends(get_access_context),
) -> AssetRead:
    return asset_read(workflow.visible_asset(asset_id, context))


@router.post("/{asset_id}/transcode", response_model=AssetRead)
async def report_transcode(
    asset_id: UUID,
    payload: TranscodeReport,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    context: AccessContext = Depends(require_operator),
) -> AssetRead:
    workflow.require_asset(asset_id, context)
    asset = workflow.catalog.report_transcode(
        asset_id,
        IngestStatus(payload.status),
        width=payload.width,
        height=payload.height,
        duration_seconds=payload.duration_seconds,
        thumbnail_ref=payload.thumbnail_ref,
    )
    await persist(session, [asset])
    return asset_read(asset)


@router.patch("/{asset_id}", response_model=AssetRead)
async def update_asset(
    asset_id: UUID,
    payload: AssetUpdateRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    notifier: OutboxNotifier = Depends(get_notifier),
    context: AccessContext = Depends(require_operator),
) -> AssetRead:
    catalog = workflow.catalog
    fields = payload.model_fields_set
    if ("focal_x" in fields) != ("focal_y" in fields):
        raise ValidationError("focal_x and focal_y must be set together")

    asset = workflow.require_asset(asset_id, context)
    applied = False
    try:
        # Type change first: a failed promotion leaves the asset untouched.
        if payload.asset_type is not None and payload.asset_type != asset.asset_type:
            if payload.asset_type == AssetType.deliverable:
                result = workflow.mark_deliverable(
                    asset.project_id, [asset_id], expiry_from_days(payload.expiry_days), actor=context
                )
                asset = single_or_raise(result)
            else:
                asset = catalog.reclassify(asset_id, payload.asset_type)
            applied = True
        if "title" in fields or "caption" in fields:
            asset = catalog.update_metadata(asset_id, title=payload.title, caption=payload.caption)
            applied = True
        if payload.tags is not None:
            asset = catalog.set_tags(asset_id, payload.tags)
            applied = True
        if "focal_x" in fields:
            asset = catalog.set_focal_point(asset_id, payload.focal_x, payload.focal_y)
            applied = True
    except StudioError:
        if applied:
            await persist(session, [catalog.get(asset_id)], action="updated", actor_id=context.actor_id)
        raise

    await persist(session, [asset], action="updated", actor_id=context.actor_id)
    dispatch_notifications(background_tasks, notifier)
    return asset_read(asset)


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT, response_model=None)
async def delete_asset(
    asset_id: UUID,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    context: AccessContext = Depends(require_operator),
) -> Response:
    workflow.require_asset(asset_id, context)
    workflow.catalog.delete(asset_id)
    await asset_store.delete_asset(session, asset_id)
    await asset_store.record_event(session, asset_id, "deleted", actor_id=context.actor_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{asset_id}/crop", response_model=CropRead)
async def crop_asset(
    asset_id: UUID,
    aspect: str = Query(default=focal_crop.AUTO_ASPECT, max_length=32),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    context: AccessContext = Depends(get_access_context),
) -> CropRead:
    asset = workflow.visible_asset(asset_id, context)
    rect = None
    pixel_box = None
    if asset.width and asset.height:
        rect = focal_crop.compute_crop(asset.width, asset.height, aspect, asset.focal_x, asset.focal_y)
        box = focal_crop.crop_box_pixels(asset.width, asset.height, aspect, asset.focal_x, asset.focal_y)
        pixel_box = list(box) if box is not None else None
    return CropRead(
        asset_id=asset.id,
        aspect=aspect,
        crop=CropRectRead.model_validate(rect) if rect is not None else None,
        object_position=focal_crop.focal_point_to_object_position(asset.focal_x, asset.focal_y),
        pixel_box=pixel_box,
    )

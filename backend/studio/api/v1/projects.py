from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from studio.api.v1.shared import asset_read, batch_read, dispatch_notifications, expiry_from_days, persist
from studio.core import metrics
from studio.core.config import settings
from studio.core.dependencies import get_access_context, get_catalog, get_notifier, get_workflow, require_operator
from studio.db.session import get_session
from studio.schemas.asset import (
    AssetCreate,
    AssetListResponse,
    AssetRead,
    BatchResultRead,
    FacetCountsRead,
    MarkDeliverableRequest,
    PaginationMeta,
    ProjectCreate,
    ProjectRead,
)
from studio.services import asset_store, facets
from studio.services.catalog import AssetCatalog, Project
from studio.services.delivery import AccessContext, DeliveryWorkflow, Role
from studio.services.facets import FilterState, SortOption
from studio.services.notifications import OutboxNotifier

router = APIRouter(prefix="/projects", tags=["projects"])


def _project_read(project: Project) -> ProjectRead:
    return ProjectRead(
        id=project.id,
        name=project.name,
        client_id=project.client_id,
        team_ids=sorted(project.team_ids),
    )


@router.post("", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreate,
    session: AsyncSession = Depends(get_session),
    catalog: AssetCatalog = Depends(get_catalog),
    context: AccessContext = Depends(require_operator),
) -> ProjectRead:
    team_ids = {value.strip() for value in payload.team_ids if value.strip()}
    if context.role == Role.team:
        team_ids.add(context.actor_id)
    project = catalog.register_project(
        Project(
            id=uuid4(),
            name=payload.name.strip(),
            client_id=(payload.client_id or "").strip() or None,
            team_ids=frozenset(team_ids),
        )
    )
    await asset_store.save_project(session, project)
    await session.commit()
    return _project_read(project)


@router.post("/{project_id}/assets", response_model=AssetRead, status_code=status.HTTP_201_CREATED)
async def ingest_asset(
    project_id: UUID,
    payload: AssetCreate,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    context: AccessContext = Depends(require_operator),
) -> AssetRead:
    workflow.require_project(project_id, context)
    asset = workflow.catalog.ingest(
        project_id=project_id,
        uploader_id=context.actor_id,
        filename=payload.filename,
        mime_type=payload.mime_type,
        size_bytes=payload.size_bytes,
        storage_ref=payload.storage_ref,
        title=payload.title,
        caption=payload.caption,
        tags=payload.tags,
    )
    metrics.record_asset_ingested()
    await persist(session, [asset], action="ingested", actor_id=context.actor_id)
    return asset_read(asset)


@router.get("/{project_id}/assets", response_model=AssetListResponse)
async def list_assets(
    project_id: UUID,
    asset_type: list[str] = Query(default=[]),
    status_filter: list[str] = Query(default=[], alias="status"),
    tag: list[str] = Query(default=[]),
    uploader: list[str] = Query(default=[]),
    q: str | None = Query(default=None, max_length=200),
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    sort: SortOption = SortOption.newest,
    limit: int = Query(default=settings.facet_default_limit),
    offset: int = Query(default=0),
    include_revoked: bool = False,
    workflow: DeliveryWorkflow = Depends(get_workflow),
    context: AccessContext = Depends(get_access_context),
) -> AssetListResponse:
    visible = workflow.visible_assets(project_id, context)
    state = FilterState.from_params(
        asset_types=asset_type,
        statuses=status_filter,
        tags=tag,
        uploaders=uploader,
        search=q,
        date_from=created_from,
        date_to=created_to,
        include_revoked=include_revoked and context.is_operator,
    )
    result = facets.query(visible, state, sort, limit=min(limit, settings.facet_max_limit), offset=offset)
    return AssetListResponse(
        items=[asset_read(asset) for asset in result.page],
        counts=FacetCountsRead.model_validate(result.counts),
        pagination=PaginationMeta(offset=result.offset, limit=result.limit, has_more=result.has_more),
    )


@router.post("/{project_id}/deliverables", response_model=BatchResultRead)
async def mark_deliverables(
    project_id: UUID,
    payload: MarkDeliverableRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    workflow: DeliveryWorkflow = Depends(get_workflow),
    notifier: OutboxNotifier = Depends(get_notifier),
    context: AccessContext = Depends(require_operator),
) -> BatchResultRead:
    result = workflow.mark_deliverable(
        project_id,
        payload.asset_ids,
        expiry_from_days(payload.expiry_days),
        actor=context,
        message=payload.message,
    )
    await persist(session, result.succeeded, action="marked_deliverable", actor_id=context.actor_id)
    dispatch_notifications(background_tasks, notifier)
    return batch_read(result)

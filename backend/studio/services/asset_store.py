"""Write-through persistence for the in-memory catalog.

The catalog stays authoritative while the process runs; these helpers mirror
each committed record into the database and rebuild the catalog at startup.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studio.models.asset import AnnotationRecord, AssetRecord, AssetTagRecord, DeliveryEventRecord, ProjectRecord
from studio.services.catalog import Annotation, ApprovalStatus, Asset, AssetCatalog, Project, canonical_tag

logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes even for timezone-aware columns
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _split_team_ids(raw: str | None) -> frozenset[str]:
    return frozenset(part.strip() for part in (raw or "").split(",") if part.strip())


async def save_project(session: AsyncSession, project: Project) -> ProjectRecord:
    record = await session.get(ProjectRecord, project.id)
    if record is None:
        record = ProjectRecord(id=project.id)
    record.name = project.name
    record.client_id = project.client_id
    record.team_ids = ",".join(sorted(project.team_ids)) or None
    session.add(record)
    await session.flush()
    return record


def _copy_scalars(record: AssetRecord, asset: Asset) -> None:
    record.project_id = asset.project_id
    record.asset_type = asset.asset_type
    record.status = asset.status
    record.approval_status = asset.approval_status
    record.filename = asset.filename
    record.mime_type = asset.mime_type
    record.size_bytes = asset.size_bytes
    record.width = asset.width
    record.height = asset.height
    record.duration_seconds = asset.duration_seconds
    record.title = asset.title
    record.caption = asset.caption
    record.storage_ref = asset.storage_ref
    record.thumbnail_ref = asset.thumbnail_ref
    record.uploaded_by = asset.uploaded_by
    record.focal_x = asset.focal_x
    record.focal_y = asset.focal_y
    record.expires_at = asset.expires_at
    record.access_revoked = asset.access_revoked
    record.approved_at = asset.approved_at
    record.approved_by = asset.approved_by
    record.delivered_at = asset.delivered_at
    record.view_count = asset.view_count
    record.download_count = asset.download_count
    record.version = asset.version
    record.created_at = asset.created_at
    record.updated_at = asset.updated_at


async def save_asset(session: AsyncSession, asset: Asset) -> AssetRecord:
    """Upsert one asset; records older than what is stored are ignored."""
    record = await session.get(AssetRecord, asset.id)
    if record is None:
        record = AssetRecord(id=asset.id)
        session.add(record)
    elif record.version > asset.version:
        return record
    _copy_scalars(record, asset)

    # Children are replaced wholesale; flush the removals first so the unique
    # constraints never see the old and new rows together.
    if record.tags or record.annotations:
        record.tags.clear()
        record.annotations.clear()
        await session.flush()
    record.tags.extend(
        AssetTagRecord(value=canonical_tag(tag), display=tag, position=index) for index, tag in enumerate(asset.tags)
    )
    record.annotations.extend(
        AnnotationRecord(
            position=index,
            author_name=note.author_name,
            text=note.text,
            timecode_seconds=note.timecode_seconds,
            resolved=note.resolved,
            created_at=note.created_at,
        )
        for index, note in enumerate(asset.annotations)
    )
    await session.flush()
    return record


async def save_assets(session: AsyncSession, assets: Iterable[Asset]) -> int:
    count = 0
    for asset in assets:
        await save_asset(session, asset)
        count += 1
    return count


async def delete_asset(session: AsyncSession, asset_id: UUID) -> None:
    record = await session.get(AssetRecord, asset_id)
    if record is None:
        return
    await session.delete(record)
    await session.flush()


async def record_event(
    session: AsyncSession,
    asset_id: UUID,
    action: str,
    *,
    from_status: ApprovalStatus | None = None,
    to_status: ApprovalStatus | None = None,
    actor_id: str | None = None,
    note: str | None = None,
) -> None:
    session.add(
        DeliveryEventRecord(
            asset_id=asset_id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            note=note,
        )
    )
    await session.flush()


def _to_project(record: ProjectRecord) -> Project:
    return Project(
        id=record.id,
        name=record.name,
        client_id=record.client_id,
        team_ids=_split_team_ids(record.team_ids),
    )


def _to_asset(record: AssetRecord) -> Asset:
    return Asset(
        id=record.id,
        project_id=record.project_id,
        filename=record.filename,
        mime_type=record.mime_type,
        size_bytes=int(record.size_bytes or 0),
        uploaded_by=record.uploaded_by,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
        asset_type=record.asset_type,
        status=record.status,
        width=record.width,
        height=record.height,
        duration_seconds=record.duration_seconds,
        title=record.title,
        caption=record.caption,
        storage_ref=record.storage_ref,
        thumbnail_ref=record.thumbnail_ref,
        tags=tuple(tag.display for tag in record.tags),
        focal_x=float(record.focal_x),
        focal_y=float(record.focal_y),
        expires_at=_aware(record.expires_at),
        access_revoked=bool(record.access_revoked),
        approval_status=record.approval_status,
        approved_at=_aware(record.approved_at),
        approved_by=record.approved_by,
        delivered_at=_aware(record.delivered_at),
        annotations=tuple(
            Annotation(
                author_name=note.author_name,
                text=note.text,
                created_at=_aware(note.created_at),
                timecode_seconds=note.timecode_seconds,
                resolved=bool(note.resolved),
            )
            for note in record.annotations
        ),
        view_count=int(record.view_count or 0),
        download_count=int(record.download_count or 0),
        version=int(record.version or 1),
    )


async def load_catalog(session: AsyncSession, catalog: AssetCatalog) -> int:
    """Hydrate ``catalog`` from the database and return the number of assets restored."""
    projects = (await session.execute(select(ProjectRecord))).scalars().all()
    assets = (await session.execute(select(AssetRecord))).scalars().all()
    restored = catalog.restore((_to_asset(row) for row in assets), (_to_project(row) for row in projects))
    logger.info("catalog_hydrated", extra={"projects": len(projects), "assets": restored})
    return restored

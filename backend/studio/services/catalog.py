from __future__ import annotations

import enum
import logging
import math
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from uuid import UUID, uuid4

from studio.services.errors import InvalidTransition, NotFound, ValidationError

logger = logging.getLogger(__name__)

MAX_TAGS_PER_ASSET = 30
MAX_TAG_LENGTH = 64
DEFAULT_FOCAL_POINT = (0.5, 0.5)


class AssetType(str, enum.Enum):
    raw = "raw"
    wip = "wip"
    deliverable = "deliverable"
    avatar = "avatar"
    portfolio = "portfolio"


class IngestStatus(str, enum.Enum):
    uploaded = "uploaded"
    processing = "processing"
    ready = "ready"
    failed = "failed"


class ApprovalStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    revision_requested = "revision_requested"
    delivered = "delivered"


class AccessOperation(str, enum.Enum):
    view = "view"
    download = "download"


INGEST_TRANSITIONS: dict[IngestStatus, set[IngestStatus]] = {
    IngestStatus.uploaded: {IngestStatus.processing, IngestStatus.failed},
    IngestStatus.processing: {IngestStatus.ready, IngestStatus.failed},
    IngestStatus.failed: {IngestStatus.processing},
    IngestStatus.ready: set(),
}


@dataclass(frozen=True, slots=True)
class Annotation:
    author_name: str
    text: str
    created_at: datetime
    timecode_seconds: float | None = None
    resolved: bool = False


@dataclass(frozen=True, slots=True)
class Project:
    id: UUID
    name: str
    client_id: str | None = None
    team_ids: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True)
class Asset:
    id: UUID
    project_id: UUID
    filename: str
    mime_type: str
    size_bytes: int
    uploaded_by: str
    created_at: datetime
    updated_at: datetime
    asset_type: AssetType = AssetType.raw
    status: IngestStatus = IngestStatus.uploaded
    width: int | None = None
    height: int | None = None
    duration_seconds: float | None = None
    title: str | None = None
    caption: str | None = None
    storage_ref: str | None = None
    thumbnail_ref: str | None = None
    tags: tuple[str, ...] = ()
    focal_x: float = DEFAULT_FOCAL_POINT[0]
    focal_y: float = DEFAULT_FOCAL_POINT[1]
    expires_at: datetime | None = None
    access_revoked: bool = False
    approval_status: ApprovalStatus | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    delivered_at: datetime | None = None
    annotations: tuple[Annotation, ...] = ()
    view_count: int = 0
    download_count: int = 0
    version: int = 1

    @property
    def tag_keys(self) -> frozenset[str]:
        return frozenset(canonical_tag(tag) for tag in self.tags)

    @property
    def focal_point(self) -> tuple[float, float]:
        return self.focal_x, self.focal_y

    @property
    def is_deliverable(self) -> bool:
        return self.asset_type == AssetType.deliverable

    @property
    def is_video(self) -> bool:
        return self.mime_type.lower().startswith("video/")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def canonical_tag(value: str) -> str:
    return " ".join(str(value or "").split()).lower()[:MAX_TAG_LENGTH]


def normalize_tags(values: Iterable[str]) -> tuple[str, ...]:
    """Dedupe by canonical form, keeping the first spelling for display."""
    seen: set[str] = set()
    out: list[str] = []
    for raw in values or ():
        display = " ".join(str(raw or "").split())[:MAX_TAG_LENGTH]
        key = canonical_tag(display)
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(display)
        if len(out) >= MAX_TAGS_PER_ASSET:
            break
    return tuple(out)


def _validate_focal_component(name: str, value: float) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number between 0 and 1")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number between 0 and 1") from None
    if not math.isfinite(number) or number < 0.0 or number > 1.0:
        raise ValidationError(f"{name} must be between 0 and 1, got {value!r}")
    return number


class AssetCatalog:
    """In-memory catalog of immutable asset records.

    Writers are serialized per asset and swap the record under a version
    compare-and-swap; readers take point-in-time snapshots and never see a
    half-applied mutation.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or _utcnow
        self._records: dict[UUID, Asset] = {}
        self._projects: dict[UUID, Project] = {}
        self._lock = threading.Lock()
        self._asset_locks: dict[UUID, threading.Lock] = {}

    def now(self) -> datetime:
        return self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, asset_id: object) -> bool:
        with self._lock:
            return asset_id in self._records

    def _asset_lock(self, asset_id: UUID) -> threading.Lock:
        with self._lock:
            lock = self._asset_locks.get(asset_id)
            if lock is None:
                lock = threading.Lock()
                self._asset_locks[asset_id] = lock
            return lock

    # projects

    def register_project(self, project: Project) -> Project:
        if not str(project.name or "").strip():
            raise ValidationError("Project name is required")
        with self._lock:
            self._projects[project.id] = project
        return project

    def get_project(self, project_id: UUID) -> Project:
        with self._lock:
            project = self._projects.get(project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found")
        return project

    def projects(self) -> tuple[Project, ...]:
        with self._lock:
            return tuple(self._projects.values())

    # reads

    def get(self, asset_id: UUID) -> Asset:
        with self._lock:
            asset = self._records.get(asset_id)
        if asset is None:
            raise NotFound(f"Asset {asset_id} not found")
        return asset

    def snapshot(self, project_id: UUID | None = None) -> tuple[Asset, ...]:
        with self._lock:
            records = tuple(self._records.values())
        if project_id is None:
            return records
        return tuple(asset for asset in records if asset.project_id == project_id)

    # writes

    def restore(self, assets: Iterable[Asset], projects: Iterable[Project] = ()) -> int:
        """Load previously persisted records, replacing anything with the same id."""
        count = 0
        with self._lock:
            for project in projects:
                self._projects[project.id] = project
            for asset in assets:
                self._records[asset.id] = asset
                count += 1
        return count

    def update(self, asset_id: UUID, mutate: Callable[[Asset], Asset]) -> Asset:
        """Apply ``mutate`` to the current record while holding the asset's writer lock.

        ``mutate`` runs inside the critical section, so precondition checks it
        performs see the latest committed state. Returning the record unchanged
        is a no-op.
        """
        with self._asset_lock(asset_id):
            current = self.get(asset_id)
            changed = mutate(current)
            if changed is current:
                return current
            updated = replace(changed, version=current.version + 1, updated_at=self.now())
            with self._lock:
                stored = self._records.get(asset_id)
                if stored is None:
                    raise NotFound(f"Asset {asset_id} not found")
                if stored.version != current.version:
                    raise InvalidTransition(f"Asset {asset_id} was modified concurrently")
                self._records[asset_id] = updated
            return updated

    def ingest(
        self,
        *,
        project_id: UUID,
        uploader_id: str,
        filename: str,
        mime_type: str,
        size_bytes: int,
        storage_ref: str | None = None,
        title: str | None = None,
        caption: str | None = None,
        tags: Iterable[str] = (),
        created_at: datetime | None = None,
    ) -> Asset:
        self.get_project(project_id)
        name = str(filename or "").strip()
        if not name:
            raise ValidationError("Filename is required")
        if not str(uploader_id or "").strip():
            raise ValidationError("Uploader is required")
        if isinstance(size_bytes, bool) or int(size_bytes) < 0:
            raise ValidationError("File size must be zero or positive")
        now = created_at or self.now()
        asset = Asset(
            id=uuid4(),
            project_id=project_id,
            filename=name,
            mime_type=(str(mime_type or "").strip().lower() or "application/octet-stream"),
            size_bytes=int(size_bytes),
            uploaded_by=str(uploader_id),
            created_at=now,
            updated_at=now,
            storage_ref=storage_ref,
            title=(title or "").strip() or None,
            caption=(caption or "").strip() or None,
            tags=normalize_tags(tags),
        )
        with self._lock:
            self._records[asset.id] = asset
        logger.info("asset_ingested", extra={"asset_id": str(asset.id), "project_id": str(project_id)})
        return asset

    def report_transcode(
        self,
        asset_id: UUID,
        status: IngestStatus,
        *,
        width: int | None = None,
        height: int | None = None,
        duration_seconds: float | None = None,
        thumbnail_ref: str | None = None,
    ) -> Asset:
        for label, value in (("width", width), ("height", height)):
            if value is not None and int(value) <= 0:
                raise ValidationError(f"{label} must be positive")
        if duration_seconds is not None and float(duration_seconds) < 0:
            raise ValidationError("duration_seconds must not be negative")

        def _apply(asset: Asset) -> Asset:
            if status != asset.status and status not in INGEST_TRANSITIONS[asset.status]:
                raise InvalidTransition(f"Cannot move ingestion status from {asset.status.value} to {status.value}")
            return replace(
                asset,
                status=status,
                width=int(width) if width is not None else asset.width,
                height=int(height) if height is not None else asset.height,
                duration_seconds=float(duration_seconds) if duration_seconds is not None else asset.duration_seconds,
                thumbnail_ref=thumbnail_ref or asset.thumbnail_ref,
            )

        return self.update(asset_id, _apply)

    def reclassify(self, asset_id: UUID, asset_type: AssetType) -> Asset:
        """Change the operator-owned classification.

        Promotion to ``deliverable`` goes through the delivery workflow so
        approval and expiry are set together; demotion drops approval state.
        """
        if asset_type == AssetType.deliverable:
            raise InvalidTransition("Use the delivery workflow to mark assets as deliverable")

        def _apply(asset: Asset) -> Asset:
            if asset.asset_type == asset_type:
                return asset
            return replace(
                asset,
                asset_type=asset_type,
                approval_status=None,
                approved_at=None,
                approved_by=None,
                delivered_at=None,
                expires_at=None,
                access_revoked=False,
            )

        return self.update(asset_id, _apply)

    def set_tags(self, asset_id: UUID, tags: Iterable[str]) -> Asset:
        normalized = normalize_tags(tags)
        return self.update(asset_id, lambda asset: asset if asset.tags == normalized else replace(asset, tags=normalized))

    def set_focal_point(self, asset_id: UUID, focal_x: float, focal_y: float) -> Asset:
        fx = _validate_focal_component("focal_x", focal_x)
        fy = _validate_focal_component("focal_y", focal_y)
        return self.update(
            asset_id,
            lambda asset: asset if asset.focal_point == (fx, fy) else replace(asset, focal_x=fx, focal_y=fy),
        )

    def update_metadata(self, asset_id: UUID, *, title: str | None = None, caption: str | None = None) -> Asset:
        def _apply(asset: Asset) -> Asset:
            return replace(
                asset,
                title=((title or "").strip() or None) if title is not None else asset.title,
                caption=((caption or "").strip() or None) if caption is not None else asset.caption,
            )

        return self.update(asset_id, _apply)

    def delete(self, asset_id: UUID) -> Asset:
        with self._asset_lock(asset_id):
            with self._lock:
                asset = self._records.pop(asset_id, None)
                self._asset_locks.pop(asset_id, None)
        if asset is None:
            raise NotFound(f"Asset {asset_id} not found")
        logger.info("asset_deleted", extra={"asset_id": str(asset_id)})
        return asset


from __future__ import annotations

import enum
import hashlib
import hmac
import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from urllib.parse import urlencode
from uuid import UUID

from studio.core import metrics
from studio.core.config import settings
from studio.services.catalog import (
    AccessOperation,
    Annotation,
    ApprovalStatus,
    Asset,
    AssetCatalog,
    AssetType,
    IngestStatus,
    Project,
)
from studio.services.errors import AccessDenied, InvalidTransition, NotFound, StudioError, ValidationError
from studio.services.notifications import Notification, NotificationKind, Notifier

logger = logging.getLogger(__name__)

DOWNLOADABLE_STATES = {ApprovalStatus.approved, ApprovalStatus.delivered}


class Role(str, enum.Enum):
    admin = "admin"
    team = "team"
    client = "client"


@dataclass(frozen=True, slots=True)
class AccessContext:
    """Caller identity passed explicitly into every boundary call."""

    actor_id: str
    role: Role
    display_name: str | None = None

    @property
    def is_operator(self) -> bool:
        return self.role in (Role.admin, Role.team)

    @property
    def author_name(self) -> str:
        return (self.display_name or "").strip() or self.actor_id


@dataclass(frozen=True, slots=True)
class RetrievalRef:
    asset_id: UUID
    operation: AccessOperation
    url: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class BatchFailure:
    asset_id: UUID
    error: StudioError


@dataclass(slots=True)
class BatchResult:
    succeeded: list[Asset] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)


def _dedupe(asset_ids: Iterable[UUID]) -> list[UUID]:
    seen: set[UUID] = set()
    ordered: list[UUID] = []
    for asset_id in asset_ids:
        if asset_id in seen:
            continue
        seen.add(asset_id)
        ordered.append(asset_id)
    return ordered


def _validate_expiry(expiry: timedelta) -> timedelta:
    if not isinstance(expiry, timedelta) or expiry <= timedelta(0):
        raise ValidationError("Expiry duration must be positive")
    return expiry


def _validate_timecode(asset: Asset, timecode_seconds: float | None) -> float | None:
    if timecode_seconds is None:
        return None
    if not asset.is_video:
        raise ValidationError("Timecodes are only supported on video assets")
    value = float(timecode_seconds)
    if not math.isfinite(value) or value < 0:
        raise ValidationError("Timecode must be zero or positive")
    if asset.duration_seconds is not None and value > asset.duration_seconds:
        raise ValidationError("Timecode is past the end of the video")
    return value


def _is_expired(asset: Asset, now: datetime) -> bool:
    return asset.access_revoked or (asset.expires_at is not None and now >= asset.expires_at)


def _require_text(value: str | None, message: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(message)
    return text


def sign_retrieval(asset_id: UUID, *, operation: str, exp: int, secret_key: str | None = None) -> str:
    base = f"{asset_id}:{operation}:{exp}"
    key = str(secret_key if secret_key is not None else settings.secret_key).encode("utf-8")
    return hmac.new(key, base.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_retrieval_signature(
    asset_id: UUID,
    *,
    operation: str,
    exp: int,
    sig: str,
    now: datetime,
    secret_key: str | None = None,
) -> bool:
    try:
        exp_ts = int(exp)
    except (TypeError, ValueError):
        return False
    if exp_ts < int(now.timestamp()):
        return False
    expected = sign_retrieval(asset_id, operation=operation, exp=exp_ts, secret_key=secret_key)
    return hmac.compare_digest(expected, str(sig or ""))


class DeliveryWorkflow:
    """Approval, expiry and access rules layered over the asset catalog.

    Preconditions are checked inside the catalog's per-asset critical section,
    so two racing transitions on one asset produce exactly one winner and the
    loser sees ``InvalidTransition``.
    """

    def __init__(
        self,
        catalog: AssetCatalog,
        *,
        notifier: Notifier | None = None,
        retrieval_ttl_seconds: int | None = None,
        auto_deliver_on_download: bool | None = None,
        secret_key: str | None = None,
    ) -> None:
        self.catalog = catalog
        self.notifier = notifier
        self.retrieval_ttl_seconds = max(30, int(retrieval_ttl_seconds or settings.retrieval_ttl_seconds))
        self.auto_deliver_on_download = (
            settings.auto_deliver_on_download if auto_deliver_on_download is None else bool(auto_deliver_on_download)
        )
        self._secret_key = secret_key

    # helpers

    def _notify(self, kind: NotificationKind, recipient_id: str | None, asset_ids: Iterable[UUID], message: str | None = None) -> None:
        ids = tuple(asset_ids)
        if self.notifier is None or not recipient_id or not ids:
            return
        try:
            self.notifier.notify(Notification(kind=kind, recipient_id=recipient_id, asset_ids=ids, message=message))
        except Exception:
            logger.exception("notification_enqueue_failed", extra={"kind": kind.value, "recipient_id": recipient_id})

    def in_scope(self, project: Project, context: AccessContext) -> bool:
        """Admins reach every project, team members the projects listing them, clients their own."""
        if context.role == Role.admin:
            return True
        if context.role == Role.team:
            return context.actor_id in project.team_ids
        return project.client_id == context.actor_id

    def _check_scope(self, asset: Asset, context: AccessContext) -> None:
        if not self.in_scope(self.catalog.get_project(asset.project_id), context):
            raise NotFound(f"Asset {asset.id} not found")

    def require_project(self, project_id: UUID, context: AccessContext) -> Project:
        project = self.catalog.get_project(project_id)
        if not self.in_scope(project, context):
            raise NotFound(f"Project {project_id} not found")
        return project

    def require_asset(self, asset_id: UUID, context: AccessContext) -> Asset:
        asset = self.catalog.get(asset_id)
        self._check_scope(asset, context)
        return asset

    def _client_id(self, project_id: UUID) -> str | None:
        return self.catalog.get_project(project_id).client_id

    # transitions

    def mark_deliverable(
        self,
        project_id: UUID,
        asset_ids: Iterable[UUID],
        expiry: timedelta,
        *,
        actor: AccessContext | None = None,
        message: str | None = None,
    ) -> BatchResult:
        """Promote ready assets to pending deliverables; each id succeeds or fails on its own."""
        _validate_expiry(expiry)
        if actor is not None:
            project = self.require_project(project_id, actor)
        else:
            project = self.catalog.get_project(project_id)
        result = BatchResult()
        for asset_id in _dedupe(asset_ids):
            try:
                result.succeeded.append(self._mark_one(project_id, asset_id, expiry))
            except StudioError as exc:
                result.failed.append(BatchFailure(asset_id=asset_id, error=exc))
        if result.succeeded:
            metrics.record_deliverables_marked(len(result.succeeded))
            self._notify(
                NotificationKind.deliverable_ready,
                project.client_id,
                [asset.id for asset in result.succeeded],
                message,
            )
        logger.info(
            "deliverables_marked",
            extra={
                "project_id": str(project_id),
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
                "actor_id": actor.actor_id if actor else None,
            },
        )
        return result

    def _mark_one(self, project_id: UUID, asset_id: UUID, expiry: timedelta) -> Asset:
        now = self.catalog.now()
        new_expiry = now + expiry

        def _apply(asset: Asset) -> Asset:
            if asset.project_id != project_id:
                raise ValidationError(f"Asset {asset.id} belongs to another project")
            if asset.status != IngestStatus.ready:
                raise InvalidTransition(f"Asset {asset.id} is {asset.status.value}; only ready assets can be delivered")
            if not asset.is_deliverable:
                return replace(
                    asset,
                    asset_type=AssetType.deliverable,
                    approval_status=ApprovalStatus.pending,
                    expires_at=new_expiry,
                    access_revoked=False,
                )
            # Refresh: expiry only moves forward, approvals are kept.
            expires_at = max(asset.expires_at, new_expiry) if asset.expires_at else new_expiry
            approval = asset.approval_status if asset.approval_status in DOWNLOADABLE_STATES else ApprovalStatus.pending
            return replace(
                asset,
                approval_status=approval,
                expires_at=expires_at,
                access_revoked=asset.access_revoked and expires_at <= now,
            )

        return self.catalog.update(asset_id, _apply)

    def approve(self, asset_id: UUID, *, actor: AccessContext) -> Asset:
        self._check_scope(self.catalog.get(asset_id), actor)
        now = self.catalog.now()

        def _apply(asset: Asset) -> Asset:
            if asset.approval_status != ApprovalStatus.pending:
                current = asset.approval_status.value if asset.approval_status else "not a deliverable"
                raise InvalidTransition(f"Only pending deliverables can be approved (current: {current})")
            return replace(asset, approval_status=ApprovalStatus.approved, approved_at=now, approved_by=actor.actor_id)

        asset = self.catalog.update(asset_id, _apply)
        metrics.record_approval()
        logger.info("deliverable_approved", extra={"asset_id": str(asset_id), "actor_id": actor.actor_id})
        self._notify(NotificationKind.deliverable_approved, asset.uploaded_by, [asset.id], f"{actor.author_name} approved {asset.filename}")
        return asset

    def request_revision(
        self,
        asset_id: UUID,
        comment: str,
        *,
        actor: AccessContext,
        timecode_seconds: float | None = None,
    ) -> Asset:
        text = _require_text(comment, "Please describe the requested changes")
        current = self.catalog.get(asset_id)
        self._check_scope(current, actor)
        timecode = _validate_timecode(current, timecode_seconds)
        now = self.catalog.now()

        def _apply(asset: Asset) -> Asset:
            if asset.approval_status != ApprovalStatus.pending:
                state = asset.approval_status.value if asset.approval_status else "not a deliverable"
                raise InvalidTransition(f"Revisions can only be requested on pending deliverables (current: {state})")
            note = Annotation(author_name=actor.author_name, text=text, created_at=now, timecode_seconds=timecode)
            return replace(
                asset,
                approval_status=ApprovalStatus.revision_requested,
                annotations=asset.annotations + (note,),
            )

        asset = self.catalog.update(asset_id, _apply)
        metrics.record_revision_request()
        logger.info("deliverable_revision_requested", extra={"asset_id": str(asset_id), "actor_id": actor.actor_id})
        self._notify(NotificationKind.deliverable_revision_requested, asset.uploaded_by, [asset.id], text)
        return asset

    def redeliver(
        self,
        asset_ids: Iterable[UUID],
        expiry: timedelta | None,
        *,
        actor: AccessContext | None = None,
        message: str | None = None,
    ) -> BatchResult:
        """Send deliverables back to the client after a replacement or an expired link.

        ``revision_requested`` returns to ``pending``. The expiry is set
        explicitly (``None`` clears it), which is the only path allowed to
        move an expiry backwards.
        """
        if expiry is not None:
            _validate_expiry(expiry)
        now = self.catalog.now()
        new_expiry = now + expiry if expiry is not None else None

        def _apply(asset: Asset) -> Asset:
            if not asset.is_deliverable:
                raise InvalidTransition(f"Asset {asset.id} is not a deliverable")
            if asset.approval_status == ApprovalStatus.revision_requested:
                approval = ApprovalStatus.pending
            elif asset.access_revoked:
                approval = asset.approval_status
            else:
                state = asset.approval_status.value if asset.approval_status else "none"
                raise InvalidTransition(f"Nothing to redeliver for asset {asset.id} (current: {state})")
            return replace(asset, approval_status=approval, expires_at=new_expiry, access_revoked=False)

        result = BatchResult()
        for asset_id in _dedupe(asset_ids):
            try:
                if actor is not None:
                    self.require_asset(asset_id, actor)
                result.succeeded.append(self.catalog.update(asset_id, _apply))
            except StudioError as exc:
                result.failed.append(BatchFailure(asset_id=asset_id, error=exc))
        by_project: dict[UUID, list[UUID]] = {}
        for asset in result.succeeded:
            by_project.setdefault(asset.project_id, []).append(asset.id)
        for project_id, ids in by_project.items():
            self._notify(NotificationKind.deliverable_ready, self._client_id(project_id), ids, message)
        logger.info(
            "deliverables_redelivered",
            extra={"succeeded": len(result.succeeded), "failed": len(result.failed), "actor_id": actor.actor_id if actor else None},
        )
        return result

    def mark_delivered(self, asset_id: UUID, *, actor: AccessContext | None = None) -> Asset:
        if actor is not None:
            self.require_asset(asset_id, actor)
        now = self.catalog.now()

        def _apply(asset: Asset) -> Asset:
            if asset.approval_status != ApprovalStatus.approved:
                state = asset.approval_status.value if asset.approval_status else "not a deliverable"
                raise InvalidTransition(f"Only approved deliverables can be marked delivered (current: {state})")
            return replace(asset, approval_status=ApprovalStatus.delivered, delivered_at=now)

        return self.catalog.update(asset_id, _apply)

    def add_annotation(
        self,
        asset_id: UUID,
        text: str,
        *,
        actor: AccessContext,
        timecode_seconds: float | None = None,
    ) -> Asset:
        body = _require_text(text, "Comment text is required")
        current = self.catalog.get(asset_id)
        self._check_scope(current, actor)
        timecode = _validate_timecode(current, timecode_seconds)
        now = self.catalog.now()

        def _apply(asset: Asset) -> Asset:
            if not asset.is_deliverable:
                raise InvalidTransition("Comments can only be added to deliverables")
            note = Annotation(author_name=actor.author_name, text=body, created_at=now, timecode_seconds=timecode)
            return replace(asset, annotations=asset.annotations + (note,))

        asset = self.catalog.update(asset_id, _apply)
        recipient = asset.uploaded_by if not actor.is_operator else self._client_id(asset.project_id)
        self._notify(NotificationKind.comment_added, recipient, [asset.id], body)
        return asset

    def resolve_annotation(self, asset_id: UUID, index: int, *, actor: AccessContext) -> Asset:
        self._check_scope(self.catalog.get(asset_id), actor)

        def _apply(asset: Asset) -> Asset:
            if index < 0 or index >= len(asset.annotations):
                raise NotFound(f"Annotation {index} not found")
            note = asset.annotations[index]
            if note.resolved:
                return asset
            notes = list(asset.annotations)
            notes[index] = replace(note, resolved=True)
            return replace(asset, annotations=tuple(notes))

        return self.catalog.update(asset_id, _apply)

    # expiry

    def expire(self, asset_id: UUID) -> Asset:
        """Revoke client access once the expiry has passed; approval history is left untouched."""
        now = self.catalog.now()

        def _apply(asset: Asset) -> Asset:
            if asset.expires_at is None:
                raise InvalidTransition(f"Asset {asset.id} has no expiry")
            if now < asset.expires_at:
                raise InvalidTransition(f"Asset {asset.id} does not expire until {asset.expires_at.isoformat()}")
            if asset.access_revoked:
                return asset
            return replace(asset, access_revoked=True)

        asset = self.catalog.update(asset_id, _apply)
        logger.info("deliverable_expired", extra={"asset_id": str(asset_id)})
        return asset

    def sweep_expired(self) -> list[UUID]:
        now = self.catalog.now()
        expired: list[UUID] = []
        for asset in self.catalog.snapshot():
            if not asset.is_deliverable or asset.access_revoked or asset.expires_at is None or now < asset.expires_at:
                continue
            try:
                self.expire(asset.id)
            except (InvalidTransition, NotFound):
                # Redelivered or deleted since the snapshot was taken.
                continue
            expired.append(asset.id)
        metrics.record_expired(len(expired))
        return expired

    # access boundary

    def _denial(self, asset: Asset, operation: AccessOperation, now: datetime) -> AccessDenied | None:
        if not asset.is_deliverable:
            return AccessDenied("not_deliverable")
        if _is_expired(asset, now):
            return AccessDenied("expired")
        if operation == AccessOperation.download and asset.approval_status not in DOWNLOADABLE_STATES:
            return AccessDenied("not_approved")
        return None

    def access(self, asset_id: UUID, operation: AccessOperation, context: AccessContext) -> RetrievalRef:
        """Check expiry and approval, bump the matching counter, and hand out a signed retrieval URL."""
        operation = AccessOperation(operation)
        self._check_scope(self.catalog.get(asset_id), context)
        now = self.catalog.now()

        def _apply(asset: Asset) -> Asset:
            if not context.is_operator:
                denial = self._denial(asset, operation, now)
                if denial is not None:
                    raise denial
            if operation == AccessOperation.download:
                updated = replace(asset, download_count=asset.download_count + 1)
                if (
                    self.auto_deliver_on_download
                    and not context.is_operator
                    and asset.approval_status == ApprovalStatus.approved
                ):
                    updated = replace(updated, approval_status=ApprovalStatus.delivered, delivered_at=now)
                return updated
            return replace(asset, view_count=asset.view_count + 1)

        try:
            self.catalog.update(asset_id, _apply)
        except AccessDenied as exc:
            metrics.record_access_denied(exc.reason)
            logger.info(
                "access_denied",
                extra={"asset_id": str(asset_id), "reason": exc.reason, "actor_id": context.actor_id},
            )
            raise
        metrics.record_access(operation.value)
        return self._retrieval_ref(asset_id, operation, now)

    def _retrieval_ref(self, asset_id: UUID, operation: AccessOperation, now: datetime) -> RetrievalRef:
        expires_at = now + timedelta(seconds=self.retrieval_ttl_seconds)
        exp = int(expires_at.timestamp())
        sig = sign_retrieval(asset_id, operation=operation.value, exp=exp, secret_key=self._secret_key)
        query = urlencode({"op": operation.value, "exp": exp, "sig": sig})
        url = f"{settings.retrieval_base_url.rstrip('/')}/{asset_id}?{query}"
        return RetrievalRef(asset_id=asset_id, operation=operation, url=url, expires_at=expires_at)

    # reads

    def visible_asset(self, asset_id: UUID, context: AccessContext) -> Asset:
        """Current record, hidden from clients unless it is a live deliverable of their project."""
        asset = self.require_asset(asset_id, context)
        if not context.is_operator and (not asset.is_deliverable or _is_expired(asset, self.catalog.now())):
            raise NotFound(f"Asset {asset_id} not found")
        return asset

    def visible_assets(self, project_id: UUID, context: AccessContext) -> tuple[Asset, ...]:
        """Snapshot of the assets a caller may browse in a project.

        Clients only get live deliverables: anything past ``expires_at`` is
        dropped even before the expiry sweep has revoked it.
        """
        self.require_project(project_id, context)
        snapshot = self.catalog.snapshot(project_id)
        if context.is_operator:
            return snapshot
        now = self.catalog.now()
        return tuple(asset for asset in snapshot if asset.is_deliverable and not _is_expired(asset, now))

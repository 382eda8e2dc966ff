from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from studio.services.catalog import AccessOperation, ApprovalStatus, AssetType, IngestStatus

TranscodeStatusLiteral = Literal["processing", "ready", "failed"]


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    client_id: str | None = Field(default=None, max_length=64)
    team_ids: list[str] = Field(default_factory=list)


class ProjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    client_id: str | None = None
    team_ids: list[str] = Field(default_factory=list)


class AnnotationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    author_name: str
    text: str
    timecode_seconds: float | None = None
    resolved: bool = False
    created_at: datetime


class AssetRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    asset_type: AssetType
    status: IngestStatus
    approval_status: ApprovalStatus | None = None
    filename: str
    mime_type: str
    size_bytes: int
    width: int | None = None
    height: int | None = None
    duration_seconds: float | None = None
    title: str | None = None
    caption: str | None = None
    storage_ref: str | None = None
    thumbnail_ref: str | None = None
    tags: list[str] = Field(default_factory=list)
    focal_x: float
    focal_y: float
    uploaded_by: str
    expires_at: datetime | None = None
    access_revoked: bool = False
    approved_at: datetime | None = None
    approved_by: str | None = None
    delivered_at: datetime | None = None
    annotations: list[AnnotationRead] = Field(default_factory=list)
    view_count: int = 0
    download_count: int = 0
    version: int
    created_at: datetime
    updated_at: datetime


class AssetCreate(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    mime_type: str = Field(default="application/octet-stream", max_length=120)
    size_bytes: int = Field(ge=0)
    storage_ref: str | None = Field(default=None, max_length=512)
    title: str | None = Field(default=None, max_length=255)
    caption: str | None = None
    tags: list[str] = Field(default_factory=list)


class TranscodeReport(BaseModel):
    status: TranscodeStatusLiteral
    width: int | None = Field(default=None, ge=1)
    height: int | None = Field(default=None, ge=1)
    duration_seconds: float | None = Field(default=None, ge=0)
    thumbnail_ref: str | None = Field(default=None, max_length=512)


class AssetUpdateRequest(BaseModel):
    asset_type: AssetType | None = None
    tags: list[str] | None = None
    title: str | None = Field(default=None, max_length=255)
    caption: str | None = None
    focal_x: float | None = None
    focal_y: float | None = None
    expiry_days: int | None = Field(default=None, ge=1, le=365)


class FacetCountsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    filtered: int
    by_type: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)
    by_tag: dict[str, int] = Field(default_factory=dict)
    by_uploader: dict[str, int] = Field(default_factory=dict)


class PaginationMeta(BaseModel):
    offset: int
    limit: int
    has_more: bool


class AssetListResponse(BaseModel):
    items: list[AssetRead]
    counts: FacetCountsRead
    pagination: PaginationMeta


class MarkDeliverableRequest(BaseModel):
    asset_ids: list[UUID] = Field(min_length=1, max_length=200)
    expiry_days: int | None = Field(default=None, ge=1, le=365)
    message: str | None = Field(default=None, max_length=2000)


class RedeliverRequest(BaseModel):
    expiry_days: int | None = Field(default=None, ge=1, le=365)
    clear_expiry: bool = False
    message: str | None = Field(default=None, max_length=2000)


class BatchFailureRead(BaseModel):
    asset_id: UUID
    code: str
    detail: str


class BatchResultRead(BaseModel):
    succeeded: list[AssetRead] = Field(default_factory=list)
    failed: list[BatchFailureRead] = Field(default_factory=list)


class RequestRevisionRequest(BaseModel):
    comment: str = Field(max_length=5000)
    timecode_seconds: float | None = None


class AnnotationCreate(BaseModel):
    text: str = Field(max_length=5000)
    timecode_seconds: float | None = None


class AccessRequest(BaseModel):
    operation: AccessOperation


class RetrievalRefRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    asset_id: UUID
    operation: AccessOperation
    url: str
    expires_at: datetime


class CropRectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    left: float
    top: float
    width: float
    height: float


class CropRead(BaseModel):
    asset_id: UUID
    aspect: str
    crop: CropRectRead | None = None
    object_position: str
    pixel_box: list[int] | None = None


class ExpireDueResponse(BaseModel):
    expired: list[UUID] = Field(default_factory=list)

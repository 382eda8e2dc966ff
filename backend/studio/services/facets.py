"""Faceted filter, count and sort engine over catalog snapshots.

Filters combine with AND across dimensions and OR within one. Facet counts
for a dimension apply every *other* active dimension but not the dimension
itself, so a selected value never suppresses the counts of its siblings.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Protocol

from studio.services.catalog import Asset, AssetType, IngestStatus, canonical_tag
from studio.services.errors import ValidationError


class FacetDimension(str, enum.Enum):
    asset_type = "asset_type"
    status = "status"
    tag = "tag"
    uploader = "uploader"
    search = "search"
    created_at = "created_at"


TALLY_DIMENSIONS = (FacetDimension.asset_type, FacetDimension.status, FacetDimension.tag, FacetDimension.uploader)


class SortOption(str, enum.Enum):
    newest = "newest"
    oldest = "oldest"
    largest = "largest"
    smallest = "smallest"
    name_asc = "name_asc"
    name_desc = "name_desc"


@dataclass(frozen=True, slots=True)
class FilterState:
    asset_types: frozenset[AssetType] = frozenset()
    statuses: frozenset[IngestStatus] = frozenset()
    tags: frozenset[str] = frozenset()
    uploaders: frozenset[str] = frozenset()
    search: str = ""
    date_from: datetime | None = None
    date_to: datetime | None = None
    include_revoked: bool = False

    @classmethod
    def from_params(
        cls,
        *,
        asset_types: Iterable[str] = (),
        statuses: Iterable[str] = (),
        tags: Iterable[str] = (),
        uploaders: Iterable[str] = (),
        search: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        include_revoked: bool = False,
    ) -> "FilterState":
        try:
            types = frozenset(AssetType(str(value).strip()) for value in asset_types or () if str(value).strip())
        except ValueError as exc:
            raise ValidationError(f"Unknown asset type: {exc}") from None
        try:
            status_values = frozenset(IngestStatus(str(value).strip()) for value in statuses or () if str(value).strip())
        except ValueError as exc:
            raise ValidationError(f"Unknown status: {exc}") from None
        if date_from and date_to and date_from > date_to:
            raise ValidationError("date_from must not be after date_to")
        return cls(
            asset_types=types,
            statuses=status_values,
            tags=frozenset(key for key in (canonical_tag(value) for value in tags or ()) if key),
            uploaders=frozenset(str(value).strip() for value in uploaders or () if str(value).strip()),
            search=(search or "").strip(),
            date_from=date_from,
            date_to=date_to,
            include_revoked=include_revoked,
        )

    def active_dimensions(self) -> tuple[FacetDimension, ...]:
        active: list[FacetDimension] = []
        if self.asset_types:
            active.append(FacetDimension.asset_type)
        if self.statuses:
            active.append(FacetDimension.status)
        if self.tags:
            active.append(FacetDimension.tag)
        if self.uploaders:
            active.append(FacetDimension.uploader)
        if self.search:
            active.append(FacetDimension.search)
        if self.date_from is not None or self.date_to is not None:
            active.append(FacetDimension.created_at)
        return tuple(active)

    def without(self, dimension: FacetDimension) -> "FilterState":
        """Copy of this filter with one dimension cleared."""
        if dimension == FacetDimension.asset_type:
            return replace(self, asset_types=frozenset())
        if dimension == FacetDimension.status:
            return replace(self, statuses=frozenset())
        if dimension == FacetDimension.tag:
            return replace(self, tags=frozenset())
        if dimension == FacetDimension.uploader:
            return replace(self, uploaders=frozenset())
        if dimension == FacetDimension.search:
            return replace(self, search="")
        if dimension == FacetDimension.created_at:
            return replace(self, date_from=None, date_to=None)
        raise ValueError(dimension)


@dataclass(slots=True)
class FacetCounts:
    total: int = 0
    filtered: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    by_tag: dict[str, int] = field(default_factory=dict)
    by_uploader: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class FacetResult:
    page: list[Asset]
    counts: FacetCounts
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.page) < self.counts.filtered


class _Searchable(Protocol):
    filename: str
    title: str | None
    caption: str | None
    tags: tuple[str, ...]


def _matches_search(asset: _Searchable, needle: str) -> bool:
    haystacks = [asset.filename, asset.title or "", asset.caption or "", *asset.tags]
    return any(needle in value.lower() for value in haystacks)


def _failing_dimensions(asset: Asset, state: FilterState, needle: str) -> list[FacetDimension]:
    failing: list[FacetDimension] = []
    if state.asset_types and asset.asset_type not in state.asset_types:
        failing.append(FacetDimension.asset_type)
    if state.statuses and asset.status not in state.statuses:
        failing.append(FacetDimension.status)
    if state.tags and state.tags.isdisjoint(asset.tag_keys):
        failing.append(FacetDimension.tag)
    if state.uploaders and asset.uploaded_by not in state.uploaders:
        failing.append(FacetDimension.uploader)
    if needle and not _matches_search(asset, needle):
        failing.append(FacetDimension.search)
    if state.date_from is not None and asset.created_at < state.date_from:
        failing.append(FacetDimension.created_at)
    elif state.date_to is not None and asset.created_at > state.date_to:
        failing.append(FacetDimension.created_at)
    return failing


def _tally(counts: FacetCounts, asset: Asset, dimension: FacetDimension) -> None:
    if dimension == FacetDimension.asset_type:
        key = asset.asset_type.value
        counts.by_type[key] = counts.by_type.get(key, 0) + 1
    elif dimension == FacetDimension.status:
        key = asset.status.value
        counts.by_status[key] = counts.by_status.get(key, 0) + 1
    elif dimension == FacetDimension.tag:
        for key in asset.tag_keys:
            counts.by_tag[key] = counts.by_tag.get(key, 0) + 1
    elif dimension == FacetDimension.uploader:
        counts.by_uploader[asset.uploaded_by] = counts.by_uploader.get(asset.uploaded_by, 0) + 1


def _seed_selected(counts: FacetCounts, state: FilterState) -> None:
    for value in state.asset_types:
        counts.by_type.setdefault(value.value, 0)
    for value in state.statuses:
        counts.by_status.setdefault(value.value, 0)
    for value in state.tags:
        counts.by_tag.setdefault(value, 0)
    for value in state.uploaders:
        counts.by_uploader.setdefault(value, 0)


def _sort_key_name(asset: Asset) -> tuple[str, str]:
    return asset.filename.casefold(), asset.filename


def sort_assets(assets: Iterable[Asset], sort: SortOption) -> list[Asset]:
    """Stable ordering; ties always fall back to ``id`` ascending."""
    ordered = sorted(assets, key=lambda asset: str(asset.id))
    if sort == SortOption.newest:
        ordered.sort(key=lambda asset: asset.created_at, reverse=True)
    elif sort == SortOption.oldest:
        ordered.sort(key=lambda asset: asset.created_at)
    elif sort == SortOption.largest:
        ordered.sort(key=lambda asset: asset.size_bytes, reverse=True)
    elif sort == SortOption.smallest:
        ordered.sort(key=lambda asset: asset.size_bytes)
    elif sort == SortOption.name_asc:
        ordered.sort(key=_sort_key_name)
    elif sort == SortOption.name_desc:
        ordered.sort(key=_sort_key_name, reverse=True)
    return ordered


def compute(assets: Sequence[Asset], state: FilterState) -> tuple[list[Asset], FacetCounts]:
    """Filtered (unsorted) assets plus facet counts in a single pass."""
    counts = FacetCounts()
    _seed_selected(counts, state)
    needle = state.search.lower()
    matched: list[Asset] = []
    for asset in assets:
        if asset.access_revoked and not state.include_revoked:
            continue
        counts.total += 1
        failing = _failing_dimensions(asset, state, needle)
        if not failing:
            matched.append(asset)
            for dimension in TALLY_DIMENSIONS:
                _tally(counts, asset, dimension)
        elif len(failing) == 1 and failing[0] in TALLY_DIMENSIONS:
            _tally(counts, asset, failing[0])
    counts.filtered = len(matched)
    return matched, counts


def query(
    assets: Sequence[Asset],
    state: FilterState | None = None,
    sort: SortOption = SortOption.newest,
    *,
    limit: int = 24,
    offset: int = 0,
) -> FacetResult:
    if isinstance(limit, bool) or int(limit) < 1:
        raise ValidationError("limit must be at least 1")
    if isinstance(offset, bool) or int(offset) < 0:
        raise ValidationError("offset must not be negative")
    matched, counts = compute(assets, state or FilterState())
    ordered = sort_assets(matched, SortOption(sort))
    page = ordered[int(offset) : int(offset) + int(limit)]
    return FacetResult(page=page, counts=counts, offset=int(offset), limit=int(limit))


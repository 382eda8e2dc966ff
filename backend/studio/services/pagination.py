from __future__ import annotations

from collections.abc import Callable

from studio.services.catalog import Asset
from studio.services.errors import ValidationError
from studio.services.facets import FacetCounts, FacetResult, FilterState, SortOption

FetchPage = Callable[[FilterState, SortOption, int, int], FacetResult]


class PaginationCursor:
    """Incremental "load more" pagination over a facet query.

    Changing the filter or sort replaces the loaded items and rewinds to the
    first page; ``load_more`` appends the next page. ``has_more`` comes from
    the filtered total, so a final page that exactly fills ``limit`` still
    reports no more results.
    """

    def __init__(self, fetch: FetchPage, *, limit: int = 24) -> None:
        if isinstance(limit, bool) or int(limit) < 1:
            raise ValidationError("limit must be at least 1")
        self._fetch = fetch
        self.limit = int(limit)
        self.offset = 0
        self.filter = FilterState()
        self.sort = SortOption.newest
        self.items: list[Asset] = []
        self.counts = FacetCounts()
        self._loaded = False

    @property
    def has_more(self) -> bool:
        if not self._loaded:
            return False
        return self.offset + self.limit < self.counts.filtered

    def apply(self, filter_state: FilterState | None = None, sort: SortOption | None = None) -> list[Asset]:
        if filter_state is not None:
            self.filter = filter_state
        if sort is not None:
            self.sort = SortOption(sort)
        self.offset = 0
        result = self._fetch(self.filter, self.sort, self.offset, self.limit)
        self.items = list(result.page)
        self.counts = result.counts
        self._loaded = True
        return self.items

    def load_more(self) -> list[Asset]:
        """Fetch and append the next page; returns only the newly loaded assets."""
        if not self._loaded:
            self.apply()
            return self.items
        if not self.has_more:
            return []
        next_offset = self.offset + self.limit
        result = self._fetch(self.filter, self.sort, next_offset, self.limit)
        self.offset = next_offset
        self.counts = result.counts
        self.items.extend(result.page)
        return list(result.page)

    def reset(self) -> None:
        self.offset = 0
        self.items = []
        self.counts = FacetCounts()
        self._loaded = False

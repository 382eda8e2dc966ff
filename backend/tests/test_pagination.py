import pytest

from studio.services import facets
from studio.services.catalog import AssetCatalog
from studio.services.errors import ValidationError
from studio.services.facets import FilterState, SortOption
from studio.services.pagination import PaginationCursor


@pytest.fixture
def cursor_setup(catalog: AssetCatalog, ingest_ready, clock):
    for index in range(5):
        ingest_ready(f"shot-{index}.jpg", tags=["even" if index % 2 == 0 else "odd"], size_bytes=100 + index)
        clock.advance(minutes=1)
    calls: list[tuple[int, int]] = []

    def fetch(state: FilterState, sort: SortOption, offset: int, limit: int):
        calls.append((offset, limit))
        return facets.query(catalog.snapshot(), state, sort, limit=limit, offset=offset)

    return PaginationCursor(fetch, limit=2), calls


def test_load_more_appends_until_exhausted(cursor_setup) -> None:
    cursor, calls = cursor_setup
    first = cursor.apply()
    assert [asset.filename for asset in first] == ["shot-4.jpg", "shot-3.jpg"]
    assert cursor.has_more is True
    assert cursor.counts.filtered == 5

    added = cursor.load_more()
    assert [asset.filename for asset in added] == ["shot-2.jpg", "shot-1.jpg"]
    assert cursor.offset == 2
    assert len(cursor.items) == 4

    last = cursor.load_more()
    assert [asset.filename for asset in last] == ["shot-0.jpg"]
    assert cursor.has_more is False

    assert cursor.load_more() == []
    assert calls == [(0, 2), (2, 2), (4, 2)]


def test_apply_resets_offset_and_replaces_items(cursor_setup) -> None:
    cursor, calls = cursor_setup
    cursor.apply()
    cursor.load_more()

    narrowed = cursor.apply(FilterState.from_params(tags=["even"]), SortOption.smallest)
    assert cursor.offset == 0
    assert [asset.filename for asset in narrowed] == ["shot-0.jpg", "shot-2.jpg"]
    assert cursor.items == narrowed
    assert cursor.counts.filtered == 3
    assert cursor.has_more is True

    cursor.load_more()
    assert [asset.filename for asset in cursor.items] == ["shot-0.jpg", "shot-2.jpg", "shot-4.jpg"]
    assert cursor.has_more is False


def test_exact_final_page_reports_no_more(catalog: AssetCatalog, ingest_ready) -> None:
    for index in range(4):
        ingest_ready(f"frame-{index}.jpg")
    cursor = PaginationCursor(
        lambda state, sort, offset, limit: facets.query(catalog.snapshot(), state, sort, limit=limit, offset=offset),
        limit=2,
    )
    cursor.apply()
    cursor.load_more()
    assert len(cursor.items) == 4
    assert cursor.has_more is False


def test_load_more_before_apply_loads_first_page(cursor_setup) -> None:
    cursor, calls = cursor_setup
    assert cursor.has_more is False
    page = cursor.load_more()
    assert len(page) == 2
    assert calls == [(0, 2)]

    cursor.reset()
    assert cursor.items == [] and cursor.offset == 0
    assert cursor.has_more is False


def test_limit_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        PaginationCursor(lambda *args: None, limit=0)

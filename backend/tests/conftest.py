import asyncio
import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy.ext import asyncio as sa_asyncio

# Keep pytest output high-signal by disabling outbound Sentry capture in tests.
os.environ["SENTRY_DSN"] = ""
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["REDIS_URL"] = ""
os.environ["CATALOG_HYDRATE_ON_STARTUP"] = "0"
os.environ["EXPIRY_SWEEP_ENABLED"] = "0"

from studio.core import metrics
from studio.services.catalog import AssetCatalog, IngestStatus, Project


_TRACKED_ENGINES: list[sa_asyncio.AsyncEngine] = []
_ORIGINAL_CREATE_ASYNC_ENGINE = sa_asyncio.create_async_engine


def _tracked_create_async_engine(*args, **kwargs):  # type: ignore[no-untyped-def]
    engine = _ORIGINAL_CREATE_ASYNC_ENGINE(*args, **kwargs)
    _TRACKED_ENGINES.append(engine)
    return engine


sa_asyncio.create_async_engine = _tracked_create_async_engine  # type: ignore[assignment]


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _dispose_tracked_async_engines() -> Generator[None, None, None]:
    start_index = len(_TRACKED_ENGINES)
    yield
    pending = _TRACKED_ENGINES[start_index:]
    if not pending:
        return

    async def _dispose_all() -> None:
        for engine in pending:
            await engine.dispose()

    asyncio.run(_dispose_all())
    del _TRACKED_ENGINES[start_index:]


@pytest.fixture(autouse=True)
def _reset_metrics() -> Generator[None, None, None]:
    # The in-process counters are module-global and leak across tests otherwise.
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog(clock: FakeClock) -> AssetCatalog:
    return AssetCatalog(clock=clock)


@pytest.fixture
def project(catalog: AssetCatalog) -> Project:
    return catalog.register_project(
        Project(id=uuid4(), name="Spring campaign", client_id="client-1", team_ids=frozenset({"editor-1"}))
    )


@pytest.fixture
def ingest_ready(catalog: AssetCatalog, project: Project):
    """Factory that ingests an asset and runs it through transcoding to ``ready``."""

    def _ingest(filename: str = "hero.jpg", **kwargs):
        asset = catalog.ingest(
            project_id=kwargs.pop("project_id", project.id),
            uploader_id=kwargs.pop("uploader_id", "editor-1"),
            filename=filename,
            mime_type=kwargs.pop("mime_type", "image/jpeg"),
            size_bytes=kwargs.pop("size_bytes", 1024),
            tags=kwargs.pop("tags", ()),
            title=kwargs.pop("title", None),
            caption=kwargs.pop("caption", None),
        )
        catalog.report_transcode(asset.id, IngestStatus.processing)
        return catalog.report_transcode(
            asset.id,
            IngestStatus.ready,
            width=kwargs.pop("width", 4000),
            height=kwargs.pop("height", 3000),
            duration_seconds=kwargs.pop("duration_seconds", None),
        )

    return _ingest

from fastapi import APIRouter

from studio.api.v1 import assets, delivery, projects
from studio.core.metrics import snapshot as metrics_snapshot
from studio.core.redis_client import queue_state

api_router = APIRouter()

api_router.include_router(projects.router)
api_router.include_router(delivery.router)
api_router.include_router(assets.router)


@api_router.get("/health", tags=["health"])
async def healthcheck() -> dict[str, str]:
    return {"status": "ok", "queue": await queue_state()}


@api_router.get("/metrics", tags=["metrics"])
def metrics() -> dict:
    return metrics_snapshot()

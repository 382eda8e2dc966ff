import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from studio.api.v1 import api_router
from studio.core.config import settings
from studio.core.logging_config import configure_logging
from studio.core.redis_client import close_redis
from studio.core.sentry import init_sentry
from studio.db.session import SessionLocal
from studio.middleware import RequestLoggingMiddleware
from studio.schemas.error import ErrorResponse
from studio.services import asset_store, expiry_scheduler
from studio.services.catalog import AssetCatalog
from studio.services.delivery import DeliveryWorkflow
from studio.services.errors import AccessDenied, StudioError
from studio.services.notifications import OutboxNotifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.catalog_hydrate_on_startup:
        async with SessionLocal() as session:
            await asset_store.load_catalog(session, app.state.catalog)
    expiry_scheduler.start(app)
    try:
        yield
    finally:
        await expiry_scheduler.stop(app)
        await close_redis()


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    init_sentry()
    tags_metadata = [
        {"name": "projects", "description": "Projects, ingestion and the faceted catalog"},
        {"name": "assets", "description": "Asset metadata, transcoding and crops"},
        {"name": "delivery", "description": "Approval, expiry and client access"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        swagger_ui_parameters={"displayRequestDuration": True},
        lifespan=lifespan,
    )
    catalog = AssetCatalog()
    notifier = OutboxNotifier()
    app.state.catalog = catalog
    app.state.notifier = notifier
    app.state.workflow = DeliveryWorkflow(catalog, notifier=notifier)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(StudioError)
    async def studio_exception_handler(request: Request, exc: StudioError):
        reason = exc.reason if isinstance(exc, AccessDenied) else None
        payload = ErrorResponse(detail=exc.detail, code=exc.code, reason=reason)
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump(exclude_none=True))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(detail=exc.detail, code=None)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(payload.model_dump()))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(detail=errors, code="validation_error")
        return JSONResponse(status_code=422, content=payload.model_dump())

    return app


app = get_application()

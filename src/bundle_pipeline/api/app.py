"""FastAPI application factory."""

from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.exceptions import BundlePipelineError
from ..core.factories import RepositoryFactory, StorageFactory
from ..core.logging_config import get_logger, quiet_library_loggers
from ..core.models import PipelineSettings
from ..core.protocols import AssetStorage, LoggerProtocol
from .dependencies import Services
from .routes import router

logger = get_logger("api")


def create_app(
    settings: Optional[PipelineSettings] = None,
    storage: Optional[AssetStorage] = None,
    store: Any = None,
    service_logger: Optional[LoggerProtocol] = None,
) -> FastAPI:
    """
    Build the application.

    ``storage`` and ``store`` default to the S3 backend and the SQLAlchemy
    store described by ``settings``; both are opened on startup and closed
    on shutdown. Passing them in leaves their lifecycle to the caller.
    """
    settings = settings or PipelineSettings.from_env()
    quiet_library_loggers()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with AsyncExitStack() as stack:
            active_storage = storage
            if active_storage is None:
                active_storage = await stack.enter_async_context(
                    StorageFactory.create_storage(settings)
                )
            active_store = store
            if active_store is None:
                active_store = RepositoryFactory.create_store(settings)
                stack.callback(active_store.dispose)

            app.state.services = Services.build(
                settings, active_storage, active_store, logger=service_logger
            )
            if not settings.api_tokens:
                logger.warning("No API tokens configured; every request will be rejected")
            logger.info(f"Bundle pipeline API started (bucket={settings.storage_bucket})")
            yield
            logger.info("Bundle pipeline API stopped")

    app = FastAPI(title="Bundle Pipeline", lifespan=lifespan)

    @app.exception_handler(BundlePipelineError)
    async def pipeline_error_handler(request: Request, exc: BundlePipelineError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": exc.message or str(exc)},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc!r}", exc_info=exc)
        return JSONResponse(
            status_code=500, content={"ok": False, "error": "Error processing file"}
        )

    app.include_router(router)
    return app

"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from scenechain import __version__, validate_dependencies
from scenechain.api.routes import http_status_for, pipeline_error_payload, router
from scenechain.config import Settings, settings as default_settings
from scenechain.orchestrator.errors import PipelineError
from scenechain.orchestrator.pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)


async def build_orchestrator(settings: Settings) -> PipelineOrchestrator:
    """Wire the production orchestrator: database, vendor clients, ffmpeg."""
    from scenechain.db import async_session, init_database
    from scenechain.services.checkpoint_service import CheckpointStore
    from scenechain.services.generators import build_collaborators

    await init_database()
    return PipelineOrchestrator(
        settings,
        build_collaborators(settings),
        CheckpointStore(async_session),
    )


def create_app(
    orchestrator: Optional[PipelineOrchestrator] = None,
    settings: Settings = default_settings,
) -> FastAPI:
    """Create the API application.

    Args:
        orchestrator: Pre-built orchestrator; built at startup when omitted
        settings: Application settings
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager.

        Startup:
            - Validate system dependencies (ffmpeg)
            - Initialize database schema and orchestrator
            - Start the session reaper

        Shutdown:
            - Stop running sessions and the reaper
            - Close database connections
        """
        logger.info("Starting SceneChain API...")
        owns_orchestrator = app.state.orchestrator is None
        if owns_orchestrator:
            validate_dependencies()
            app.state.orchestrator = await build_orchestrator(settings)
        app.state.orchestrator.start_reaper()
        logger.info("API startup complete")

        yield

        logger.info("Shutting down SceneChain API...")
        await app.state.orchestrator.shutdown()
        if owns_orchestrator:
            from scenechain.db import shutdown
            await shutdown()
        logger.info("API shutdown complete")

    app = FastAPI(
        title="SceneChain API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.include_router(router)

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        """Map classified pipeline errors to HTTP status codes."""
        status = http_status_for(exc.kind)
        logger.warning(f"{request.method} {request.url.path} -> {status}: {exc.message}")
        headers = None
        if exc.retry_after is not None:
            headers = {"Retry-After": str(int(exc.retry_after))}
        return JSONResponse(status_code=status, content=pipeline_error_payload(exc), headers=headers)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler to prevent stack traces in API responses."""
        logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc),
            }
        )

    return app


app = create_app()

"""FastAPI application factory."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from img2img.api.routes import generation, images, tasks
from img2img.core import timezone  # noqa: F401
from img2img.core.config import Settings, configure_logging
from img2img.core.database import setup_db_session
from img2img.services.image_generation.orchestrator import GenerationOrchestrator
from img2img.services.image_generation.replicate_client import ReplicateClient
from img2img.services.storage.local import LocalStorageProvider
from img2img.services.task_recovery import recover_stale_tasks
from img2img.uow import create_uow_factory

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, create database session factory, blob store,
      Replicate client and orchestrator, fail tasks orphaned by a previous run
    - Shutdown: Close the Replicate HTTP client
    """
    settings = Settings()  # type: ignore[call-arg]

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    storage = LocalStorageProvider.from_settings(settings)
    replicate_client = ReplicateClient.from_settings(settings)
    orchestrator = GenerationOrchestrator(
        uow_factory=uow_factory,
        prediction_client=replicate_client,
        storage=storage,
        attempt_timeout_seconds=settings.prediction_timeout_seconds,
        output_format=settings.output_format,
    )

    # Store in app.state for access in routes
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.storage = storage
    app.state.orchestrator = orchestrator

    # Tasks left pending/processing by a crashed process will never finish
    try:
        async with await uow_factory() as uow:
            await recover_stale_tasks(uow, older_than_minutes=settings.stale_task_minutes)
    except Exception as e:
        # Log error but don't prevent startup
        logger.error(
            "startup.recovery_failed",
            error=str(e),
            error_type=type(e).__name__,
        )

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")
    await replicate_client.aclose()


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report request validation failures as 400 Bad Request."""
    logger.info("request.validation_failed", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type")}
        for error in exc.errors()
    ]


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="img2img Backend API",
        description="Image-to-image generation tasks backed by Replicate",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]

    # Register API routers
    app.include_router(tasks.router)
    app.include_router(generation.router)
    app.include_router(images.router)

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()

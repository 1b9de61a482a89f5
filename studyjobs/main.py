from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from studyjobs.config.logging import setup_logging
from studyjobs.config.settings import settings
from studyjobs.v1.core.exceptions import (
    RequestContextMiddleware,
    StudyJobsException,
    general_exception_handler,
    http_exception_handler,
    study_jobs_exception_handler,
)
from studyjobs.v1.core.registries import generator_registry, job_registry
from studyjobs.v1.gen.registry_init import init_generator_registry
from studyjobs.v1.healthz import router as health_router
from studyjobs.v1.infra.jobs.registry_init import register_job_handlers
from studyjobs.v1.infra.jobs.routes import goals_router
from studyjobs.v1.infra.jobs.routes import router as jobs_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    # Initialize structured logging
    setup_logging()

    # Create FastAPI app with API versioning from day 1
    app = FastAPI(
        title=settings.app_name,
        description="Background jobs for AI generation of learning material",
        version=settings.version,
        debug=settings.debug,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(StudyJobsException, study_jobs_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(goals_router, prefix="/v1")

    # Register content generators and job handlers
    init_generator_registry()
    register_job_handlers(job_registry, settings)

    # Freeze registries in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        generator_registry.freeze()
        job_registry.freeze()

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "studyjobs.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )

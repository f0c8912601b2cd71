"""
Main FastAPI application entry point.

This module sets up the FastAPI app with routes, error handlers and the
lifespan that builds the projection pipeline.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CollectorRegistry

from .api import events_router, healthz_router, metrics_router
from .config import Settings, get_settings
from .core.exceptions import AvroStashException
from .core.metrics import MetricsCollector
from .core.pipeline import ProcessingPipeline


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler(settings: Settings, registry: Optional[CollectorRegistry] = None) -> Any:
    """Create a lifespan handler with access to settings."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        FastAPI lifespan context manager.

        Builds the policy store, schema resolver and pipeline once per process.
        """
        logger = structlog.get_logger(__name__)
        logger.info("Starting avrostash service", version=app.version)

        metrics_collector = MetricsCollector(registry)
        app.state.metrics = metrics_collector
        app.state.pipeline = ProcessingPipeline.from_settings(settings, metrics=metrics_collector)

        try:
            logger.info("avrostash service started successfully")
            yield
        finally:
            logger.info("avrostash service shutdown complete")

    return lifespan


async def avrostash_exception_handler(request: Request, exc: AvroStashException) -> JSONResponse:
    """Handle custom avrostash exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "avrostash exception occurred",
        error=str(exc),
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": str(exc),
            "details": exc.details,
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Unexpected exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[CollectorRegistry] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Tests pass their own settings and a private metrics registry.
    """
    settings = settings or get_settings()

    configure_logging(settings.log_level)

    app = FastAPI(
        title="avrostash",
        description="Avro events → Logstash formatted documents",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=create_lifespan_handler(settings, registry),
    )

    app.add_exception_handler(AvroStashException, avrostash_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(events_router, prefix="/v1", tags=["events"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(healthz_router, tags=["health"])

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:
        """Root endpoint with service information."""
        return {
            "service": "avrostash",
            "version": app.version,
            "description": "Avro events → Logstash formatted documents",
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "avrostash.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )

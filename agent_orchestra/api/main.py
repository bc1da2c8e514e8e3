"""
FastAPI application for Agent Orchestra.

Reference ingress for the Execution Engine: accepts a task with optional
run options and returns the execution's terminal result.

Usage:
    # Development server with auto-reload
    uvicorn agent_orchestra.api.main:app --reload --host 0.0.0.0 --port 8000

    # Debug mode (verbose logging)
    LOG_LEVEL=DEBUG uvicorn agent_orchestra.api.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .. import __version__
from ..config_loader import load_app_config
from ..tracing import init_tracing_client, shutdown_tracing
from .routes import executions, health


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging and the package logger level."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("agent_orchestra").setLevel(log_level)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    app_config = load_app_config()
    logger.info("Starting Agent Orchestra API server")

    logger.info("=" * 60)
    logger.info("ENGINE CONFIGURATION")
    logger.info("  Config file: %s", app_config.source_path or "(built-in defaults)")
    logger.info("  Model: %s at %s", app_config.model.model, app_config.model.base_url)
    logger.info("  Tool format: %s", app_config.model.tool_format)
    logger.info("  Max iterations: %d", app_config.engine.max_iterations)
    logger.info("  Timeout: %ds", app_config.engine.timeout_seconds)
    logger.info("  Store: %s", app_config.store.backend)

    logger.info("-" * 60)
    logger.info("LANGFUSE OBSERVABILITY")
    tracing_client = init_tracing_client(
        public_key=app_config.langfuse.public_key,
        secret_key=app_config.langfuse.secret_key,
        host=app_config.langfuse.host,
        debug=app_config.langfuse.debug,
        flush_at=app_config.langfuse.flush_at,
        flush_interval=app_config.langfuse.flush_interval,
    )
    if tracing_client.enabled:
        logger.info("  Status: ENABLED")
    else:
        logger.info("  Status: DISABLED")
        if tracing_client.error:
            logger.info("  Reason: %s", tracing_client.error)
    logger.info("=" * 60)

    yield

    logger.info("Shutting down Agent Orchestra API server")
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        engine.gateway.close()
    shutdown_tracing()


def create_app(engine=None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: Pre-built ExecutionEngine; built from configuration on first
            request when omitted.
    """
    app = FastAPI(
        title="Agent Orchestra API",
        description="Runs tasks through a bounded reasoning and tool-use loop.",
        version=__version__,
        lifespan=lifespan,
    )
    if engine is not None:
        app.state.engine = engine

    app.include_router(health.router, tags=["Health"])
    app.include_router(executions.router, tags=["Executions"])

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Log validation errors before returning 400 response."""
        logger.warning(
            "Validation error on %s %s: %s",
            request.method,
            request.url.path,
            exc.errors(),
        )
        return JSONResponse(
            status_code=400,
            content={"detail": jsonable_errors(exc)},
        )

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may hold exception instances
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


configure_logging(load_app_config().logging.level)

# Create the application instance
app = create_app()


def run_server(config_path: Optional[str] = None) -> None:
    """
    Run the server using uvicorn.

    This is the entry point for running the server programmatically.
    """
    import uvicorn

    app_config = load_app_config(config_path)
    uvicorn.run(
        "agent_orchestra.api.main:app",
        host=app_config.server.host,
        port=app_config.server.port,
        workers=app_config.server.workers,
    )


if __name__ == "__main__":
    run_server()

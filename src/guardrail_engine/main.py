"""Guardrail engine service entry point.

Initializes the FastAPI application with:
- Structured logging configured from settings
- Primary database engine for lawbook versions and remediation runs
- Exception handlers mapping the error taxonomy to HTTP status codes
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from guardrail_engine.adapters.database import close_database, create_tables, init_database
from guardrail_engine.api.router import router
from guardrail_engine.errors import (
    AuthenticationError,
    AuthorizationError,
    CanonicalizationError,
    GuardrailError,
    NotFoundError,
    ValidationError,
)
from guardrail_engine.observability import configure_logging, get_logger
from guardrail_engine.settings import Settings, get_settings

logger = get_logger(__name__)

_STATUS_BY_ERROR: dict[type[GuardrailError], int] = {
    ValidationError: 422,
    CanonicalizationError: 422,
    NotFoundError: 404,
    AuthenticationError: 401,
    AuthorizationError: 403,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    Args:
        app: The FastAPI application instance.

    Yields:
        None
    """
    settings: Settings = app.state.settings
    logger.info("Initializing primary database", service=settings.service_name)
    init_database(settings.database_url, pool_size=settings.db_pool_size, echo=settings.db_echo)
    if settings.db_create_tables:
        logger.info("Creating missing tables")
        await create_tables()

    logger.info("Guardrail engine startup complete", default_lawbook_id=settings.default_lawbook_id)

    yield

    logger.info("Shutting down guardrail engine")
    await close_database()
    logger.info("Guardrail engine shutdown complete")


async def _handle_guardrail_error(request: Request, exc: GuardrailError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR.items() if isinstance(exc, error_type)),
        400,
    )
    logger.info("Request rejected", error=type(exc).__name__, status_code=status_code, path=request.url.path)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Settings to use; loaded from the environment when omitted.

    Returns:
        The configured application.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    application = FastAPI(title=settings.service_name, version="0.1.0", lifespan=lifespan)
    application.state.settings = settings
    application.add_exception_handler(GuardrailError, _handle_guardrail_error)
    application.include_router(router, prefix="/api/v1")

    @application.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.service_name}

    return application


app: FastAPI = create_app()

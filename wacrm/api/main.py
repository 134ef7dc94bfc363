"""FastAPI application factory and configuration."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wacrm.api.dependencies import get_connection_manager, get_query_cache, get_storage
from wacrm.api.routes import crm_router, functions_router, health_router, realtime_router
from wacrm.core.config import settings
from wacrm.core.exceptions import AppException
from wacrm.services.realtime import RealtimeMultiplexer
from wacrm.storage.base import StorageBackend

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

CORS_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]

# The catch-all handler runs outside CORSMiddleware
ERROR_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": ", ".join(CORS_HEADERS),
}


def _sender_resolver(storage: StorageBackend):
    async def resolve(record: dict[str, Any]) -> str | None:
        conversation = await storage.get_conversation(str(record.get("conversation_id", "")))
        if conversation is None:
            return None
        contact = await storage.get_contact(conversation.contact_id)
        return contact.display_name if contact else None

    return resolve


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(
        "Starting WhatsApp CRM API",
        environment=settings.app_env,
        debug=settings.app_debug,
    )

    storage = get_storage()
    connections = get_connection_manager()

    # One feed subscription drives cache invalidation and notifications
    multiplexer = RealtimeMultiplexer(
        storage.feed,
        get_query_cache(),
        notifier=connections.push_notification,
        resolve_sender=_sender_resolver(storage),
    )
    multiplexer.start()
    unsubscribe = storage.feed.subscribe("*", connections.push_change)
    app.state.multiplexer = multiplexer

    yield

    # Shutdown
    unsubscribe()
    multiplexer.stop()
    logger.info("Shutting down WhatsApp CRM API")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="WhatsApp CRM API",
        description="Serverless functions, realtime feed and dashboard endpoints for the WhatsApp CRM",
        version="0.1.0",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=CORS_HEADERS,
    )

    # Exception handlers
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        """Handle application-specific exceptions."""
        logger.warning(
            "Application exception",
            path=request.url.path,
            code=exc.code,
            message=exc.message,
            details=exc.details,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={**exc.details, "error": exc.message, "code": exc.code},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": message, "code": "VALIDATION_ERROR"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
            headers=ERROR_CORS_HEADERS,
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(functions_router)
    app.include_router(crm_router)
    app.include_router(realtime_router)

    # Root endpoint
    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "service": "WhatsApp CRM API",
            "version": "0.1.0",
            "status": "running",
        }

    return app


# Create default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "wacrm.api.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.is_development,
    )

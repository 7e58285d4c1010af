"""
FastAPI application factory for the TrustPact HTTP gateway.

This module creates the main FastAPI app with:
- CORS configuration for frontends
- Document store lifecycle management
- Trust request routes
- Translation of error kinds into readable JSON errors
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import Settings
from ..errors import TrustPactError, ValidationError
from ..repository import RequestRepository
from ..store import DocumentStore, create_document_store
from .routes import router

logger = logging.getLogger(__name__)

# error code -> (HTTP status, message shown to users; None keeps the error's own)
ERROR_RESPONSES: dict[str, tuple[int, str | None]] = {
    "UNAUTHENTICATED": (401, "User not authenticated"),
    "NOT_FOUND": (404, "Request not found"),
    "ACCESS_DENIED": (403, None),
    "INVALID_TRANSITION": (409, None),
    "VALIDATION_ERROR": (422, None),
    "DECODE_FAILURE": (500, "Stored request is unreadable"),
    "STORE_ERROR": (503, "Request store is unavailable, try again later"),
}


def error_response(exc: TrustPactError) -> JSONResponse:
    """Render a TrustPactError as a JSON error response."""
    status, message = ERROR_RESPONSES.get(exc.code, (500, None))
    return JSONResponse(
        status_code=status,
        content={"error": message or exc.message, "error_code": exc.code},
    )


def create_app(
    settings: Settings | None = None,
    store: DocumentStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Configuration (loaded from environment if not provided)
        store: Document store to use instead of the configured backend
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage document store lifecycle."""
        doc_store = store or create_document_store(settings)
        await doc_store.connect()

        app.state.settings = settings
        app.state.store = doc_store
        app.state.repository = RequestRepository(
            doc_store,
            collection=settings.collection,
            default_expiration=settings.default_expiration,
            strict_transitions=settings.strict_transitions,
        )

        yield

        await doc_store.close()

    app = FastAPI(
        title="TrustPact Gateway",
        description="REST API for sending and answering trust requests",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TrustPactError)
    async def handle_trustpact_error(request: Request, exc: TrustPactError) -> JSONResponse:
        if exc.code in ("STORE_ERROR", "DECODE_FAILURE"):
            logger.error(f"Request failed: {exc.message}", extra={"path": request.url.path})
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        problems = [
            f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
            for error in errors
        ]
        field_name = str(errors[0]["loc"][-1]) if errors and errors[0]["loc"] else None
        return error_response(
            ValidationError(
                f"Invalid request: {'; '.join(problems)}",
                field_name=field_name,
                errors=problems,
            )
        )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": "trustpact-gateway",
            "store": settings.store_backend.value,
        }

    return app

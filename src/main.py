"""FastAPI application relaying outbound messages to WhatsApp.

This module builds the app: it picks the messaging provider from the
environment, wires the WhatsApp routes behind the API key check and
renders every error as ``{"success": false, "error": ...}``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api.dependencies import RateLimiter
from src.api.whatsapp.routers import router as whatsapp_router
from src.config import settings
from src.messaging.dispatcher import MessageDispatcher, build_dispatcher

logging.basicConfig(
    level=settings.log_level(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)


def format_validation_error(exc: RequestValidationError) -> str:
    """Flatten pydantic errors into one readable line."""
    messages = []
    for error in exc.errors():
        location = [
            str(part) for part in error.get("loc", ()) if part != "body"
        ]
        field = ".".join(location)
        message = error.get("msg", "Invalid value")
        messages.append(f"{field}: {message}" if field else message)
    return "; ".join(messages) or "Invalid request"


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
):
    error = format_validation_error(exc)
    logger.warning(f"Invalid request to {request.url.path}: {error}")
    return JSONResponse(
        status_code=400, content={"success": False, "error": error}
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


def create_app(dispatcher: Optional[MessageDispatcher] = None) -> FastAPI:
    """Build the application around ``dispatcher``.

    Args:
        dispatcher: The provider to relay to; built from
            ``WHATSAPP_PROVIDER`` when omitted

    Returns:
        FastAPI: The configured application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"WhatsApp relay started with provider "
            f"'{app.state.dispatcher.name}'"
        )
        yield
        await app.state.dispatcher.shutdown()

    app = FastAPI(title="WhatsApp Relay", lifespan=lifespan)
    app.state.dispatcher = dispatcher or build_dispatcher()
    app.state.rate_limiter = RateLimiter(
        settings.rate_limit_max_requests(),
        settings.rate_limit_window_seconds(),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(
        RequestValidationError, validation_exception_handler
    )
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(whatsapp_router)

    @app.get("/health")
    async def health():
        """Liveness probe; does not require the API key."""
        return {"status": "ok", "service": settings.service_name()}

    return app


app = create_app()


def run():
    """Serve the app with uvicorn on HOST:PORT."""
    logger.info(f"WhatsApp API running on port {settings.port()}")
    uvicorn.run(app, host=settings.host(), port=settings.port())


if __name__ == "__main__":
    run()

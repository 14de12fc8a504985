"""
FastAPI application entry point for the media publishing backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mediapub.config import Settings, get_settings
from mediapub.dependencies import Backends, build_backends, build_services
from mediapub.errors import ERROR_RESPONSES, ErrorKind, MediaPubError
from mediapub.routes import router

logger = logging.getLogger(__name__)


async def _handle_mediapub_error(request: Request, exc: MediaPubError) -> JSONResponse:
    if exc.status_code >= 417:
        logger.error(
            "%s %s failed with %s: %s",
            request.method,
            request.url.path,
            exc.kind.value,
            exc.detail,
        )
    else:
        logger.info(
            "%s %s rejected with %s: %s",
            request.method,
            request.url.path,
            exc.kind.value,
            exc.detail,
        )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


async def _handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.info("Malformed request to %s: %s", request.url.path, exc.errors())
    status, message = ERROR_RESPONSES[ErrorKind.MALFORMED_INPUT]
    return JSONResponse(status_code=status, content={"error": message})


async def _handle_http_exception(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


def create_app(
    settings: Optional[Settings] = None, backends: Optional[Backends] = None
) -> FastAPI:
    settings = settings or get_settings()
    backends = backends or build_backends(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Closing store handles")
        backends.close()

    app = FastAPI(
        title="Media Publishing Backend", version="0.1.0", lifespan=lifespan
    )
    app.state.settings = settings
    app.state.backends = backends
    app.state.services = build_services(backends, settings)
    app.add_exception_handler(MediaPubError, _handle_mediapub_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.include_router(router, prefix=settings.api_prefix)
    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8080, workers=1)


if __name__ == "__main__":
    main()

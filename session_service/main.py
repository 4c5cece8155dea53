"""
Class Session Service - service entry point
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from session_service import __version__
from session_service.api import api_router
from session_service.api.dependencies import ServiceContainer, build_container
from session_service.core.config import Settings, get_settings
from session_service.core.errors import SessionServiceError
from session_service.core.logging import set_request_context, setup_structured_logging

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    settings = settings or get_settings()
    container = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.SERVICE_NAME} ({settings.ENVIRONMENT})")
        yield
        logger.info(f"Shutting down {settings.SERVICE_NAME}...")
        await container.aclose()

    app = FastAPI(
        title="Class Session Service",
        description="Event-sourced class session scheduling and verification",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = set_request_context(request.headers.get("x-request-id"))
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response

    @app.exception_handler(SessionServiceError)
    async def handle_service_error(request: Request, exc: SessionServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(api_router, prefix="/api")

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": settings.SERVICE_NAME,
            "version": __version__,
            "sessions": len(container.read_projection),
        }

    return app


def main() -> None:
    settings = get_settings()
    setup_structured_logging(
        service_name=settings.SERVICE_NAME,
        environment=settings.ENVIRONMENT,
        level=settings.LOG_LEVEL,
        json_output=settings.LOG_JSON,
    )
    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()

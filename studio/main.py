"""FastAPI entrypoint: wires config, container, routes, and lifecycle hooks."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from studio.api.http.artifacts import router as artifacts_router
from studio.api.http.confirmations import router as confirmations_router
from studio.api.http.health import router as health_router
from studio.api.http.sessions import router as sessions_router
from studio.api.stream.sse import router as sse_router
from studio.core.config import Settings
from studio.core.container import build_container
from studio.core.lifecycle import on_shutdown, on_startup
from studio.infra.observability.logger import setup_logging


def create_app() -> FastAPI:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    container = build_container(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        on_startup(container)
        try:
            yield
        finally:
            await on_shutdown(container)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(sessions_router)
    app.include_router(confirmations_router)
    app.include_router(artifacts_router)
    app.include_router(sse_router)

    return app


app = create_app()

"""FastAPI application setup."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..app import Application
from .routes import cache, http, traces

_app: Application | None = None


def get_app() -> Application:
    """Process-wide Application, proxied per FETCHCORE_PROXY_PREFIXES."""
    global _app
    if _app is None:
        prefixes = os.getenv("FETCHCORE_PROXY_PREFIXES", "GLOBAL")
        _app = Application(
            proxy_prefixes=[p.strip() for p in prefixes.split(",") if p.strip()]
        )
    return _app


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Create and configure the inspection API.

    When application is given its lifecycle is left to the caller; otherwise
    the global instance is started and stopped with the server.
    """
    owned = application is None
    application = application or get_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        if owned:
            await application.start()
        yield
        if owned:
            await application.stop()

    fastapi_app = FastAPI(
        title="fetchcore API",
        description="Inspection API for the fetchcore request pipeline",
        version="0.1.0",
        lifespan=lifespan,
    )

    origins = os.getenv("FETCHCORE_CORS_ORIGINS", "http://localhost:5173")
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    fastapi_app.include_router(traces.create_traces_router(application))
    fastapi_app.include_router(cache.create_cache_router(application))
    fastapi_app.include_router(http.create_http_router(application))

    return fastapi_app

"""Mapping proxy FastAPI application.

Creates the proxy service, wires the admin and proxy routes, configures
logging, and exposes health and Prometheus metrics endpoints.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request

from mapproxy.api import admin, routes
from mapproxy.core.config import Settings, load_settings
from mapproxy.core.logging import get_logger, setup_logging
from mapproxy.metrics.prometheus import metrics_router
from mapproxy.services.proxy import Forwarder, build_client
from mapproxy.services.resolver import Resolver
from mapproxy.services.store import MappingStore, RedisMappingStore, build_store, seed_mappings

log = get_logger("main")


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[MappingStore] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Build the application.

    ``store`` and ``client`` replace the ones the lifespan would otherwise
    build from settings; injected collaborators are not closed at shutdown.
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan.

        Creates the app-scoped store, outbound HTTP client, Resolver and
        Forwarder, keeps them on ``app.state`` for the life of the app and
        releases them at shutdown.
        """
        setup_logging()
        mapping_store = store if store is not None else build_store(settings)
        if isinstance(mapping_store, RedisMappingStore):
            try:
                await mapping_store.ping()  # fail fast if Redis is unreachable at startup
            except Exception:
                if store is None:
                    await mapping_store.close()
                raise
        await seed_mappings(mapping_store, settings)

        http_client = client if client is not None else build_client(settings.proxy_timeout_s)
        app.state.store = mapping_store
        app.state.resolver = Resolver(mapping_store)
        app.state.forwarder = Forwarder(http_client)
        log.info("proxy ready (store=%s)", type(mapping_store).__name__)
        try:
            yield
        finally:
            app.state.resolver = None
            app.state.forwarder = None
            app.state.store = None
            if client is None:
                await http_client.aclose()
            if store is None:
                await mapping_store.close()

    # every other top-level path belongs to the proxy
    app = FastAPI(
        title="mapproxy",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings

    @app.get("/health")
    async def health():
        """Liveness probe endpoint returning a minimal OK payload."""
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz(request: Request):
        """Readiness probe: OK once the lifespan has wired the collaborators."""
        if getattr(request.app.state, "store", None) is None:
            raise HTTPException(status_code=503, detail="Service not ready")
        return {"status": "ok"}

    app.include_router(metrics_router)
    app.include_router(admin.router, prefix="/admin", tags=["admin"])
    # catch-all, must stay last
    app.include_router(routes.router)
    return app


app = create_app()


def run() -> None:
    settings: Settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()

"""Accessors for the app-scoped collaborators created in the lifespan."""
from __future__ import annotations

from fastapi import HTTPException, Request

from mapproxy.services.proxy import Forwarder
from mapproxy.services.resolver import Resolver
from mapproxy.services.store import MappingStore


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        # lifespan has not run (or already shut down)
        raise HTTPException(status_code=503, detail="Service not ready")
    return value


def get_store(request: Request) -> MappingStore:
    return _state(request, "store")


def get_resolver(request: Request) -> Resolver:
    return _state(request, "resolver")


def get_forwarder(request: Request) -> Forwarder:
    return _state(request, "forwarder")

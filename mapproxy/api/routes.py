"""Proxy routes.

``/{id}`` and ``/{id}/{subpath...}`` accept any method, including extension
methods such as PROPFIND, resolve the id through the mapping store and stream
the backend's response back.
"""
from __future__ import annotations

from typing import Set

from fastapi import APIRouter, HTTPException, Request, Response
from starlette.routing import Match

from mapproxy.api.deps import get_forwarder, get_resolver
from mapproxy.core.errors import ClientGone, ForwardFailed, MappingNotFound, RequestConstructionFailed
from mapproxy.core.logging import get_logger
from mapproxy.core.security import check_admin
from mapproxy.metrics.prometheus import PROXY_REQUESTS
from mapproxy.models.schemas import RESERVED_IDS
from mapproxy.services.proxy import request_target

log = get_logger("api")
router = APIRouter()

# nginx's code for a request the client abandoned
CLIENT_CLOSED_REQUEST = 499


def _allowed_methods(request: Request) -> Set[str]:
    """Methods of the service's own routes that match this path but not this method."""
    allowed: Set[str] = set()
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.PARTIAL and getattr(route, "methods", None):
            allowed |= route.methods
    return allowed


async def _reject_reserved(request: Request, mapping_id: str) -> None:
    if mapping_id == "admin":
        await check_admin(request)
    allowed = _allowed_methods(request)
    if allowed:
        raise HTTPException(
            status_code=405,
            detail="Method Not Allowed",
            headers={"Allow": ", ".join(sorted(allowed))},
        )
    raise HTTPException(status_code=404, detail="Not Found")


async def proxy_request(request: Request) -> Response:
    """
    Resolve the first path segment and forward the request:
      - reserved id (a route of this service) -> 401/405/404, no lookup
      - unknown id (or unreadable store)      -> 404, nothing sent upstream
      - target that is not a usable URL       -> 500
      - upstream unreachable                  -> 502
      - otherwise the upstream status, headers and body, streamed
    """
    mapping_id, subpath = request_target(request)
    if mapping_id in RESERVED_IDS:
        await _reject_reserved(request, mapping_id)

    resolver = get_resolver(request)
    forwarder = get_forwarder(request)

    try:
        mapping = await resolver.resolve(mapping_id)
    except MappingNotFound:
        PROXY_REQUESTS.labels(outcome="not_found").inc()
        raise HTTPException(status_code=404, detail="Mapping not found")

    try:
        return await forwarder.forward(request, mapping.url, subpath)
    except RequestConstructionFailed as e:
        PROXY_REQUESTS.labels(outcome="bad_target").inc()
        log.error("mapping %s has an unusable target: %s", mapping_id, e)
        raise HTTPException(status_code=500, detail="Failed to create request")
    except ForwardFailed:
        PROXY_REQUESTS.labels(outcome="forward_failed").inc()
        raise HTTPException(status_code=502, detail="Failed to forward request")
    except ClientGone:
        # nobody is left to read this
        return Response(status_code=CLIENT_CLOSED_REQUEST)


# Plain Starlette routes: no method filter, so every method reaches the handler
router.add_route("/{mapping_id}", proxy_request, include_in_schema=False)
router.add_route("/{mapping_id}/{subpath:path}", proxy_request, include_in_schema=False)

"""Reverse-proxy utilities for the mapping proxy.

Provides a streaming forwarder that sends a client request to a resolved
backend origin and streams the upstream response back to the client.
"""
from __future__ import annotations

from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import List, Optional, Tuple
from urllib.parse import unquote

import anyio
import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect

from mapproxy.core.errors import (
    ClientGone,
    ForwardFailed,
    RequestConstructionFailed,
    StreamTruncated,
)
from mapproxy.core.logging import get_logger
from mapproxy.metrics.prometheus import PROXY_REQUESTS

log = get_logger("proxy")

# Derived by the transport from the target URL
TRANSPORT_OWNED = {b"host"}


def split_proxy_path(raw_path: str, query: str = "") -> Tuple[str, str]:
    """Split ``/{id}{subpath}`` into the decoded id and the literal sub-path.

    The sub-path keeps its leading slash and any percent-encoding exactly as
    received; the query string is appended after ``?`` when present.

    >>> split_proxy_path("/svc1/api/v1/items", "x=1")
    ('svc1', '/api/v1/items?x=1')
    >>> split_proxy_path("/svc1")
    ('svc1', '')
    """
    path = raw_path.split("?", 1)[0]
    if path.startswith("/"):
        path = path[1:]
    head, sep, rest = path.partition("/")
    subpath = sep + rest
    if query:
        subpath = f"{subpath}?{query}"
    return unquote(head), subpath


def request_target(request: Request) -> Tuple[str, str]:
    """Return ``(id, subpath)`` for an inbound request, using the raw path."""
    raw: Optional[bytes] = request.scope.get("raw_path")
    path = raw.decode("latin-1") if raw else request.scope["path"]
    query = request.scope.get("query_string", b"").decode("latin-1")
    return split_proxy_path(path, query)


def target_url(origin: str, subpath: str) -> str:
    """Literal concatenation; no slash folding or re-encoding."""
    return f"{origin}{subpath}"


def _inbound_headers(request: Request) -> List[Tuple[bytes, bytes]]:
    # raw keeps repeated headers as separate entries, in order
    return [(k, v) for k, v in request.headers.raw if k.lower() not in TRANSPORT_OWNED]


def _has_body(request: Request) -> bool:
    return "content-length" in request.headers or "transfer-encoding" in request.headers


async def _upload(request: Request, done: Optional[anyio.Event]):
    try:
        async for chunk in request.stream():
            yield chunk
    finally:
        if done is not None:
            done.set()


async def _wait_for_disconnect(request: Request, body_done: anyio.Event) -> None:
    # receive() also delivers the body, so only listen once the upload is over
    await body_done.wait()
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


def build_client(timeout_s: Optional[float] = None, **kwargs) -> httpx.AsyncClient:
    """Shared outbound client: no redirects followed, no cookies retained."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=False,
        cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])),
        **kwargs,
    )


class Forwarder:
    """Sends inbound requests upstream over one shared httpx client."""

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    def build_request(
        self,
        request: Request,
        target: str,
        body_done: Optional[anyio.Event] = None,
    ) -> httpx.Request:
        """Build the outbound request; the body is streamed, not read.

        ``body_done`` is set once the inbound body has been fully relayed.
        """
        try:
            url = httpx.URL(target)
        except httpx.InvalidURL as e:
            raise RequestConstructionFailed(target, str(e)) from e
        if url.scheme not in ("http", "https") or not url.host:
            raise RequestConstructionFailed(target, "not an absolute http(s) URL")

        # Built directly rather than via client.build_request so the client's
        # default User-Agent/Accept-Encoding/cookies are never merged in.
        return httpx.Request(
            request.method,
            url,
            headers=_inbound_headers(request),
            content=_upload(request, body_done) if _has_body(request) else None,
            extensions={"timeout": self._client.timeout.as_dict()},
        )

    async def _send(
        self,
        request: Request,
        upstream_request: httpx.Request,
        body_done: anyio.Event,
        target: str,
    ) -> httpx.Response:
        upstream: Optional[httpx.Response] = None
        error: Optional[Exception] = None
        client_left = False

        async def watch_client(scope: anyio.CancelScope) -> None:
            nonlocal client_left
            await _wait_for_disconnect(request, body_done)
            client_left = True
            scope.cancel()

        async with anyio.create_task_group() as tg:
            tg.start_soon(watch_client, tg.cancel_scope)
            try:
                upstream = await self._client.send(upstream_request, stream=True)
            except (httpx.HTTPError, ClientDisconnect) as e:
                error = e
            tg.cancel_scope.cancel()

        if client_left or isinstance(error, ClientDisconnect):
            if upstream is not None:
                await upstream.aclose()
            PROXY_REQUESTS.labels(outcome="cancelled").inc()
            log.info("client left during %s %s; outbound call cancelled", request.method, target)
            raise ClientGone(target) from error
        if error is not None:
            log.warning("forward %s %s failed: %s", request.method, target, error)
            raise ForwardFailed(target) from error
        return upstream

    async def forward(self, request: Request, origin: str, subpath: str) -> StreamingResponse:
        """Forward ``request`` to ``origin + subpath`` and stream the response back.

        Raises RequestConstructionFailed, ForwardFailed or ClientGone before
        anything is sent to the client. Once the returned response starts
        streaming, a failing upstream read raises StreamTruncated from the body
        iterator so the server drops the connection instead of finishing the body.
        """
        target = target_url(origin, subpath)
        body_done = anyio.Event()
        upstream_request = self.build_request(request, target, body_done)
        if not _has_body(request):
            body_done.set()

        upstream = await self._send(request, upstream_request, body_done, target)

        log.debug("%s %s -> %d", request.method, target, upstream.status_code)

        async def relay():
            sent = 0
            try:
                # pull one chunk at a time; the next read waits for the client
                async for chunk in upstream.aiter_raw():
                    sent += len(chunk)
                    yield chunk
            except httpx.HTTPError as e:
                PROXY_REQUESTS.labels(outcome="truncated").inc()
                log.warning("body from %s truncated after %d bytes: %s", target, sent, e)
                raise StreamTruncated(target, sent) from e
            else:
                PROXY_REQUESTS.labels(outcome="completed").inc()
            finally:
                await upstream.aclose()

        response = StreamingResponse(
            relay(),
            status_code=upstream.status_code,
            # also runs when a client disconnect cancels the copy
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = list(upstream.headers.raw)
        return response

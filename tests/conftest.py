# tests/conftest.py
from typing import Callable, List, Optional

import httpx
import pytest

from mapproxy.core.config import Settings
from mapproxy.main import create_app
from mapproxy.services.proxy import build_client
from mapproxy.services.store import InMemoryMappingStore

ADMIN = ("admin", "s3cret")


# --- helpers ---------------------------------------------------------------

class StubBackend:
    """Records every outbound request and answers with ``respond``."""

    def __init__(self):
        self.calls: List[httpx.Request] = []
        self.respond: Callable[[httpx.Request], httpx.Response] = lambda req: httpx.Response(200, content=b"ok")

    def handler(self, request: httpx.Request) -> httpx.Response:
        # MockTransport has already read the (streamed) body at this point
        self.calls.append(request)
        return self.respond(request)


class TrackedStream(httpx.AsyncByteStream):
    """Upstream body that remembers whether the proxy closed it."""

    def __init__(self, chunks: List[bytes], fail_after: Optional[int] = None):
        self.chunks = chunks
        self.fail_after = fail_after
        self.closed = False

    async def __aiter__(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise httpx.ReadError("connection reset by peer")
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


# --- fixtures --------------------------------------------------------------

@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(admin_username=ADMIN[0], admin_password=ADMIN[1])


@pytest.fixture
def admin_auth():
    return ADMIN


@pytest.fixture
def store() -> InMemoryMappingStore:
    return InMemoryMappingStore()


@pytest.fixture
def backend() -> StubBackend:
    return StubBackend()


@pytest.fixture
async def outbound(backend):
    client = build_client(transport=httpx.MockTransport(backend.handler))
    yield client
    await client.aclose()


@pytest.fixture
async def app(settings, store, outbound):
    application = create_app(settings, store=store, client=outbound)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://proxy.local") as c:
        yield c

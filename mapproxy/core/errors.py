"""Error taxonomy for the proxy path and the mapping store.

Every error here is scoped to a single request; none of them is fatal to the
process.
"""
from __future__ import annotations


class ProxyError(Exception):
    """Base class for proxy failures."""


class MappingNotFound(ProxyError):
    """No current mapping for an id, or the store could not be read."""

    def __init__(self, mapping_id: str):
        super().__init__(f"no mapping for {mapping_id!r}")
        self.mapping_id = mapping_id


class StoreError(ProxyError):
    """The mapping store failed (connectivity, bad record)."""


class RequestConstructionFailed(ProxyError):
    """The outbound request could not be built from the mapping."""

    def __init__(self, target: str, reason: str = ""):
        msg = f"cannot build request for {target!r}"
        super().__init__(f"{msg}: {reason}" if reason else msg)
        self.target = target


class ForwardFailed(ProxyError):
    """Transport failure before any response byte reached the caller."""

    def __init__(self, target: str):
        super().__init__(f"forwarding to {target!r} failed")
        self.target = target


class StreamTruncated(ProxyError):
    """Body copy failed after status and headers were already sent."""

    def __init__(self, target: str, sent: int):
        super().__init__(f"response body from {target!r} truncated after {sent} bytes")
        self.target = target
        self.sent = sent


class ClientGone(ProxyError):
    """The inbound client disconnected before the upstream answered."""

    def __init__(self, target: str):
        super().__init__(f"client left while forwarding to {target!r}")
        self.target = target

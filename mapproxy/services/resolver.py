"""Turns a routable id into the mapping it currently points at."""
from __future__ import annotations

from mapproxy.core.errors import MappingNotFound, StoreError
from mapproxy.core.logging import get_logger
from mapproxy.metrics.prometheus import LOOKUPS
from mapproxy.models.schemas import Mapping
from mapproxy.services.store import MappingStore

log = get_logger("resolver")


class Resolver:
    """Point lookups against the mapping store, without caching."""

    def __init__(self, store: MappingStore):
        self._store = store

    async def resolve(self, mapping_id: str) -> Mapping:
        """
        Return the current mapping for ``mapping_id``.

        A missing record and a failing store both raise MappingNotFound so
        callers cannot tell them apart; the difference only shows up in logs
        and in the ``mapproxy_lookups_total`` labels.
        """
        try:
            mapping = await self._store.get(mapping_id)
        except StoreError as e:
            LOOKUPS.labels(result="error").inc()
            log.warning("store lookup failed for %s: %s", mapping_id, e)
            raise MappingNotFound(mapping_id) from e

        if mapping is None:
            LOOKUPS.labels(result="miss").inc()
            log.info("no mapping for %s", mapping_id)
            raise MappingNotFound(mapping_id)

        LOOKUPS.labels(result="hit").inc()
        return mapping

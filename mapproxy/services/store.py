"""Mapping stores.

The store is the single source of truth for id -> url mappings. The proxy path
only ever calls :meth:`MappingStore.get`; the admin surface uses the rest.
"""
from __future__ import annotations

import abc
from threading import RLock
from typing import Dict, List, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from mapproxy.core.config import Settings
from mapproxy.core.errors import StoreError
from mapproxy.core.logging import get_logger
from mapproxy.models.schemas import Mapping

log = get_logger("store")


class MappingStore(abc.ABC):
    """Base class for mapping stores."""

    @abc.abstractmethod
    async def get(self, mapping_id: str) -> Optional[Mapping]:
        """Return the mapping for ``mapping_id`` or None if there is none."""

    @abc.abstractmethod
    async def put(self, mapping: Mapping) -> Mapping:
        """Create or overwrite the mapping with ``mapping.id``."""

    @abc.abstractmethod
    async def delete(self, mapping_id: str) -> bool:
        """Remove a mapping. Returns False if it did not exist."""

    @abc.abstractmethod
    async def list(self) -> List[Mapping]:
        """Return every mapping, in no particular order."""

    async def close(self) -> None:
        """Release any connection held by the store."""


class InMemoryMappingStore(MappingStore):
    """In-memory store. Thread-safe and simple."""

    def __init__(self):
        self._mappings: Dict[str, Mapping] = {}
        self._lock = RLock()

    async def get(self, mapping_id: str) -> Optional[Mapping]:
        with self._lock:
            return self._mappings.get(mapping_id)

    async def put(self, mapping: Mapping) -> Mapping:
        with self._lock:
            self._mappings[mapping.id] = mapping
            return mapping

    async def delete(self, mapping_id: str) -> bool:
        with self._lock:
            return self._mappings.pop(mapping_id, None) is not None

    async def list(self) -> List[Mapping]:
        with self._lock:
            return list(self._mappings.values())


class RedisMappingStore(MappingStore):
    """Mappings kept in one Redis hash: field = id, value = mapping JSON."""

    def __init__(self, client: aioredis.Redis, key: str = "proxy_mappings"):
        self._redis = client
        self._key = key

    @classmethod
    def from_url(cls, url: str, key: str = "proxy_mappings") -> "RedisMappingStore":
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, key)

    def _decode(self, mapping_id: str, raw: str) -> Mapping:
        try:
            return Mapping.model_validate_json(raw)
        except ValidationError as e:
            raise StoreError(f"corrupt mapping record {mapping_id!r} in {self._key}") from e

    async def get(self, mapping_id: str) -> Optional[Mapping]:
        try:
            raw = await self._redis.hget(self._key, mapping_id)
        except RedisError as e:
            raise StoreError(f"redis read failed for {mapping_id!r}") from e
        if raw is None:
            return None
        return self._decode(mapping_id, raw)

    async def put(self, mapping: Mapping) -> Mapping:
        try:
            await self._redis.hset(self._key, mapping.id, mapping.model_dump_json())
        except RedisError as e:
            raise StoreError(f"redis write failed for {mapping.id!r}") from e
        return mapping

    async def delete(self, mapping_id: str) -> bool:
        try:
            removed = await self._redis.hdel(self._key, mapping_id)
        except RedisError as e:
            raise StoreError(f"redis delete failed for {mapping_id!r}") from e
        return bool(removed)

    async def list(self) -> List[Mapping]:
        try:
            records = await self._redis.hgetall(self._key)
        except RedisError as e:
            raise StoreError("redis list failed") from e
        mappings: List[Mapping] = []
        for mapping_id, raw in records.items():
            try:
                mappings.append(self._decode(mapping_id, raw))
            except StoreError:
                log.warning("skipping corrupt mapping record %s", mapping_id)
        return mappings

    async def ping(self) -> None:
        await self._redis.ping()

    async def close(self) -> None:
        await self._redis.aclose()


def build_store(settings: Settings) -> MappingStore:
    """Construct the store selected by ``settings.store_backend``."""
    if settings.store_backend == "redis":
        if not settings.redis_url:
            raise RuntimeError("STORE_BACKEND=redis requires REDIS_URL to be configured.")
        return RedisMappingStore.from_url(settings.redis_url, settings.redis_key)
    return InMemoryMappingStore()


async def seed_mappings(store: MappingStore, settings: Settings) -> int:
    """Load the mappings configured in SEED_MAPPINGS. Returns how many were written."""
    count = 0
    for mapping_id, url in settings.seed_pairs():
        await store.put(Mapping(id=mapping_id, url=url))
        count += 1
    if count:
        log.info("seeded %d mapping(s)", count)
    return count

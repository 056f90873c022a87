"""Pydantic models used by the mapping proxy."""
from __future__ import annotations

from typing import Optional

import httpx
from pydantic import BaseModel, field_validator

# Top-level routes owned by the service itself; a mapping with one of these ids
# could never be reached through the proxy route.
RESERVED_IDS = frozenset({"admin", "health", "readyz", "metrics"})


def _check_id(v: str) -> str:
    if not v or not v.strip():
        raise ValueError("id must not be empty")
    if "/" in v:
        raise ValueError("id must be a single path segment")
    return v


def _check_url(v: str) -> str:
    if not v or not v.strip():
        raise ValueError("url must not be empty")
    try:
        parsed = httpx.URL(v)
    except httpx.InvalidURL as e:
        raise ValueError(f"url is not valid: {e}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ValueError("url must be an absolute http(s) URL")
    return v


class Mapping(BaseModel):
    """A routable id and the backend origin its requests are forwarded to."""

    model_config = {"frozen": True}

    id: str
    url: str

    @field_validator("id")
    @classmethod
    def _valid_id(cls, v: str) -> str:
        return _check_id(v)

    @field_validator("url")
    @classmethod
    def _valid_url(cls, v: str) -> str:
        return _check_url(v)


class MappingIn(BaseModel):
    """Admin payload; on update the id in the path takes precedence."""

    id: Optional[str] = None
    url: str

    @field_validator("id")
    @classmethod
    def _valid_id(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_id(v)

    @field_validator("url")
    @classmethod
    def _valid_url(cls, v: str) -> str:
        return _check_url(v)

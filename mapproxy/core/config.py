"""Configuration for the mapping proxy.

Provides strongly-typed settings using Pydantic and a loader from environment
variables with defaults suitable for local development.
"""

from __future__ import annotations

import os
from typing import Literal, Optional

from pydantic import BaseModel, ValidationError, field_validator


class Settings(BaseModel):
    """Pydantic settings for the proxy service."""
    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: str | None = None
    redis_key: str = "proxy_mappings"

    admin_username: str = "admin"
    admin_password: str = ""

    # None means no timeout at all on the outbound call
    proxy_timeout_s: Optional[float] = None

    # "svc1=http://host:9000,svc2=http://other" loaded into the store at startup
    seed_mappings: str = ""

    host: str = "0.0.0.0"
    port: int = 8080

    @field_validator("redis_url")
    @classmethod
    def _blank_is_none(cls, v: str | None) -> str | None:
        return v or None

    def seed_pairs(self) -> list[tuple[str, str]]:
        """Parse ``seed_mappings`` into ``(id, url)`` pairs, skipping blanks."""
        pairs: list[tuple[str, str]] = []
        for item in self.seed_mappings.split(","):
            item = item.strip()
            if not item:
                continue
            mapping_id, sep, url = item.partition("=")
            if not sep:
                raise ValueError(f"seed mapping {item!r} is not of the form id=url")
            pairs.append((mapping_id.strip(), url.strip()))
        return pairs


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


def load_settings() -> Settings:
    """Load settings from environment variables and return a Settings object."""
    try:
        settings = Settings(
            store_backend=os.getenv("STORE_BACKEND", "memory").lower(),
            redis_url=os.getenv("REDIS_URL"),
            redis_key=os.getenv("REDIS_KEY", "proxy_mappings"),
            admin_username=os.getenv("ADMIN_USERNAME", "admin"),
            admin_password=os.getenv("ADMIN_PASSWORD", ""),
            proxy_timeout_s=_optional_float("PROXY_TIMEOUT_S"),
            seed_mappings=os.getenv("SEED_MAPPINGS", ""),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8080")),
        )
        settings.seed_pairs()
    except (ValidationError, ValueError) as e:
        raise RuntimeError(f"Invalid configuration: {e}") from e

    if settings.store_backend == "redis" and not settings.redis_url:
        raise RuntimeError("STORE_BACKEND=redis requires REDIS_URL to be configured.")
    return settings

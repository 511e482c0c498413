"""Invalidation of cached read views."""

from __future__ import annotations

from banksync.adapters.cache.revalidate import (
    CacheRevalidationError,
    NoopCacheInvalidator,
    RevalidationClient,
)

__all__ = ["CacheRevalidationError", "NoopCacheInvalidator", "RevalidationClient"]

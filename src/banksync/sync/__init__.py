"""Bank transaction sync pipeline."""

from __future__ import annotations

from banksync.sync.account_sync import AccountSyncOrchestrator
from banksync.sync.classification import AccountClass, get_classification
from banksync.sync.connection_sync import (
    CACHE_TAG_TEMPLATES,
    ConnectionSyncCoordinator,
    cache_tags_for_team,
)
from banksync.sync.health import ConnectionHealth, ProviderFailure
from banksync.sync.ports import (
    CacheInvalidator,
    StorageError,
    SyncStore,
    TransactionNotifier,
)
from banksync.sync.types import (
    AccountSyncResult,
    AccountSyncState,
    BalanceRefreshResult,
    ConnectionSyncResult,
    IllegalStateTransition,
)

__all__ = [
    "CACHE_TAG_TEMPLATES",
    "AccountClass",
    "AccountSyncOrchestrator",
    "AccountSyncResult",
    "AccountSyncState",
    "BalanceRefreshResult",
    "CacheInvalidator",
    "ConnectionHealth",
    "ConnectionSyncCoordinator",
    "ConnectionSyncResult",
    "IllegalStateTransition",
    "ProviderFailure",
    "StorageError",
    "SyncStore",
    "TransactionNotifier",
    "cache_tags_for_team",
    "get_classification",
]

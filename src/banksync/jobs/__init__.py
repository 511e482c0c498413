"""Background jobs."""

from __future__ import annotations

from banksync.jobs.manual_sync import (
    ManualSyncPayload,
    SyncServices,
    build_services,
    run_balance_refresh,
    run_manual_sync,
)

__all__ = [
    "ManualSyncPayload",
    "SyncServices",
    "build_services",
    "run_balance_refresh",
    "run_manual_sync",
]

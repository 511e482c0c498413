"""Manual sync job: sync one bank connection on demand.

Triggered with an event payload ``{"connectionId": ..., "teamId": ...}``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from banksync.adapters.cache.revalidate import NoopCacheInvalidator, RevalidationClient
from banksync.adapters.db.facade import DB
from banksync.adapters.db.store import SqlSyncStore
from banksync.adapters.notifications.email import (
    LogOnlyNotifier,
    ResendTransactionNotifier,
)
from banksync.config import SyncConfig
from banksync.infra.clients.gateway import ProviderGateway, RetryPolicy, Sleep
from banksync.infra.clients.provider import ProviderClient
from banksync.sync.account_sync import AccountSyncOrchestrator
from banksync.sync.connection_sync import ConnectionSyncCoordinator
from banksync.sync.ports import CacheInvalidator, TransactionNotifier
from banksync.sync.types import BalanceRefreshResult, ConnectionSyncResult


class ManualSyncPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    connection_id: str = Field(alias="connectionId", min_length=1)
    team_id: str = Field(alias="teamId", min_length=1)


@dataclass
class SyncServices:
    """Collaborators wired from config for one job run."""

    db: DB
    coordinator: ConnectionSyncCoordinator

    def close(self) -> None:
        self.db.dispose()


def build_notifier(config: SyncConfig) -> TransactionNotifier:
    if not config.notify_recipients or not config.resend_api_key:
        return LogOnlyNotifier()
    if config.notify_from:
        return ResendTransactionNotifier(
            api_key=config.resend_api_key,
            recipients=config.notify_recipients,
            from_address=config.notify_from,
        )
    return ResendTransactionNotifier(
        api_key=config.resend_api_key, recipients=config.notify_recipients
    )


def build_cache_invalidator(config: SyncConfig) -> CacheInvalidator:
    if not config.revalidate_url:
        return NoopCacheInvalidator()
    return RevalidationClient(
        url=config.revalidate_url,
        secret=config.revalidate_secret,
        timeout_seconds=config.request_timeout_seconds,
    )


def build_services(
    config: SyncConfig,
    *,
    db: DB | None = None,
    provider_client: ProviderClient | None = None,
    notifier: TransactionNotifier | None = None,
    cache: CacheInvalidator | None = None,
    sleep: Sleep = asyncio.sleep,
) -> SyncServices:
    """Wire the sync pipeline from config; any collaborator can be overridden."""
    db = db or DB(config.database_url)
    client = provider_client or ProviderClient(
        base_url=config.provider_url,
        api_key=config.provider_api_key,
        timeout_seconds=config.request_timeout_seconds,
    )
    gateway = ProviderGateway(
        client,
        retry_policy=RetryPolicy(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay_seconds,
            jitter=config.retry_jitter_seconds,
        ),
        sleep=sleep,
    )
    store = SqlSyncStore(db)
    orchestrator = AccountSyncOrchestrator(
        gateway,
        store,
        batch_size=config.batch_size,
        max_pages=config.max_pages,
    )
    coordinator = ConnectionSyncCoordinator(
        store,
        orchestrator,
        notifier or build_notifier(config),
        cache or build_cache_invalidator(config),
    )
    return SyncServices(db=db, coordinator=coordinator)


def parse_payload(payload: ManualSyncPayload | Mapping[str, Any]) -> ManualSyncPayload:
    if isinstance(payload, ManualSyncPayload):
        return payload
    return ManualSyncPayload.model_validate(payload)


async def run_manual_sync(
    payload: ManualSyncPayload | Mapping[str, Any],
    *,
    config: SyncConfig,
    services: SyncServices | None = None,
) -> ConnectionSyncResult:
    """Sync every enabled account of the connection named in ``payload``.

    Args:
        payload: Event payload with ``connectionId`` and ``teamId``
        config: Loaded sync configuration
        services: Pre-wired collaborators; built from ``config`` when omitted

    Returns:
        ConnectionSyncResult for the run

    Raises:
        pydantic.ValidationError: If the payload is malformed
        StorageError: If the connection's accounts cannot be loaded
    """
    event = parse_payload(payload)
    owned = services is None
    services = services or build_services(config)
    try:
        return await services.coordinator.sync(event.connection_id, event.team_id)
    finally:
        if owned:
            services.close()


async def run_balance_refresh(
    payload: ManualSyncPayload | Mapping[str, Any],
    *,
    config: SyncConfig,
    services: SyncServices | None = None,
) -> BalanceRefreshResult:
    """Refresh balances for the connection named in ``payload``."""
    event = parse_payload(payload)
    owned = services is None
    services = services or build_services(config)
    try:
        return await services.coordinator.refresh_balances(
            event.connection_id, event.team_id
        )
    finally:
        if owned:
            services.close()

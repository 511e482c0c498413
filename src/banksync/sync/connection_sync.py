from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

import loguru
from loguru import logger

from banksync.models.account import BankAccountWithConnection, ConnectionStatus
from banksync.models.transaction import Transaction
from banksync.sync.account_sync import AccountSyncOrchestrator
from banksync.sync.health import ConnectionHealth
from banksync.sync.logger import ConnectionSyncLogger
from banksync.sync.ports import CacheInvalidator, SyncStore, TransactionNotifier
from banksync.sync.types import (
    AccountSyncResult,
    AccountSyncState,
    BalanceRefreshResult,
    ConnectionSyncResult,
)

CACHE_TAG_TEMPLATES: tuple[str, ...] = (
    "bank_connections_{team_id}",
    "transactions_{team_id}",
    "spending_{team_id}",
    "metrics_{team_id}",
    "bank_accounts_{team_id}",
    "insights_{team_id}",
    "expenses_{team_id}",
)


def cache_tags_for_team(team_id: str) -> list[str]:
    return [template.format(team_id=team_id) for template in CACHE_TAG_TEMPLATES]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _failed_units(result: AccountSyncResult) -> int:
    # An account whose transactions never arrived counts as one failed write.
    if result.fetch_error is not None or result.error is not None:
        return result.failed_upserts + 1
    return result.failed_upserts


class ConnectionSyncCoordinator:
    """
    Syncs every enabled account of one bank connection.

    Accounts run concurrently and independently. After all of them finish
    the coordinator settles the connection status, sends at most one
    notification and invalidates the team's cached views.
    """

    def __init__(
        self,
        store: SyncStore,
        orchestrator: AccountSyncOrchestrator,
        notifier: TransactionNotifier,
        cache: CacheInvalidator,
        *,
        clock: Callable[[], datetime] = _utcnow,
        logger_instance: loguru.Logger = logger,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._notifier = notifier
        self._cache = cache
        self._clock = clock
        self._logger = ConnectionSyncLogger(logger_instance)

    async def sync(self, connection_id: str, team_id: str) -> ConnectionSyncResult:
        """Sync all enabled accounts of a connection.

        Args:
            connection_id: Bank connection to sync
            team_id: Team owning the connection

        Returns:
            ConnectionSyncResult with per-account results and totals

        Raises:
            StorageError: If the account list cannot be loaded
        """
        self._logger.sync_start(connection_id, team_id)
        accounts = await self._store.load_accounts(
            team_id=team_id, connection_id=connection_id
        )
        self._logger.accounts_loaded(connection_id, len(accounts))

        health = ConnectionHealth(connection_id)
        outcomes = await asyncio.gather(
            *(self._orchestrator.sync_account(account, health) for account in accounts),
            return_exceptions=True,
        )
        results = [
            self._as_result(account, outcome)
            for account, outcome in zip(accounts, outcomes, strict=True)
        ]

        new_transactions: list[Transaction] = [
            row for result in results for row in result.new_transactions
        ]
        sync_result = ConnectionSyncResult(
            connection_id=connection_id,
            team_id=team_id,
            success=health.healthy and all(result.success for result in results),
            total_upserts=sum(result.upserted for result in results),
            total_failed_upserts=sum(_failed_units(result) for result in results),
            accounts=results,
            new_transactions=new_transactions,
        )

        await self._settle_status(connection_id, team_id, health)
        if new_transactions:
            await self._notify(new_transactions, team_id)
        await self._invalidate(team_id)

        self._logger.sync_complete(sync_result)
        return sync_result

    async def refresh_balances(
        self, connection_id: str, team_id: str
    ) -> BalanceRefreshResult:
        """Refresh the balance of every enabled account without fetching transactions."""
        accounts = await self._store.load_accounts(
            team_id=team_id, connection_id=connection_id
        )
        self._logger.accounts_loaded(connection_id, len(accounts))

        health = ConnectionHealth(connection_id)
        outcomes = await asyncio.gather(
            *(
                self._orchestrator.refresh_balance(account, health)
                for account in accounts
            ),
            return_exceptions=True,
        )
        results = [
            self._as_result(account, outcome)
            for account, outcome in zip(accounts, outcomes, strict=True)
        ]

        await self._settle_status(connection_id, team_id, health)
        await self._invalidate(team_id)

        return BalanceRefreshResult(
            connection_id=connection_id,
            team_id=team_id,
            success=health.healthy and all(result.success for result in results),
            updated_accounts=[r.account_id for r in results if r.balance_updated],
            failed_accounts=[r.account_id for r in results if not r.success],
        )

    def _as_result(
        self,
        account: BankAccountWithConnection,
        outcome: AccountSyncResult | BaseException,
    ) -> AccountSyncResult:
        if isinstance(outcome, AccountSyncResult):
            return outcome
        if not isinstance(outcome, Exception):
            # KeyboardInterrupt, CancelledError and friends are not ours to absorb
            raise outcome
        self._logger.account_crashed(account.id, account.team_id, outcome)
        return AccountSyncResult(
            account_id=account.id,
            state=AccountSyncState.FAILED,
            history=(AccountSyncState.FAILED,),
            error=str(outcome),
        )

    async def _settle_status(
        self, connection_id: str, team_id: str, health: ConnectionHealth
    ) -> None:
        if not health.healthy:
            self._logger.connection_unhealthy(connection_id, len(health.failures))
            return
        try:
            await self._store.update_connection_status(
                connection_id,
                ConnectionStatus.CONNECTED,
                None,
                last_accessed=self._clock(),
            )
        except Exception as e:
            self._logger.side_effect_failed("mark connection connected", team_id, e)
            return
        self._logger.connection_healthy(connection_id)

    async def _notify(self, transactions: list[Transaction], team_id: str) -> None:
        try:
            await self._notifier.notify(transactions, team_id)
        except Exception as e:
            self._logger.side_effect_failed("send transaction notification", team_id, e)
            return
        self._logger.notify_sent(team_id, len(transactions))

    async def _invalidate(self, team_id: str) -> None:
        for tag in cache_tags_for_team(team_id):
            try:
                await self._cache.invalidate(tag)
            except Exception as e:
                self._logger.side_effect_failed(f"revalidate tag {tag}", team_id, e)
                continue
            self._logger.tag_invalidated(tag)

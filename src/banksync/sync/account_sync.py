from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime

import loguru
from loguru import logger

from banksync.infra.clients.gateway import ProviderGateway
from banksync.infra.clients.provider import (
    ProviderClientError,
    ProviderTransaction,
    classify_provider_error,
)
from banksync.models.account import BankAccountWithConnection
from banksync.models.transaction import Transaction
from banksync.sync.batch import process_batch
from banksync.sync.classification import AccountClass, get_classification
from banksync.sync.health import ConnectionHealth, ProviderFailure
from banksync.sync.logger import AccountSyncLogger
from banksync.sync.ports import StorageError, SyncStore
from banksync.sync.transform import transform_transaction
from banksync.sync.types import (
    AccountSyncResult,
    AccountSyncState,
    AccountSyncStateMachine,
)

BATCH_LIMIT = 500
MAX_PAGES = 50


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AccountSyncOrchestrator:
    """
    Syncs one bank account: fetch, transform, upsert, then refresh balance.

    Every failure is contained to the account being synced. Provider
    failures are reported to the run's ConnectionHealth, which decides
    whether the connection status gets overwritten.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        store: SyncStore,
        *,
        batch_size: int = BATCH_LIMIT,
        max_pages: int = MAX_PAGES,
        clock: Callable[[], datetime] = _utcnow,
        logger_instance: loguru.Logger = logger,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        self._gateway = gateway
        self._store = store
        self._batch_size = batch_size
        self._max_pages = max_pages
        self._clock = clock
        self._logger = AccountSyncLogger(logger_instance)

    async def sync_account(
        self,
        account: BankAccountWithConnection,
        health: ConnectionHealth,
    ) -> AccountSyncResult:
        """Run the full pipeline for one account.

        Args:
            account: Enabled account joined with its connection
            health: Failure bookkeeping shared by all accounts of this run

        Returns:
            AccountSyncResult ending in PERSISTED or FAILED
        """
        machine = AccountSyncStateMachine()
        result = AccountSyncResult(account_id=account.id, state=machine.state)
        account_class = get_classification(account.type)
        self._logger.account_start(account, account_class)

        try:
            fetched, next_cursor = await self._fetch_all(account, account_class)
        except ProviderClientError as e:
            result.fetch_error = e.message
            await self._record_failure(account, health, e, step="fetch")
            machine.advance(AccountSyncState.BALANCE_UPDATE)
        except Exception as e:
            self._logger.unexpected_error(account, e, step="fetch")
            result.error = str(e)
            machine.advance(AccountSyncState.BALANCE_UPDATE)
        else:
            result.fetched = len(fetched)
            result.next_cursor = next_cursor

            machine.advance(AccountSyncState.TRANSFORMING)
            rows = [
                transform_transaction(
                    txn, team_id=account.team_id, bank_account_id=account.id
                )
                for txn in fetched
            ]

            machine.advance(AccountSyncState.UPSERTING)
            await self._upsert(account, rows, result)
            machine.advance(AccountSyncState.BALANCE_UPDATE)

        fetched_ok = result.fetch_error is None and result.error is None
        cursor = result.next_cursor if fetched_ok else None
        result.balance_error = await self._update_balance(
            account, health, result, cursor=cursor
        )

        if fetched_ok and result.balance_error is None:
            machine.advance(AccountSyncState.PERSISTED)
        else:
            machine.advance(AccountSyncState.FAILED)
        return self._finish(result, machine)

    async def refresh_balance(
        self,
        account: BankAccountWithConnection,
        health: ConnectionHealth,
    ) -> AccountSyncResult:
        """Run only the balance step, leaving transactions and cursor alone."""
        machine = AccountSyncStateMachine()
        machine.advance(AccountSyncState.BALANCE_UPDATE)
        result = AccountSyncResult(account_id=account.id, state=machine.state)
        result.balance_error = await self._update_balance(
            account, health, result, cursor=None
        )
        machine.advance(
            AccountSyncState.PERSISTED
            if result.balance_error is None
            else AccountSyncState.FAILED
        )
        return self._finish(result, machine)

    def _finish(
        self, result: AccountSyncResult, machine: AccountSyncStateMachine
    ) -> AccountSyncResult:
        result.state = machine.state
        result.history = machine.history
        self._logger.account_complete(result)
        return result

    async def _fetch_all(
        self,
        account: BankAccountWithConnection,
        account_class: AccountClass,
    ) -> tuple[list[ProviderTransaction], str | None]:
        """Page through the provider starting at the connection's cursor.

        An empty stored cursor means an initial, full-history sync. Returns
        the fetched records and the cursor to resume from next time.
        """
        connection = account.bank_connection
        cursor = connection.last_cursor_sync or None
        latest = cursor is not None
        fetched: list[ProviderTransaction] = []

        for page_num in range(1, self._max_pages + 1):
            page = await self._gateway.list_transactions(
                provider=connection.provider,
                account_id=account.account_id,
                account_type=account_class.request_value,
                access_token=connection.access_token,
                cursor=cursor,
                latest=latest,
            )
            fetched.extend(page.data)
            self._logger.page_fetched(
                account.id, len(page.data), page_num, page.has_more
            )
            if page.cursor:
                cursor = page.cursor
            if not page.has_more:
                break
        else:
            self._logger.page_limit_reached(account.id, self._max_pages)

        return fetched, cursor

    async def _upsert(
        self,
        account: BankAccountWithConnection,
        rows: list[Transaction],
        result: AccountSyncResult,
    ) -> None:
        async def upsert_batch(batch: Sequence[Transaction]) -> list[Transaction]:
            self._logger.batch_start(account.id, len(batch))
            return await self._store.upsert_transactions(batch)

        report = await process_batch(rows, self._batch_size, upsert_batch)
        for failure in report.failures:
            self._logger.batch_failed(account, failure.index, failure.size, failure.error)

        result.upserted = report.processed_items
        result.failed_upserts = report.failed_items
        result.failed_batches = report.failed_batches
        result.new_transactions = [row for inserted in report.results for row in inserted]
        self._logger.upsert_complete(
            account.id,
            result.upserted,
            len(result.new_transactions),
            result.failed_upserts,
        )

    async def _update_balance(
        self,
        account: BankAccountWithConnection,
        health: ConnectionHealth,
        result: AccountSyncResult,
        *,
        cursor: str | None,
    ) -> str | None:
        """Refresh the balance and stamp the connection.

        Returns an error message on failure, None on success. On failure the
        prior balance and cursor are left untouched.
        """
        connection = account.bank_connection
        try:
            balance = await self._gateway.get_balance(
                provider=connection.provider,
                account_id=account.account_id,
                access_token=connection.access_token,
            )
        except ProviderClientError as e:
            await self._record_failure(account, health, e, step="balance")
            return e.message
        except Exception as e:
            self._logger.unexpected_error(account, e, step="balance")
            return str(e)

        try:
            if balance.amount is None:
                self._logger.balance_missing(account.id)
            else:
                await self._store.update_account_balance(account.id, balance.amount)
                result.balance_updated = True
                self._logger.balance_updated(account.id, balance.amount)

            await self._store.mark_connection_synced(
                connection.id, last_accessed=self._clock(), cursor=cursor
            )
        except StorageError as e:
            self._logger.storage_failed(account, "balance update", e)
            return str(e)
        except Exception as e:
            self._logger.unexpected_error(account, e, step="balance update")
            return str(e)
        return None

    async def _record_failure(
        self,
        account: BankAccountWithConnection,
        health: ConnectionHealth,
        error: ProviderClientError,
        *,
        step: str,
    ) -> None:
        kind = classify_provider_error(error)
        self._logger.provider_failed(account, kind, step, error.message)
        failure = ProviderFailure(account_id=account.id, kind=kind, message=error.message)
        connection_id = account.bank_connection.id
        if not health.record(failure):
            self._logger.status_skipped(connection_id, kind)
            return
        # Writes are serialized; a failure that lost precedence while waiting
        # for the lock is not written.
        async with health.status_lock:
            if not health.is_worst(failure):
                self._logger.status_skipped(connection_id, kind)
                return
            try:
                await self._store.update_connection_status(
                    connection_id, failure.status, error.message
                )
            except StorageError as e:
                self._logger.storage_failed(account, "connection status update", e)
                return
        self._logger.status_written(connection_id, failure.status)

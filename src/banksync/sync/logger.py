"""Logging for account and connection syncs.

Keeps log statements out of the orchestration code.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import loguru
from loguru import logger

if TYPE_CHECKING:
    from banksync.infra.clients.provider import ProviderErrorKind
    from banksync.models.account import BankAccountWithConnection, ConnectionStatus
    from banksync.sync.classification import AccountClass
    from banksync.sync.types import AccountSyncResult, ConnectionSyncResult


class AccountSyncLogger:
    """Handles all logging for AccountSyncOrchestrator."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def account_start(
        self, account: BankAccountWithConnection, account_class: AccountClass
    ) -> None:
        """Log start of an account sync."""
        self._logger.bind(
            account_id=account.id,
            team_id=account.team_id,
            account_type=account.type,
            account_class=account_class.value,
        ).info(
            "Processing account {} (type: {}, classified as {})",
            account.id,
            account.type,
            account_class.value,
        )

    def page_fetched(
        self, account_id: str, count: int, page_num: int, has_more: bool
    ) -> None:
        """Log one page of transactions fetched from the provider."""
        self._logger.bind(
            account_id=account_id, count=count, page=page_num, has_more=has_more
        ).info(
            "Retrieved {} transactions for account {} (page {})",
            count,
            account_id,
            page_num,
        )

    def page_limit_reached(self, account_id: str, max_pages: int) -> None:
        """Log that paging stopped at the page limit."""
        self._logger.bind(account_id=account_id, max_pages=max_pages).warning(
            "Stopped paging account {} after {} pages; resuming next run",
            account_id,
            max_pages,
        )

    def provider_failed(
        self,
        account: BankAccountWithConnection,
        kind: ProviderErrorKind,
        step: str,
        message: str,
    ) -> None:
        """Log a provider call that failed."""
        self._logger.bind(
            account_id=account.id,
            team_id=account.team_id,
            kind=kind.value,
            step=step,
        ).error(
            "Provider {} failed for account {} ({}): {}",
            step,
            account.id,
            kind.value,
            message,
        )

    def status_written(self, connection_id: str, status: ConnectionStatus) -> None:
        """Log a connection status written after a provider failure."""
        self._logger.bind(connection_id=connection_id, status=status.value).info(
            "Bank connection {} marked {}", connection_id, status.value
        )

    def status_skipped(self, connection_id: str, kind: ProviderErrorKind) -> None:
        """Log a status write skipped for a lower-precedence failure."""
        self._logger.bind(connection_id=connection_id, kind=kind.value).debug(
            "Keeping higher-precedence status on connection {} over {} failure",
            connection_id,
            kind.value,
        )

    def batch_start(self, account_id: str, size: int) -> None:
        """Log start of a batch upsert."""
        self._logger.bind(account_id=account_id, size=size).debug(
            "Upserting batch of {} transactions for account {}", size, account_id
        )

    def batch_failed(
        self, account: BankAccountWithConnection, index: int, size: int, error: Exception
    ) -> None:
        """Log a failed batch upsert."""
        self._logger.bind(
            account_id=account.id,
            team_id=account.team_id,
            batch=index,
            size=size,
        ).error(
            "Error upserting batch {} ({} transactions) for account {}: {}",
            index,
            size,
            account.id,
            error,
        )

    def upsert_complete(
        self, account_id: str, upserted: int, inserted: int, failed: int
    ) -> None:
        """Log upsert totals for an account."""
        self._logger.bind(
            account_id=account_id, upserted=upserted, inserted=inserted, failed=failed
        ).info(
            "Upserted {} transactions for account {} ({} new, {} failed)",
            upserted,
            account_id,
            inserted,
            failed,
        )

    def balance_updated(self, account_id: str, amount: object) -> None:
        """Log a stored balance."""
        self._logger.bind(account_id=account_id).info(
            "Balance updated for account {}: {}", account_id, amount
        )

    def balance_missing(self, account_id: str) -> None:
        """Log a balance response without an amount."""
        self._logger.bind(account_id=account_id).warning(
            "Provider returned no balance amount for account {}", account_id
        )

    def storage_failed(
        self, account: BankAccountWithConnection, step: str, error: Exception
    ) -> None:
        """Log a storage error."""
        self._logger.bind(
            account_id=account.id, team_id=account.team_id, step=step
        ).error("Storage error during {} for account {}: {}", step, account.id, error)

    def unexpected_error(
        self,
        account: BankAccountWithConnection,
        error: BaseException,
        *,
        step: str,
    ) -> None:
        """Log an unexpected error during one step of an account sync."""
        self._logger.bind(account_id=account.id, team_id=account.team_id, step=step).opt(
            exception=error
        ).error(
            "Unexpected error during {} for account {}: {}", step, account.id, error
        )

    def account_complete(self, result: AccountSyncResult) -> None:
        """Log completion of an account sync."""
        self._logger.bind(
            account_id=result.account_id,
            state=result.state.value,
            upserted=result.upserted,
            failed_upserts=result.failed_upserts,
        ).info(
            "Finished account {} in state {}", result.account_id, result.state.value
        )


class ConnectionSyncLogger:
    """Handles all logging for ConnectionSyncCoordinator."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def sync_start(self, connection_id: str, team_id: str) -> None:
        """Log start of a connection sync."""
        self._logger.bind(connection_id=connection_id, team_id=team_id).info(
            "Starting sync for connection {} (team {})", connection_id, team_id
        )

    def accounts_loaded(self, connection_id: str, count: int) -> None:
        """Log the number of enabled accounts loaded."""
        self._logger.bind(connection_id=connection_id, count=count).info(
            "Found {} enabled bank accounts for connection {}", count, connection_id
        )

    def account_crashed(self, account_id: str, team_id: str, error: BaseException) -> None:
        """Log an account task that raised."""
        self._logger.bind(account_id=account_id, team_id=team_id).opt(
            exception=error
        ).error("Account {} failed unexpectedly: {}", account_id, error)

    def connection_healthy(self, connection_id: str) -> None:
        """Log a connection marked connected."""
        self._logger.bind(connection_id=connection_id).info(
            "Bank connection {} marked connected", connection_id
        )

    def connection_unhealthy(self, connection_id: str, failures: int) -> None:
        """Log a connection left with its failure status."""
        self._logger.bind(connection_id=connection_id, failures=failures).warning(
            "Leaving bank connection {} status after {} provider failures",
            connection_id,
            failures,
        )

    def notify_sent(self, team_id: str, count: int) -> None:
        """Log a sent new-transactions notification."""
        self._logger.bind(team_id=team_id, count=count).info(
            "Sent notification for {} new transactions", count
        )

    def side_effect_failed(self, what: str, team_id: str, error: Exception) -> None:
        """Log a failed post-sync side effect."""
        self._logger.bind(team_id=team_id, what=what).error(
            "Failed to {} for team {}: {}", what, team_id, error
        )

    def tag_invalidated(self, tag: str) -> None:
        """Log a revalidated cache tag."""
        self._logger.bind(tag=tag).debug("Revalidated tag {}", tag)

    def sync_complete(self, result: ConnectionSyncResult) -> None:
        """Log completion of a connection sync."""
        self._logger.bind(
            connection_id=result.connection_id,
            team_id=result.team_id,
            success=result.success,
            total_upserts=result.total_upserts,
            total_failed_upserts=result.total_failed_upserts,
        ).info(
            "Sync for connection {} finished: {} upserted, {} failed, success={}",
            result.connection_id,
            result.total_upserts,
            result.total_failed_upserts,
            result.success,
        )

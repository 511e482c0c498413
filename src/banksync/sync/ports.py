"""Ports the sync pipeline depends on."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from banksync.models.account import BankAccountWithConnection, ConnectionStatus
from banksync.models.transaction import Transaction


class StorageError(Exception):
    """Base error for store failures."""


class SyncStore(Protocol):
    """Persistence used by the sync pipeline."""

    async def load_accounts(
        self, *, team_id: str, connection_id: str
    ) -> list[BankAccountWithConnection]:
        """Return the enabled accounts of a connection, joined with it."""

    async def upsert_transactions(
        self, rows: Sequence[Transaction]
    ) -> list[Transaction]:
        """Insert rows, ignoring ``internal_id`` conflicts.

        Returns the rows that were actually inserted.
        """

    async def update_account_balance(self, account_id: str, balance: Decimal) -> None:
        """Store the last-known balance of an account."""

    async def update_connection_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        error_details: str | None,
        *,
        last_accessed: datetime | None = None,
    ) -> None:
        """Write the user-visible health of a connection."""

    async def mark_connection_synced(
        self,
        connection_id: str,
        *,
        last_accessed: datetime,
        cursor: str | None = None,
    ) -> None:
        """Stamp ``last_accessed`` and, when given, persist the sync cursor."""


class TransactionNotifier(Protocol):
    async def notify(self, transactions: Sequence[Transaction], team_id: str) -> None:
        """Tell the team about newly synced transactions."""


class CacheInvalidator(Protocol):
    async def invalidate(self, tag: str) -> None:
        """Drop cached read views tagged with ``tag``."""

"""SyncStore backed by the SQLAlchemy DB facade.

The facade is synchronous; each call runs in a worker thread so storage
calls suspend the event loop like provider calls do.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal

from banksync.adapters.db.facade import DB
from banksync.models.account import BankAccountWithConnection, ConnectionStatus
from banksync.models.transaction import Transaction


class SqlSyncStore:
    def __init__(self, db: DB) -> None:
        self._db = db

    async def load_accounts(
        self, *, team_id: str, connection_id: str
    ) -> list[BankAccountWithConnection]:
        return await asyncio.to_thread(
            self._db.load_enabled_accounts,
            team_id=team_id,
            connection_id=connection_id,
        )

    async def upsert_transactions(
        self, rows: Sequence[Transaction]
    ) -> list[Transaction]:
        return await asyncio.to_thread(self._db.upsert_transactions, rows)

    async def update_account_balance(self, account_id: str, balance: Decimal) -> None:
        await asyncio.to_thread(self._db.update_account_balance, account_id, balance)

    async def update_connection_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        error_details: str | None,
        *,
        last_accessed: datetime | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._db.update_connection_status,
            connection_id,
            status,
            error_details,
            last_accessed=last_accessed,
        )

    async def mark_connection_synced(
        self,
        connection_id: str,
        *,
        last_accessed: datetime,
        cursor: str | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._db.mark_connection_synced,
            connection_id,
            last_accessed=last_accessed,
            cursor=cursor,
        )

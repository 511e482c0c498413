"""SQL persistence for bank connections, accounts and transactions."""

from __future__ import annotations

from banksync.adapters.db.facade import DB
from banksync.adapters.db.models import (
    BankAccount,
    BankConnection,
    Base,
    TransactionRow,
)
from banksync.adapters.db.store import SqlSyncStore

__all__ = [
    "DB",
    "BankAccount",
    "BankConnection",
    "Base",
    "SqlSyncStore",
    "TransactionRow",
]

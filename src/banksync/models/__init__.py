"""Domain types shared across the sync pipeline."""

from __future__ import annotations

from banksync.models.account import (
    BankAccountWithConnection,
    BankConnectionRef,
    ConnectionStatus,
)
from banksync.models.transaction import (
    Transaction,
    TransactionCategory,
    TransactionMethod,
    TransactionStatus,
)

__all__ = [
    "BankAccountWithConnection",
    "BankConnectionRef",
    "ConnectionStatus",
    "Transaction",
    "TransactionCategory",
    "TransactionMethod",
    "TransactionStatus",
]

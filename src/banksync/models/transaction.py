from __future__ import annotations

import datetime as dt
from decimal import Decimal
import enum
from typing import TypedDict


class TransactionMethod(enum.Enum):
    PAYMENT = "payment"
    CARD_PURCHASE = "card_purchase"
    CARD_ATM = "card_atm"
    TRANSFER = "transfer"
    OTHER = "other"


class TransactionCategory(enum.Enum):
    INCOME = "income"
    TRANSFER = "transfer"


class TransactionStatus(enum.Enum):
    POSTED = "posted"
    PENDING = "pending"


class Transaction(TypedDict):
    """
    Canonical transaction row as written to the ``transactions`` table.

    Enum-typed fields hold the enum's ``value`` so rows can be handed to the
    store unchanged. ``internal_id`` is the idempotence key: the same upstream
    record under the same team and account always yields the same value.
    """

    internal_id: str
    id: str
    team_id: str
    bank_account_id: str
    date: dt.date
    amount: Decimal
    currency: str
    name: str
    description: str | None
    method: str
    category: str | None
    status: str
    balance: Decimal | None
    recurring: bool

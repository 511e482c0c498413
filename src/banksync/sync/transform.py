from __future__ import annotations

import hashlib

from banksync.infra.clients.provider import ProviderTransaction
from banksync.models.transaction import (
    Transaction,
    TransactionCategory,
    TransactionMethod,
    TransactionStatus,
)

NO_NAME = "No information"

_METHOD_ALIASES: dict[str, TransactionMethod] = {
    "payment": TransactionMethod.PAYMENT,
    "bankgiro payment": TransactionMethod.PAYMENT,
    "incoming foreign payment": TransactionMethod.PAYMENT,
    "card_purchase": TransactionMethod.CARD_PURCHASE,
    "card purchase": TransactionMethod.CARD_PURCHASE,
    "card foreign purchase": TransactionMethod.CARD_PURCHASE,
    "card_atm": TransactionMethod.CARD_ATM,
    "card atm": TransactionMethod.CARD_ATM,
    "atm": TransactionMethod.CARD_ATM,
    "transfer": TransactionMethod.TRANSFER,
}


def map_transaction_method(method: str | None) -> TransactionMethod:
    if not method:
        return TransactionMethod.OTHER
    return _METHOD_ALIASES.get(method.strip().lower(), TransactionMethod.OTHER)


def map_transaction_category(
    transaction: ProviderTransaction, method: TransactionMethod
) -> TransactionCategory | None:
    if transaction.amount > 0:
        return TransactionCategory.INCOME
    if method is TransactionMethod.TRANSFER:
        return TransactionCategory.TRANSFER
    return None


def map_transaction_status(status: str | None) -> TransactionStatus:
    if status and status.strip().lower() == TransactionStatus.PENDING.value:
        return TransactionStatus.PENDING
    return TransactionStatus.POSTED


def build_internal_id(
    transaction: ProviderTransaction, *, team_id: str, bank_account_id: str
) -> str:
    """Derive the idempotence key for an upstream record.

    Keyed on the upstream id when there is one, otherwise on the record's
    content, always scoped to the team and bank account.
    """
    if transaction.id:
        identity = ["id", transaction.id]
    else:
        identity = [
            "content",
            transaction.date.isoformat(),
            str(transaction.amount.normalize()),
            transaction.currency.upper(),
            transaction.name or "",
            transaction.description or "",
        ]
    material = "\x1f".join([team_id, bank_account_id, *identity])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def _clean(text: str | None) -> str | None:
    if text is None:
        return None
    stripped = " ".join(text.split())
    return stripped or None


def transform_transaction(
    transaction: ProviderTransaction,
    *,
    team_id: str,
    bank_account_id: str,
) -> Transaction:
    """Convert a provider transaction into the canonical row.

    Pure and deterministic, so re-running a sync over the same window produces
    identical rows and identical ``internal_id`` values.
    """
    method = map_transaction_method(transaction.method)
    category = map_transaction_category(transaction, method)
    internal_id = build_internal_id(
        transaction, team_id=team_id, bank_account_id=bank_account_id
    )

    description = _clean(transaction.description)
    name = _clean(transaction.name) or description or NO_NAME
    if description == name:
        description = None

    return {
        "internal_id": internal_id,
        "id": transaction.id or internal_id,
        "team_id": team_id,
        "bank_account_id": bank_account_id,
        "date": transaction.date,
        "amount": transaction.amount,
        "currency": transaction.currency.upper(),
        "name": name,
        "description": description,
        "method": method.value,
        "category": category.value if category is not None else None,
        "status": map_transaction_status(transaction.status).value,
        "balance": transaction.balance,
        "recurring": transaction.recurring,
    }

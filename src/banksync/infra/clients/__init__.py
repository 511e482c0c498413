"""Clients for the upstream financial-data provider."""

from __future__ import annotations

from banksync.infra.clients.gateway import ProviderGateway, RetryPolicy
from banksync.infra.clients.provider import (
    Balance,
    ProviderClient,
    ProviderClientError,
    ProviderErrorKind,
    ProviderTransaction,
    TransactionsPage,
    classify_provider_error,
    is_rate_limited,
)

__all__ = [
    "Balance",
    "ProviderClient",
    "ProviderClientError",
    "ProviderErrorKind",
    "ProviderGateway",
    "ProviderTransaction",
    "RetryPolicy",
    "TransactionsPage",
    "classify_provider_error",
    "is_rate_limited",
]

"""Connection health bookkeeping for one sync run.

Accounts of the same connection fail concurrently and each wants to write
the connection status. Instead of last-writer-wins, failures are ranked and
only a failure at least as severe as the worst one seen so far is written.
Writes are serialized, so the final status does not depend on completion
order or on how long each write takes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import assert_never

from banksync.infra.clients.provider import ProviderErrorKind
from banksync.models.account import ConnectionStatus

FAILURE_PRECEDENCE: dict[ProviderErrorKind, int] = {
    ProviderErrorKind.AUTHORIZATION: 3,
    ProviderErrorKind.RATE_LIMIT: 2,
    ProviderErrorKind.OTHER: 1,
}


def status_for_failure(kind: ProviderErrorKind) -> ConnectionStatus:
    if kind is ProviderErrorKind.AUTHORIZATION:
        return ConnectionStatus.DISCONNECTED
    if kind is ProviderErrorKind.RATE_LIMIT:
        return ConnectionStatus.UNKNOWN
    if kind is ProviderErrorKind.OTHER:
        return ConnectionStatus.UNKNOWN
    assert_never(kind)


@dataclass(frozen=True, slots=True)
class ProviderFailure:
    account_id: str
    kind: ProviderErrorKind
    message: str

    @property
    def status(self) -> ConnectionStatus:
        return status_for_failure(self.kind)


class ConnectionHealth:
    """Worst provider failure recorded during one connection sync.

    Only touched from the event loop thread, so ``record`` needs no lock.
    Store writes of the status are awaited, so they go through
    ``status_lock`` and re-check ``is_worst`` once inside it.
    """

    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.status_lock = asyncio.Lock()
        self._worst: ProviderFailure | None = None
        self._failures: list[ProviderFailure] = []

    @property
    def worst(self) -> ProviderFailure | None:
        return self._worst

    @property
    def failures(self) -> tuple[ProviderFailure, ...]:
        return tuple(self._failures)

    @property
    def healthy(self) -> bool:
        return not self._failures

    def record(self, failure: ProviderFailure) -> bool:
        """Record a failure; return True when it should be written to the store."""
        self._failures.append(failure)
        if self._worst is not None and (
            FAILURE_PRECEDENCE[failure.kind] < FAILURE_PRECEDENCE[self._worst.kind]
        ):
            return False
        self._worst = failure
        return True

    def is_worst(self, failure: ProviderFailure) -> bool:
        """True while ``failure`` is still the one the connection should show."""
        return self._worst is failure

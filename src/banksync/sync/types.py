"""States and results of account and connection syncs."""

from __future__ import annotations

from dataclasses import dataclass, field
import enum

from banksync.models.transaction import Transaction


class IllegalStateTransition(RuntimeError):
    """An account sync tried to move between states that are not adjacent."""


class AccountSyncState(enum.Enum):
    FETCHING = "fetching"
    TRANSFORMING = "transforming"
    UPSERTING = "upserting"
    BALANCE_UPDATE = "balance_update"
    PERSISTED = "persisted"
    FAILED = "failed"


# A failed fetch skips straight to the balance step.
ALLOWED_TRANSITIONS: dict[AccountSyncState, frozenset[AccountSyncState]] = {
    AccountSyncState.FETCHING: frozenset(
        {
            AccountSyncState.TRANSFORMING,
            AccountSyncState.BALANCE_UPDATE,
            AccountSyncState.FAILED,
        }
    ),
    AccountSyncState.TRANSFORMING: frozenset({AccountSyncState.UPSERTING}),
    AccountSyncState.UPSERTING: frozenset({AccountSyncState.BALANCE_UPDATE}),
    AccountSyncState.BALANCE_UPDATE: frozenset(
        {AccountSyncState.PERSISTED, AccountSyncState.FAILED}
    ),
    AccountSyncState.PERSISTED: frozenset(),
    AccountSyncState.FAILED: frozenset(),
}


class AccountSyncStateMachine:
    """Tracks the current state of one account sync and its history."""

    def __init__(self) -> None:
        self._history: list[AccountSyncState] = [AccountSyncState.FETCHING]

    @property
    def state(self) -> AccountSyncState:
        return self._history[-1]

    @property
    def history(self) -> tuple[AccountSyncState, ...]:
        return tuple(self._history)

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.state]

    def advance(self, target: AccountSyncState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise IllegalStateTransition(
                f"Cannot move account sync from {self.state.value} to {target.value}"
            )
        self._history.append(target)


@dataclass
class AccountSyncResult:
    """Outcome of syncing a single bank account."""

    account_id: str
    state: AccountSyncState
    history: tuple[AccountSyncState, ...] = ()
    fetched: int = 0
    upserted: int = 0
    failed_upserts: int = 0
    failed_batches: int = 0
    new_transactions: list[Transaction] = field(default_factory=list)
    next_cursor: str | None = None
    balance_updated: bool = False
    fetch_error: str | None = None
    balance_error: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.state is AccountSyncState.PERSISTED


@dataclass
class ConnectionSyncResult:
    """Aggregate outcome of syncing every enabled account of a connection."""

    connection_id: str
    team_id: str
    success: bool
    total_upserts: int
    total_failed_upserts: int
    accounts: list[AccountSyncResult] = field(default_factory=list)
    new_transactions: list[Transaction] = field(default_factory=list)

    @property
    def failed_accounts(self) -> list[str]:
        return [result.account_id for result in self.accounts if not result.success]


@dataclass
class BalanceRefreshResult:
    connection_id: str
    team_id: str
    success: bool
    updated_accounts: list[str] = field(default_factory=list)
    failed_accounts: list[str] = field(default_factory=list)

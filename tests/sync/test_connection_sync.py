"""Tests for ConnectionSyncCoordinator."""

from __future__ import annotations

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any

import pytest

from banksync.infra.clients.gateway import ProviderGateway
from banksync.infra.clients.provider import (
    Balance,
    ProviderClientError,
    TransactionsPage,
)
from banksync.models.account import BankAccountWithConnection, ConnectionStatus
from banksync.sync.account_sync import AccountSyncOrchestrator
from banksync.sync.connection_sync import (
    ConnectionSyncCoordinator,
    cache_tags_for_team,
)
from banksync.sync.health import ConnectionHealth
from banksync.sync.ports import StorageError
from banksync.sync.types import AccountSyncResult, AccountSyncState
from tests.fixtures.fakes import (
    FIXED_NOW,
    FakeProviderClient,
    FakeStore,
    RecordingCache,
    RecordingNotifier,
    SleepRecorder,
    auth_error,
    fixed_clock,
    make_account,
    make_page,
    make_provider_txn,
    rate_limit_error,
)

EXPECTED_TAGS = [
    "bank_connections_team_1",
    "transactions_team_1",
    "spending_team_1",
    "metrics_team_1",
    "bank_accounts_team_1",
    "insights_team_1",
    "expenses_team_1",
]


class CrashingOrchestrator(AccountSyncOrchestrator):
    """Raises an unexpected error for the configured accounts."""

    def __init__(self, *args: object, crash_for: set[str], **kwargs: object) -> None:
        super().__init__(*args, **kwargs)  # type: ignore[arg-type]
        self._crash_for = crash_for

    async def sync_account(
        self, account: BankAccountWithConnection, health: ConnectionHealth
    ) -> AccountSyncResult:
        if account.id in self._crash_for:
            raise RuntimeError(f"unexpected failure in {account.id}")
        return await super().sync_account(account, health)


class DelayedProviderClient(FakeProviderClient):
    """Waits before answering ``list_transactions`` for the configured accounts."""

    def __init__(self, *, delays: dict[str, float], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._delays = delays

    async def list_transactions(self, **kwargs: Any) -> TransactionsPage:  # type: ignore[override]
        await asyncio.sleep(self._delays.get(kwargs["account_id"], 0))
        return await super().list_transactions(**kwargs)


class SlowStatusStore(FakeStore):
    """Takes longer to write some connection statuses than others."""

    def __init__(
        self,
        accounts: list[BankAccountWithConnection],
        *,
        delays: dict[ConnectionStatus, float],
    ) -> None:
        super().__init__(accounts)
        self._delays = delays

    async def update_connection_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        error_details: str | None,
        *,
        last_accessed: datetime | None = None,
    ) -> None:
        await asyncio.sleep(self._delays.get(status, 0))
        await super().update_connection_status(
            connection_id, status, error_details, last_accessed=last_accessed
        )


def create_coordinator(
    client: FakeProviderClient,
    store: FakeStore,
    *,
    notifier: RecordingNotifier | None = None,
    cache: RecordingCache | None = None,
    crash_for: set[str] | None = None,
) -> tuple[ConnectionSyncCoordinator, RecordingNotifier, RecordingCache]:
    notifier = notifier or RecordingNotifier()
    cache = cache or RecordingCache()
    gateway = ProviderGateway(client, sleep=SleepRecorder())  # type: ignore[arg-type]
    orchestrator = CrashingOrchestrator(
        gateway,
        store,
        clock=fixed_clock,
        crash_for=crash_for or set(),
    )
    coordinator = ConnectionSyncCoordinator(
        store,  # type: ignore[arg-type]
        orchestrator,
        notifier,
        cache,
        clock=fixed_clock,
    )
    return coordinator, notifier, cache


def test_cache_tags_for_team() -> None:
    assert cache_tags_for_team("team_1") == EXPECTED_TAGS


class TestSync:
    def test_one_account_rate_limited_one_succeeds(self) -> None:
        """
        A1 (depository) returns 3 transactions; A2 (credit) is rate limited
        on every attempt.

        Verify: A1 persisted and notified, A2 counted as failed, connection
        left unknown with A2's error.
        """
        # input
        a1 = make_account("a1", type="depository")
        a2 = make_account("a2", type="credit")
        client = FakeProviderClient(
            pages={
                "ext_a1": [
                    make_page(
                        [make_provider_txn(f"txn_{i}") for i in range(3)],
                        cursor="a1_cursor",
                    )
                ],
                "ext_a2": [rate_limit_error() for _ in range(5)],
            },
            balances={"ext_a1": Balance(amount=Decimal("500.00"), currency="USD")},
        )
        store = FakeStore([a1, a2])
        coordinator, notifier, cache = create_coordinator(client, store)

        # act
        result = asyncio.run(coordinator.sync("conn_1", "team_1"))

        # assert
        assert not result.success
        assert result.total_upserts == 3
        assert result.total_failed_upserts == 1
        assert result.failed_accounts == ["a2"]
        assert store.balances["a1"] == Decimal("500.00")
        assert store.status_of("conn_1") == (
            ConnectionStatus.UNKNOWN,
            "Too many requests",
        )
        assert len(client.calls_for("ext_a2")) == 5
        assert len(notifier.calls) == 1
        notified, team_id = notifier.calls[0]
        assert team_id == "team_1"
        assert sorted(txn["id"] for txn in notified) == ["txn_0", "txn_1", "txn_2"]
        assert cache.tags == EXPECTED_TAGS

    def test_all_accounts_succeed_marks_connected(self) -> None:
        a1 = make_account("a1")
        client = FakeProviderClient(
            pages={"ext_a1": [make_page([make_provider_txn("txn_1")], cursor="c")]}
        )
        store = FakeStore([a1])
        coordinator, notifier, _ = create_coordinator(client, store)

        result = asyncio.run(coordinator.sync("conn_1", "team_1"))

        assert result.success
        assert result.failed_accounts == []
        assert store.status_updates == [("conn_1", ConnectionStatus.CONNECTED, None)]
        assert store.last_accessed["conn_1"] == FIXED_NOW
        assert len(notifier.calls) == 1

    def test_auth_failure_wins_over_rate_limit(self) -> None:
        accounts = [make_account(f"a{i}") for i in range(1, 4)]
        client = FakeProviderClient(
            pages={
                "ext_a1": [rate_limit_error() for _ in range(5)],
                "ext_a2": [auth_error()],
                "ext_a3": [rate_limit_error() for _ in range(5)],
            }
        )
        store = FakeStore(accounts)
        coordinator, _, _ = create_coordinator(client, store)

        result = asyncio.run(coordinator.sync("conn_1", "team_1"))

        assert not result.success
        assert store.status_of("conn_1") == (
            ConnectionStatus.DISCONNECTED,
            "The login details of this item have changed",
        )
        assert result.failed_accounts == ["a1", "a2", "a3"]

    def test_unexpected_error_is_isolated_to_one_account(self) -> None:
        a1 = make_account("a1")
        a2 = make_account("a2")
        client = FakeProviderClient(
            pages={"ext_a2": [make_page([make_provider_txn("txn_1")])]}
        )
        store = FakeStore([a1, a2])
        coordinator, notifier, cache = create_coordinator(
            client, store, crash_for={"a1"}
        )

        result = asyncio.run(coordinator.sync("conn_1", "team_1"))

        assert result.failed_accounts == ["a1"]
        assert result.accounts[0].state is AccountSyncState.FAILED
        assert result.accounts[0].error == "unexpected failure in a1"
        assert result.accounts[1].state is AccountSyncState.PERSISTED
        assert result.total_upserts == 1
        assert result.total_failed_upserts == 1
        assert not result.success
        assert len(notifier.calls) == 1
        assert cache.tags == EXPECTED_TAGS

    def test_slow_lower_precedence_write_does_not_win(self) -> None:
        """
        A1 fails with a server error at once but its status write is slow;
        A2 hits an auth error shortly after and its write is fast.

        Verify: the connection ends disconnected with A2's error.
        """
        # input
        a1 = make_account("a1")
        a2 = make_account("a2")
        client = DelayedProviderClient(
            pages={
                "ext_a1": [ProviderClientError("Internal error", status=500)],
                "ext_a2": [auth_error()],
            },
            delays={"ext_a2": 0.01},
        )
        store = SlowStatusStore(
            [a1, a2], delays={ConnectionStatus.UNKNOWN: 0.05}
        )
        coordinator, _, _ = create_coordinator(client, store)

        # act
        result = asyncio.run(coordinator.sync("conn_1", "team_1"))

        # assert
        assert not result.success
        assert store.status_of("conn_1") == (
            ConnectionStatus.DISCONNECTED,
            "The login details of this item have changed",
        )
        assert store.status_updates[-1][1] is ConnectionStatus.DISCONNECTED

    def test_unexpected_balance_error_still_notifies_inserted_rows(self) -> None:
        a1 = make_account("a1")

        class BrokenBalanceClient(FakeProviderClient):
            async def get_balance(self, **kwargs: object) -> Balance:  # type: ignore[override]
                raise ValueError("unexpected balance payload")

        client = BrokenBalanceClient(
            pages={
                "ext_a1": [make_page([make_provider_txn(f"txn_{i}") for i in range(3)])]
            }
        )
        store = FakeStore([a1])
        coordinator, notifier, _ = create_coordinator(client, store)

        result = asyncio.run(coordinator.sync("conn_1", "team_1"))

        assert not result.success
        assert result.failed_accounts == ["a1"]
        assert result.total_upserts == 3
        assert len(result.new_transactions) == 3
        assert len(notifier.calls) == 1
        assert len(notifier.calls[0][0]) == 3

    def test_rerun_sends_no_notification(self) -> None:
        txns = [make_provider_txn(f"txn_{i}") for i in range(2)]
        client = FakeProviderClient(
            pages={"ext_a1": [make_page(txns), make_page(txns)]}
        )
        store = FakeStore([make_account("a1")])
        coordinator, notifier, _ = create_coordinator(client, store)

        first = asyncio.run(coordinator.sync("conn_1", "team_1"))
        second = asyncio.run(coordinator.sync("conn_1", "team_1"))

        assert len(first.new_transactions) == 2
        assert second.total_upserts == 2
        assert second.new_transactions == []
        assert len(notifier.calls) == 1
        assert len(store.rows) == 2

    def test_no_accounts(self) -> None:
        store = FakeStore([make_account("a1", connection_id="other")])
        coordinator, notifier, cache = create_coordinator(FakeProviderClient(), store)

        result = asyncio.run(coordinator.sync("conn_1", "team_1"))

        assert result.success
        assert result.accounts == []
        assert notifier.calls == []
        assert cache.tags == EXPECTED_TAGS

    def test_other_teams_accounts_are_not_synced(self) -> None:
        mine = make_account("a1")
        theirs = make_account("b1", team_id="team_2")
        client = FakeProviderClient()
        coordinator, _, _ = create_coordinator(client, FakeStore([mine, theirs]))

        result = asyncio.run(coordinator.sync("conn_1", "team_1"))

        assert [r.account_id for r in result.accounts] == ["a1"]
        assert client.calls_for("ext_b1") == []

    def test_account_load_failure_is_fatal(self) -> None:
        store = FakeStore(fail_load=True)
        coordinator, notifier, cache = create_coordinator(FakeProviderClient(), store)

        with pytest.raises(StorageError):
            asyncio.run(coordinator.sync("conn_1", "team_1"))

        assert notifier.calls == []
        assert cache.tags == []

    def test_notifier_and_cache_failures_are_swallowed(self) -> None:
        client = FakeProviderClient(
            pages={"ext_a1": [make_page([make_provider_txn("txn_1")])]}
        )
        store = FakeStore([make_account("a1")])
        coordinator, notifier, cache = create_coordinator(
            client,
            store,
            notifier=RecordingNotifier(fail=True),
            cache=RecordingCache(fail_tags={"spending_team_1"}),
        )

        result = asyncio.run(coordinator.sync("conn_1", "team_1"))

        assert result.success
        assert len(notifier.calls) == 1
        assert cache.tags == EXPECTED_TAGS


class TestRefreshBalances:
    def test_refreshes_every_account(self) -> None:
        accounts = [make_account("a1"), make_account("a2")]
        client = FakeProviderClient(
            balances={
                "ext_a1": Balance(amount=Decimal("1.00"), currency="USD"),
                "ext_a2": auth_error(),
            }
        )
        store = FakeStore(accounts)
        coordinator, notifier, cache = create_coordinator(client, store)

        result = asyncio.run(coordinator.refresh_balances("conn_1", "team_1"))

        assert not result.success
        assert result.updated_accounts == ["a1"]
        assert result.failed_accounts == ["a2"]
        assert client.list_calls == []
        assert store.balances == {"a1": Decimal("1.00")}
        assert store.status_of("conn_1") == (
            ConnectionStatus.DISCONNECTED,
            "The login details of this item have changed",
        )
        assert notifier.calls == []
        assert cache.tags == EXPECTED_TAGS

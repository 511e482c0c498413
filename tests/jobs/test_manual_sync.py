"""End-to-end tests for the manual sync job over SQLite."""

from __future__ import annotations

import asyncio
from decimal import Decimal

from pydantic import ValidationError
import pytest

from banksync.adapters.cache.revalidate import NoopCacheInvalidator, RevalidationClient
from banksync.adapters.db.facade import DB
from banksync.adapters.notifications.email import (
    LogOnlyNotifier,
    ResendTransactionNotifier,
)
from banksync.config import SyncConfig
from banksync.infra.clients.provider import Balance
from banksync.jobs.manual_sync import (
    ManualSyncPayload,
    SyncServices,
    build_cache_invalidator,
    build_notifier,
    build_services,
    run_balance_refresh,
    run_manual_sync,
)
from tests.fixtures.fakes import (
    FakeProviderClient,
    RecordingCache,
    RecordingNotifier,
    SleepRecorder,
    make_page,
    make_provider_txn,
    rate_limit_error,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config(**overrides: object) -> SyncConfig:
    values: dict[str, object] = {
        "database_url": "sqlite:///:memory:",
        "provider_url": "https://provider.test",
        "provider_api_key": "key",
    }
    values.update(overrides)
    return SyncConfig(**values)  # type: ignore[arg-type]


def _seed(db: DB) -> None:
    db.add_connection(
        id="conn_1", team_id="team_1", provider="plaid", access_token="token_1"
    )
    db.add_account(
        id="a1",
        team_id="team_1",
        bank_connection_id="conn_1",
        account_id="ext_a1",
        type="depository",
    )
    db.add_account(
        id="a2",
        team_id="team_1",
        bank_connection_id="conn_1",
        account_id="ext_a2",
        type="credit",
    )
    db.add_account(
        id="a3",
        team_id="team_1",
        bank_connection_id="conn_1",
        account_id="ext_a3",
        type="depository",
        enabled=False,
    )


def _services(
    db: DB,
    client: FakeProviderClient,
    notifier: RecordingNotifier,
    cache: RecordingCache,
) -> SyncServices:
    return build_services(
        _config(),
        db=db,
        provider_client=client,  # type: ignore[arg-type]
        notifier=notifier,
        cache=cache,
        sleep=SleepRecorder(),
    )


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------


class TestManualSyncPayload:
    def test_accepts_event_aliases(self) -> None:
        payload = ManualSyncPayload.model_validate(
            {"connectionId": "conn_1", "teamId": "team_1"}
        )

        assert payload.connection_id == "conn_1"
        assert payload.team_id == "team_1"

    @pytest.mark.parametrize(
        "data",
        [{"connectionId": "conn_1"}, {"connectionId": "", "teamId": "team_1"}],
    )
    def test_rejects_malformed_payloads(self, data: dict[str, str]) -> None:
        with pytest.raises(ValidationError):
            ManualSyncPayload.model_validate(data)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


class TestWiring:
    def test_defaults_without_optional_services(self) -> None:
        config = _config()

        assert isinstance(build_notifier(config), LogOnlyNotifier)
        assert isinstance(build_cache_invalidator(config), NoopCacheInvalidator)

    def test_configured_services(self) -> None:
        config = _config(
            notify_recipients=("owner@example.com",),
            resend_api_key="re_test",
            revalidate_url="https://app.test/api/revalidate",
        )

        assert isinstance(build_notifier(config), ResendTransactionNotifier)
        assert isinstance(build_cache_invalidator(config), RevalidationClient)


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


def test_manual_sync_end_to_end(db: DB) -> None:
    """
    A1 syncs three transactions while A2 stays rate limited; A3 is disabled.

    Verify: rows and balance persisted, connection unknown, A3 untouched.
    """
    # input
    _seed(db)
    client = FakeProviderClient(
        pages={
            "ext_a1": [
                make_page(
                    [make_provider_txn(f"txn_{i}") for i in range(3)], cursor="c1"
                )
            ],
            "ext_a2": [rate_limit_error() for _ in range(5)],
        },
        balances={"ext_a1": Balance(amount=Decimal("321.00"), currency="USD")},
    )
    notifier = RecordingNotifier()
    cache = RecordingCache()
    services = _services(db, client, notifier, cache)

    # act
    result = asyncio.run(
        run_manual_sync(
            {"connectionId": "conn_1", "teamId": "team_1"},
            config=_config(),
            services=services,
        )
    )

    # assert
    assert result.total_upserts == 3
    assert result.total_failed_upserts == 1
    assert result.failed_accounts == ["a2"]
    assert not result.success
    assert db.count_transactions(team_id="team_1") == 3

    connection = db.get_connection("conn_1")
    assert connection is not None
    assert connection.status == "unknown"
    assert connection.error_details == "Too many requests"
    assert connection.last_cursor_sync == "c1"

    a1 = db.get_account("a1")
    assert a1 is not None
    assert a1.balance == Decimal("321.00")
    assert client.calls_for("ext_a3") == []
    assert len(notifier.calls) == 1
    assert len(notifier.calls[0][0]) == 3
    assert len(cache.tags) == 7


def test_second_run_is_idempotent(db: DB) -> None:
    _seed(db)
    txns = [make_provider_txn(f"txn_{i}") for i in range(3)]
    client = FakeProviderClient(
        pages={"ext_a1": [make_page(txns), make_page(txns)]}
    )
    notifier = RecordingNotifier()
    services = _services(db, client, notifier, RecordingCache())
    payload = ManualSyncPayload(connection_id="conn_1", team_id="team_1")

    first = asyncio.run(run_manual_sync(payload, config=_config(), services=services))
    second = asyncio.run(run_manual_sync(payload, config=_config(), services=services))

    assert first.success
    assert second.success
    assert db.count_transactions() == 3
    assert second.new_transactions == []
    assert len(notifier.calls) == 1
    connection = db.get_connection("conn_1")
    assert connection is not None
    assert connection.status == "connected"
    assert connection.error_details is None


def test_balance_refresh(db: DB) -> None:
    _seed(db)
    client = FakeProviderClient(
        balances={"ext_a2": Balance(amount=Decimal("-75.50"), currency="USD")}
    )
    services = _services(db, client, RecordingNotifier(), RecordingCache())

    result = asyncio.run(
        run_balance_refresh(
            {"connectionId": "conn_1", "teamId": "team_1"},
            config=_config(),
            services=services,
        )
    )

    assert result.success
    assert sorted(result.updated_accounts) == ["a1", "a2"]
    a2 = db.get_account("a2")
    assert a2 is not None
    assert a2.balance == Decimal("-75.50")
    assert client.list_calls == []

"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from banksync.adapters.db.facade import DB
from tests.fixtures.fakes import SleepRecorder


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def db() -> Iterator[DB]:
    """In-memory SQLite database with the schema created."""
    database = DB("sqlite:///:memory:")
    database.create_schema()
    yield database
    database.dispose()

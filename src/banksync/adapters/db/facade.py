from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import create_engine, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from banksync.adapters.db.models import (
    BankAccount,
    BankConnection,
    Base,
    TransactionRow,
)
from banksync.models.account import (
    BankAccountWithConnection,
    BankConnectionRef,
    ConnectionStatus,
)
from banksync.models.transaction import Transaction
from banksync.sync.ports import StorageError

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _create_engine(url: str) -> Engine:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, echo=False, pool_pre_ping=True)

    # Calls arrive from worker threads, so connections cannot be thread-bound.
    connect_args = {"check_same_thread": False}
    if parsed.database in (None, "", ":memory:"):
        # One shared connection, otherwise every thread sees its own empty DB
        return create_engine(
            url, echo=False, connect_args=connect_args, poolclass=StaticPool
        )
    return create_engine(url, echo=False, connect_args=connect_args)


class DB:
    """Database service layer for bank connections, accounts and transactions.

    Every SQLAlchemy failure surfaces as ``StorageError``.
    """

    def __init__(self, url: str) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///banksync.db")
        """
        self._url = url
        self._engine = _create_engine(url)
        self._session_factory = sessionmaker(
            bind=self._engine, class_=Session, expire_on_commit=False
        )

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(f"Database operation failed: {exc}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to create schema: {exc}") from exc

    def dispose(self) -> None:
        self._engine.dispose()

    # ------------------------------------------------------------------
    # Connections and accounts
    # ------------------------------------------------------------------

    def add_connection(
        self,
        *,
        id: str,
        team_id: str,
        provider: str,
        access_token: str,
        institution_name: str | None = None,
        last_cursor_sync: str | None = None,
        status: ConnectionStatus = ConnectionStatus.CONNECTED,
    ) -> BankConnection:
        """Insert a bank connection.

        Returns:
            Created BankConnection instance (detached)
        """
        with self.session() as session:  # type: Session
            connection = BankConnection(
                id=id,
                team_id=team_id,
                provider=provider,
                access_token=access_token,
                institution_name=institution_name,
                last_cursor_sync=last_cursor_sync,
                status=status.value,
            )
            session.add(connection)
            session.flush()
            session.refresh(connection)
            session.expunge(connection)
            return connection

    def add_account(
        self,
        *,
        id: str,
        team_id: str,
        bank_connection_id: str,
        account_id: str,
        type: str | None = None,
        name: str | None = None,
        currency: str | None = None,
        enabled: bool = True,
    ) -> BankAccount:
        """Insert a bank account under an existing connection.

        Returns:
            Created BankAccount instance (detached)
        """
        with self.session() as session:  # type: Session
            account = BankAccount(
                id=id,
                team_id=team_id,
                bank_connection_id=bank_connection_id,
                account_id=account_id,
                type=type,
                name=name,
                currency=currency,
                enabled=enabled,
            )
            session.add(account)
            session.flush()
            session.refresh(account)
            session.expunge(account)
            return account

    def get_connection(self, connection_id: str) -> BankConnection | None:
        with self.session() as session:  # type: Session
            connection = session.get(BankConnection, connection_id)
            if connection:
                session.expunge(connection)
            return connection

    def get_account(self, account_id: str) -> BankAccount | None:
        with self.session() as session:  # type: Session
            account = session.get(BankAccount, account_id)
            if account:
                session.expunge(account)
            return account

    def load_enabled_accounts(
        self, *, team_id: str, connection_id: str
    ) -> list[BankAccountWithConnection]:
        """Enabled accounts of a connection, joined with the connection fields.

        Args:
            team_id: Owning team
            connection_id: Bank connection to load accounts for

        Returns:
            Accounts ordered by id
        """
        stmt = (
            select(BankAccount, BankConnection)
            .join(BankConnection, BankAccount.bank_connection_id == BankConnection.id)
            .where(
                BankAccount.team_id == team_id,
                BankAccount.bank_connection_id == connection_id,
                BankAccount.enabled.is_(True),
            )
            .order_by(BankAccount.id)
        )
        with self.session() as session:  # type: Session
            return [
                BankAccountWithConnection(
                    id=account.id,
                    team_id=account.team_id,
                    account_id=account.account_id,
                    type=account.type,
                    balance=account.balance,
                    bank_connection=BankConnectionRef(
                        id=connection.id,
                        provider=connection.provider,
                        access_token=connection.access_token,
                        last_cursor_sync=connection.last_cursor_sync,
                    ),
                )
                for account, connection in session.execute(stmt).all()
            ]

    def update_account_balance(self, account_id: str, balance: Decimal) -> None:
        with self.session() as session:  # type: Session
            account = session.get(BankAccount, account_id)
            if account is None:
                raise StorageError(f"Bank account {account_id} not found")
            account.balance = balance

    def update_connection_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        error_details: str | None,
        *,
        last_accessed: datetime | None = None,
    ) -> None:
        """Write status and error detail; ``last_accessed`` only when given."""
        with self.session() as session:  # type: Session
            connection = self._require_connection(session, connection_id)
            connection.status = status.value
            connection.error_details = error_details
            if last_accessed is not None:
                connection.last_accessed = last_accessed

    def mark_connection_synced(
        self,
        connection_id: str,
        *,
        last_accessed: datetime,
        cursor: str | None = None,
    ) -> None:
        """Stamp ``last_accessed``; store ``cursor`` when one is given."""
        with self.session() as session:  # type: Session
            connection = self._require_connection(session, connection_id)
            connection.last_accessed = last_accessed
            if cursor is not None:
                connection.last_cursor_sync = cursor

    def _require_connection(self, session: Session, connection_id: str) -> BankConnection:
        connection = session.get(BankConnection, connection_id)
        if connection is None:
            raise StorageError(f"Bank connection {connection_id} not found")
        return connection

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def upsert_transactions(self, rows: Sequence[Transaction]) -> list[Transaction]:
        """Insert rows, skipping any whose ``internal_id`` already exists.

        Uses ``INSERT ... ON CONFLICT (internal_id) DO NOTHING RETURNING`` so
        concurrent writers of the same rows never fail or duplicate.

        Args:
            rows: Canonical transaction rows

        Returns:
            The rows that were actually inserted, in input order
        """
        unique: dict[str, Transaction] = {}
        for row in rows:
            unique.setdefault(row["internal_id"], row)
        if not unique:
            return []

        insert = _UPSERT_DIALECTS.get(self.dialect)
        if insert is None:
            raise StorageError(f"Upsert not supported for dialect {self.dialect!r}")

        values: list[dict[str, Any]] = [dict(row) for row in unique.values()]
        stmt = (
            insert(TransactionRow)
            .values(values)
            .on_conflict_do_nothing(index_elements=["internal_id"])
            .returning(TransactionRow.internal_id)
        )
        with self.session() as session:  # type: Session
            inserted = set(session.execute(stmt).scalars().all())
        return [row for key, row in unique.items() if key in inserted]

    def list_transactions(
        self,
        *,
        team_id: str | None = None,
        bank_account_id: str | None = None,
    ) -> list[TransactionRow]:
        stmt = select(TransactionRow).order_by(
            TransactionRow.date, TransactionRow.internal_id
        )
        if team_id is not None:
            stmt = stmt.where(TransactionRow.team_id == team_id)
        if bank_account_id is not None:
            stmt = stmt.where(TransactionRow.bank_account_id == bank_account_id)
        with self.session() as session:  # type: Session
            transactions = list(session.scalars(stmt).all())
            for txn in transactions:
                session.expunge(txn)
            return transactions

    def count_transactions(self, *, team_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(TransactionRow)
        if team_id is not None:
            stmt = stmt.where(TransactionRow.team_id == team_id)
        with self.session() as session:  # type: Session
            return int(session.execute(stmt).scalar_one())

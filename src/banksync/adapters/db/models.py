from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)

from banksync.models.account import ConnectionStatus


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class BankConnection(Base):
    """A team's link to a financial institution through the provider."""

    __tablename__ = "bank_connections"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    team_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    institution_name: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=ConnectionStatus.CONNECTED.value
    )
    error_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_accessed: Mapped[dt.datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    last_cursor_sync: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    # Relationships
    accounts: Mapped[list[BankAccount]] = relationship(
        "BankAccount", back_populates="bank_connection", cascade="all, delete-orphan"
    )


class BankAccount(Base):
    """An account under a bank connection; only enabled accounts are synced."""

    __tablename__ = "bank_accounts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    team_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    bank_connection_id: Mapped[str] = mapped_column(
        String, ForeignKey("bank_connections.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[str] = mapped_column(String, nullable=False)  # provider id
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    type: Mapped[str | None] = mapped_column(String, nullable=True)
    currency: Mapped[str | None] = mapped_column(String, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    # Relationships
    bank_connection: Mapped[BankConnection] = relationship(
        "BankConnection", back_populates="accounts"
    )
    transactions: Mapped[list[TransactionRow]] = relationship(
        "TransactionRow", back_populates="bank_account", cascade="all, delete-orphan"
    )


class TransactionRow(Base):
    """Synced transaction. ``internal_id`` is the idempotence key."""

    __tablename__ = "transactions"
    __table_args__ = (Index("ix_transactions_team_date", "team_id", "date"),)

    internal_id: Mapped[str] = mapped_column(String, primary_key=True)
    id: Mapped[str] = mapped_column(String, nullable=False)  # provider id
    team_id: Mapped[str] = mapped_column(String, nullable=False)
    bank_account_id: Mapped[str] = mapped_column(
        String, ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    method: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    # Relationships
    bank_account: Mapped[BankAccount] = relationship(
        "BankAccount", back_populates="transactions"
    )

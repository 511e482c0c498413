from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import enum


class ConnectionStatus(enum.Enum):
    """Health of a bank connection as shown to the user."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class BankConnectionRef:
    """The connection fields an account sync needs."""

    id: str
    provider: str
    access_token: str
    last_cursor_sync: str | None = None


@dataclass(frozen=True, slots=True)
class BankAccountWithConnection:
    """An enabled bank account joined with its owning connection.

    ``account_id`` is the provider's identifier; ``id`` is ours.
    """

    id: str
    team_id: str
    account_id: str
    type: str | None
    bank_connection: BankConnectionRef
    balance: Decimal | None = None

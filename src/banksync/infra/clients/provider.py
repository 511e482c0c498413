from __future__ import annotations

import asyncio
import datetime as dt
from decimal import Decimal
import enum
import http.client
import json
from typing import Any, Self, cast
import urllib.error
import urllib.request

from pydantic import BaseModel, ConfigDict, Field, ValidationError

RATE_LIMIT_STATUS = 429
RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "ratelimit", "too many requests")
AUTHORIZATION_STATUSES = frozenset({401, 403})
AUTHORIZATION_CODES = frozenset(
    {
        "disconnected",
        "item_login_required",
        "invalid_access_token",
        "access_token_expired",
        "unauthorized",
        "forbidden",
    }
)


class ProviderClientError(Exception):
    """Error returned by (or while talking to) the financial-data provider."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    def __repr__(self) -> str:
        return (
            f"ProviderClientError(status={self.status!r}, code={self.code!r}, "
            f"message={self.message!r})"
        )


class ProviderErrorKind(enum.Enum):
    RATE_LIMIT = "rate_limit"
    AUTHORIZATION = "authorization"
    OTHER = "other"


def is_rate_limited(error: ProviderClientError) -> bool:
    """Return True for a 429 or an error whose message talks about rate limits."""
    if error.status == RATE_LIMIT_STATUS:
        return True
    text = f"{error.code or ''} {error.message}".lower()
    return any(marker in text for marker in RATE_LIMIT_MARKERS)


def classify_provider_error(error: ProviderClientError) -> ProviderErrorKind:
    if is_rate_limited(error):
        return ProviderErrorKind.RATE_LIMIT
    if error.status in AUTHORIZATION_STATUSES:
        return ProviderErrorKind.AUTHORIZATION
    if error.code is not None and error.code.lower() in AUTHORIZATION_CODES:
        return ProviderErrorKind.AUTHORIZATION
    return ProviderErrorKind.OTHER


class ProviderBaseModel(BaseModel):
    """Shared base for provider response models with a short parse alias."""

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def parse(cls, data: Any) -> Self:
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ProviderClientError(
                f"Unexpected provider response for {cls.__name__}: {e}"
            ) from e


class ProviderTransaction(ProviderBaseModel):
    id: str | None = None
    date: dt.date
    amount: Decimal
    currency: str
    name: str | None = None
    description: str | None = None
    method: str | None = None
    status: str | None = None
    balance: Decimal | None = None
    recurring: bool = False


class TransactionsPage(ProviderBaseModel):
    data: list[ProviderTransaction] = Field(default_factory=list)
    cursor: str | None = None
    has_more: bool = Field(default=False, alias="hasMore")


class Balance(ProviderBaseModel):
    amount: Decimal | None = None
    currency: str | None = None


class BalanceResponse(ProviderBaseModel):
    data: Balance | None = None


class ProviderClient:
    """HTTP client for the financial-data provider API.

    Calls are blocking ``urllib`` requests run on a worker thread, so each
    one is a suspension point for the event loop.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def _parse_json_response(self, body: str) -> dict[str, Any]:
        try:
            return cast(dict[str, Any], json.loads(body, parse_float=Decimal))
        except json.JSONDecodeError as e:
            raise ProviderClientError(
                f"Failed to parse provider response as JSON: {e}: {body}"
            ) from e

    @staticmethod
    def _parse_error_body(body: str) -> tuple[str | None, str | None]:
        """Extract ``(code, message)`` from an error body, if it is JSON."""
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            return None, body or None
        if not isinstance(parsed, dict):
            return None, body or None
        error = parsed.get("error")
        if isinstance(error, dict):
            parsed = error
        code = parsed.get("code")
        message = parsed.get("message") or parsed.get("error")
        return (
            str(code) if code is not None else None,
            str(message) if message is not None else None,
        )

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = self._base_url + path
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(  # noqa: S310
            url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(  # noqa: S310 - external HTTPS
                req, timeout=self._timeout_seconds
            ) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            err_body = e.read().decode("utf-8", "ignore")
            code, message = self._parse_error_body(err_body)
            raise ProviderClientError(
                message or f"Provider API error ({e.code})",
                status=e.code,
                code=code,
            ) from e
        except urllib.error.URLError as e:
            raise ProviderClientError(
                f"Network error calling provider API: {e.reason}",
                code="network_error",
            ) from e
        except TimeoutError as e:
            raise ProviderClientError(
                f"Provider API timed out after {self._timeout_seconds}s",
                code="timeout",
            ) from e
        except (http.client.HTTPException, OSError) as e:
            raise ProviderClientError(
                f"Error reading provider response: {e!r}",
                code="network_error",
            ) from e
        except UnicodeDecodeError as e:
            raise ProviderClientError(
                f"Provider response is not valid UTF-8: {e}"
            ) from e

        return self._parse_json_response(body)

    async def list_transactions(
        self,
        *,
        provider: str,
        account_id: str,
        account_type: str | None,
        access_token: str,
        cursor: str | None = None,
        latest: bool = False,
    ) -> TransactionsPage:
        """Fetch one page of transactions for a provider account."""
        payload: dict[str, Any] = {
            "provider": provider,
            "accountId": account_id,
            "accessToken": access_token,
            "latest": latest,
        }
        if account_type is not None:
            payload["accountType"] = account_type
        if cursor:
            payload["cursor"] = cursor

        body = await asyncio.to_thread(self._post, "/transactions", payload)
        return TransactionsPage.parse(body)

    async def get_balance(
        self,
        *,
        provider: str,
        account_id: str,
        access_token: str,
    ) -> Balance:
        """Fetch the current balance of a provider account."""
        payload = {
            "provider": provider,
            "id": account_id,
            "accessToken": access_token,
        }
        body = await asyncio.to_thread(self._post, "/accounts/balance", payload)
        resp = BalanceResponse.parse(body)
        return resp.data or Balance()

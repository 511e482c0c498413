"""Provider gateway: the provider client plus rate-limit aware retries."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import random

import loguru
from loguru import logger

from banksync.infra.clients.provider import (
    Balance,
    ProviderClient,
    ProviderClientError,
    TransactionsPage,
    is_rate_limited,
)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff for rate-limited provider calls.

    Attempt ``n`` (starting at 0) that hits a rate limit waits
    ``base_delay * 2**n`` seconds, plus up to ``jitter`` seconds, before the
    next attempt. At most ``max_attempts`` calls are made.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.jitter < 0:
            raise ValueError("base_delay and jitter must not be negative")

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * 2**attempt
        if self.jitter:
            delay += random.uniform(0, self.jitter)  # noqa: S311
        return delay


class GatewayLogger:
    """Handles all logging for ProviderGateway."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def rate_limited(
        self, account_id: str, attempt: int, max_attempts: int, delay: float
    ) -> None:
        """Log a rate-limited attempt before backing off."""
        self._logger.bind(
            account_id=account_id,
            attempt=attempt,
            max_attempts=max_attempts,
            delay=delay,
        ).warning(
            "Rate limited listing transactions for {} (attempt {}/{}), "
            "retrying in {:.1f}s",
            account_id,
            attempt,
            max_attempts,
            delay,
        )

    def retries_exhausted(self, account_id: str, attempts: int) -> None:
        """Log giving up after the last rate-limited attempt."""
        self._logger.bind(account_id=account_id, attempts=attempts).error(
            "Giving up listing transactions for {} after {} rate-limited attempts",
            account_id,
            attempts,
        )


class ProviderGateway:
    """Entry point the sync pipeline uses to reach the provider."""

    def __init__(
        self,
        client: ProviderClient,
        *,
        retry_policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        logger_instance: loguru.Logger = logger,
    ) -> None:
        self._client = client
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._logger = GatewayLogger(logger_instance)

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

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
        """List one page of transactions, retrying while rate limited.

        Raises:
            ProviderClientError: Immediately for errors that are not rate
                limits, or the last rate-limit error once the attempts run out.
        """
        max_attempts = self._retry_policy.max_attempts
        for attempt in range(max_attempts):
            try:
                return await self._client.list_transactions(
                    provider=provider,
                    account_id=account_id,
                    account_type=account_type,
                    access_token=access_token,
                    cursor=cursor,
                    latest=latest,
                )
            except ProviderClientError as e:
                if not is_rate_limited(e):
                    raise
                if attempt + 1 >= max_attempts:
                    self._logger.retries_exhausted(account_id, max_attempts)
                    raise
                delay = self._retry_policy.delay_for(attempt)
                self._logger.rate_limited(
                    account_id, attempt + 1, max_attempts, delay
                )
                await self._sleep(delay)

        raise AssertionError("retry loop exited without a result")

    async def get_balance(
        self,
        *,
        provider: str,
        account_id: str,
        access_token: str,
    ) -> Balance:
        return await self._client.get_balance(
            provider=provider,
            account_id=account_id,
            access_token=access_token,
        )

"""Transaction notifications via Resend."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
import html
import time

import loguru
from loguru import logger
import resend

from banksync.models.transaction import Transaction

MAX_LISTED_TRANSACTIONS = 10


class NotificationError(Exception):
    """Sending a transaction notification failed."""


@dataclass
class EmailResult:
    """Result of an email send operation."""

    success: bool
    message_id: str | None
    error: str | None


def _format_amount(txn: Transaction) -> str:
    return f"{txn['amount']:,.2f} {txn['currency']}"


def render_notification(
    transactions: Sequence[Transaction], team_id: str
) -> tuple[str, str, str]:
    """Build subject, plain text and HTML bodies for a notification."""
    count = len(transactions)
    noun = "transaction" if count == 1 else "transactions"
    subject = f"{count} new {noun} synced"

    listed = sorted(transactions, key=lambda t: t["date"], reverse=True)[
        :MAX_LISTED_TRANSACTIONS
    ]
    remaining = count - len(listed)

    text_lines = [f"{count} new {noun} were synced for team {team_id}.", ""]
    text_lines += [
        f"  {txn['date'].isoformat()}  {txn['name']}  {_format_amount(txn)}"
        for txn in listed
    ]
    if remaining:
        text_lines.append(f"  ... and {remaining} more")

    rows = "\n".join(
        f"<tr><td>{txn['date'].isoformat()}</td>"
        f"<td>{html.escape(txn['name'])}</td>"
        f"<td>{html.escape(_format_amount(txn))}</td></tr>"
        for txn in listed
    )
    more = f"<p>... and {remaining} more</p>" if remaining else ""
    html_content = f"""
<html>
<body>
<h1>{html.escape(subject)}</h1>
<table>
{rows}
</table>
{more}
</body>
</html>
"""
    return subject, "\n".join(text_lines) + "\n", html_content


class ResendTransactionNotifier:
    """Emails a team about newly synced transactions."""

    def __init__(
        self,
        *,
        api_key: str,
        recipients: Sequence[str],
        from_address: str = "notifications@banksync.app",
        from_name: str = "Bank Sync",
        max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the notifier.

        Args:
            api_key: Resend API key
            recipients: Addresses every notification goes to
            from_address: Email address to send from
            from_name: Display name for sender
            max_retries: Send attempts before giving up
            sleep: Blocking sleep between attempts
        """
        if not api_key:
            raise ValueError("Resend API key required. Set RESEND_API_KEY.")
        if not recipients:
            raise ValueError("At least one notification recipient is required")
        self._recipients = list(recipients)
        self._from_address = from_address
        self._from_name = from_name
        self._max_retries = max_retries
        self._sleep = sleep

        resend.api_key = api_key

    async def notify(self, transactions: Sequence[Transaction], team_id: str) -> None:
        if not transactions:
            return
        subject, text_content, html_content = render_notification(transactions, team_id)
        result = await asyncio.to_thread(
            self.send, self._recipients, subject, html_content, text_content
        )
        if not result.success:
            raise NotificationError(result.error or "Unknown email failure")

    def send(
        self,
        to: list[str],
        subject: str,
        html_content: str,
        text_content: str,
    ) -> EmailResult:
        """Send one email, retrying with exponential backoff (1s, 2s, ...)."""
        from_str = f"{self._from_name} <{self._from_address}>"

        for attempt in range(self._max_retries):
            try:
                params: resend.Emails.SendParams = {
                    "from": from_str,
                    "to": to,
                    "subject": subject,
                    "html": html_content,
                    "text": text_content,
                }
                response = resend.Emails.send(params)
            except Exception as e:
                if attempt < self._max_retries - 1:
                    self._sleep(2**attempt)
                    continue
                return EmailResult(
                    success=False,
                    message_id=None,
                    error=f"Failed after {self._max_retries} attempts: {e}",
                )

            # Response is a dict with 'id' key on success
            if isinstance(response, dict) and "id" in response:
                return EmailResult(success=True, message_id=response["id"], error=None)
            return EmailResult(
                success=False,
                message_id=None,
                error=f"Unexpected response: {response}",
            )

        return EmailResult(success=False, message_id=None, error="No send attempts made")


class LogOnlyNotifier:
    """Used when no recipients are configured; records the notification in the log."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    async def notify(self, transactions: Sequence[Transaction], team_id: str) -> None:
        self._logger.bind(team_id=team_id, count=len(transactions)).info(
            "{} new transactions for team {} (no notification recipients configured)",
            len(transactions),
            team_id,
        )

from __future__ import annotations

from dataclasses import dataclass
import os

_REQUIRED_ENV_VARS = (
    "BANKSYNC_DATABASE_URL",
    "BANKSYNC_PROVIDER_URL",
    "BANKSYNC_PROVIDER_API_KEY",
)
_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class SyncConfigError(Exception):
    """Missing or invalid sync configuration."""


@dataclass(frozen=True, slots=True)
class SyncConfig:
    """Runtime configuration for sync jobs, loaded at process startup."""

    database_url: str
    provider_url: str
    provider_api_key: str
    request_timeout_seconds: float = 5.0
    retry_max_attempts: int = 5
    retry_base_delay_seconds: float = 1.0
    retry_jitter_seconds: float = 0.0
    batch_size: int = 500
    max_pages: int = 50
    revalidate_url: str | None = None
    revalidate_secret: str | None = None
    notify_recipients: tuple[str, ...] = ()
    resend_api_key: str | None = None
    notify_from: str | None = None
    log_level: str = "INFO"


def _optional_env(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def _int_env(name: str, default: int, *, minimum: int) -> int:
    raw = _optional_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise SyncConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise SyncConfigError(f"{name} must be at least {minimum}, got {value}")
    return value


def _float_env(name: str, default: float, *, minimum: float) -> float:
    raw = _optional_env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise SyncConfigError(f"{name} must be a number, got {raw!r}") from e
    if value < minimum:
        raise SyncConfigError(f"{name} must be at least {minimum}, got {value}")
    return value


def load_sync_config_from_env() -> SyncConfig:
    """Load sync configuration from environment variables.

    Required env vars: BANKSYNC_DATABASE_URL, BANKSYNC_PROVIDER_URL,
    BANKSYNC_PROVIDER_API_KEY.

    Raises:
        SyncConfigError: If a required variable is missing or a value is invalid.
    """
    missing = [var for var in _REQUIRED_ENV_VARS if not _optional_env(var)]
    if missing:
        raise SyncConfigError(
            f"Missing required sync env var(s): {', '.join(missing)}"
        )

    log_level = os.environ.get("BANKSYNC_LOG_LEVEL", "INFO").strip().upper()
    if log_level not in _LOG_LEVELS:
        raise SyncConfigError(
            f"BANKSYNC_LOG_LEVEL must be one of: {', '.join(sorted(_LOG_LEVELS))}"
        )

    recipients_raw = os.environ.get("BANKSYNC_NOTIFY_RECIPIENTS", "")
    recipients = tuple(
        address.strip() for address in recipients_raw.split(",") if address.strip()
    )

    resend_api_key = _optional_env("RESEND_API_KEY")
    if recipients and resend_api_key is None:
        raise SyncConfigError(
            "RESEND_API_KEY is required when BANKSYNC_NOTIFY_RECIPIENTS is set"
        )

    return SyncConfig(
        database_url=os.environ["BANKSYNC_DATABASE_URL"].strip(),
        provider_url=os.environ["BANKSYNC_PROVIDER_URL"].strip(),
        provider_api_key=os.environ["BANKSYNC_PROVIDER_API_KEY"].strip(),
        request_timeout_seconds=_float_env(
            "BANKSYNC_REQUEST_TIMEOUT_SECONDS", 5.0, minimum=0.001
        ),
        retry_max_attempts=_int_env("BANKSYNC_RETRY_MAX_ATTEMPTS", 5, minimum=1),
        retry_base_delay_seconds=_float_env(
            "BANKSYNC_RETRY_BASE_DELAY_SECONDS", 1.0, minimum=0.0
        ),
        retry_jitter_seconds=_float_env(
            "BANKSYNC_RETRY_JITTER_SECONDS", 0.0, minimum=0.0
        ),
        batch_size=_int_env("BANKSYNC_BATCH_SIZE", 500, minimum=1),
        max_pages=_int_env("BANKSYNC_MAX_PAGES", 50, minimum=1),
        revalidate_url=_optional_env("BANKSYNC_REVALIDATE_URL"),
        revalidate_secret=_optional_env("BANKSYNC_REVALIDATE_SECRET"),
        notify_recipients=recipients,
        resend_api_key=resend_api_key,
        notify_from=_optional_env("BANKSYNC_NOTIFY_FROM"),
        log_level=log_level,
    )

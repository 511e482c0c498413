from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.request


class CacheRevalidationError(Exception):
    """The revalidation webhook rejected or did not answer a request."""


class RevalidationClient:
    """Posts cache tags to the web app's revalidation webhook.

    The webhook expects ``{"tag": "<tag>"}`` and, when configured, the shared
    secret in the ``x-revalidate-secret`` header.
    """

    def __init__(
        self,
        *,
        url: str,
        secret: str | None = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._url = url
        self._secret = secret
        self._timeout_seconds = timeout_seconds

    def _post(self, tag: str) -> None:
        headers = {"Content-Type": "application/json"}
        if self._secret:
            headers["x-revalidate-secret"] = self._secret
        req = urllib.request.Request(  # noqa: S310
            self._url,
            data=json.dumps({"tag": tag}).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        try:
            with urllib.request.urlopen(  # noqa: S310 - configured webhook
                req, timeout=self._timeout_seconds
            ) as resp:
                resp.read()
        except urllib.error.HTTPError as e:
            raise CacheRevalidationError(
                f"Revalidation of {tag!r} failed with status {e.code}"
            ) from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise CacheRevalidationError(f"Revalidation of {tag!r} failed: {e}") from e

    async def invalidate(self, tag: str) -> None:
        await asyncio.to_thread(self._post, tag)


class NoopCacheInvalidator:
    """Used when no revalidation webhook is configured."""

    async def invalidate(self, tag: str) -> None:
        return None

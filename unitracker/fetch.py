"""
HTTP fetching with retry/backoff.

The blocking requests call runs in a worker thread via asyncio.to_thread, so
every fetch is a suspension point of the (single-threaded) crawl loop.

Retry policy:
- transport errors, HTTP >= 500 and HTTP 429 are retried
- wait attempt * backoff seconds between attempts (linear)
- any other status is returned as-is; downstream parsers cope with odd bodies
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import requests


log = logging.getLogger(__name__)

USER_AGENT = "UniTrackerScraper/1.0"
DEFAULT_RETRIES = 3
DEFAULT_BACKOFF = 0.5
DEFAULT_TIMEOUT = 30.0


class FetchError(Exception):
    """
    Raised when a URL could not be fetched after all retries.
    """

    def __init__(self, url: str, attempts: int, reason: str) -> None:
        super().__init__(f"GET {url} failed after {attempts} attempt(s): {reason}")
        self.url = url
        self.attempts = attempts
        self.reason = reason


def _is_retryable_status(status: int) -> bool:
    return status >= 500 or status == 429


class Fetcher:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        retries: int = DEFAULT_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = USER_AGENT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        self.retries = retries
        self.backoff = backoff
        self.timeout = timeout
        self.headers = {"User-Agent": user_agent}
        self._sleep = sleep

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def _get(self, url: str) -> requests.Response:
        return self.session.get(url, headers=self.headers, timeout=self.timeout)

    async def fetch(self, url: str, retries: Optional[int] = None) -> str:
        """
        GET `url` and return the body text.

        Makes at most retries + 1 attempts; raises FetchError when all of them
        hit a retryable failure.
        """
        max_retries = self.retries if retries is None else retries
        attempt = 0

        while True:
            try:
                resp = await asyncio.to_thread(self._get, url)
            except requests.RequestException as e:
                reason = f"{type(e).__name__}: {e}"
                cause: Optional[BaseException] = e
            else:
                if not _is_retryable_status(resp.status_code):
                    return resp.text
                reason = f"HTTP {resp.status_code}"
                cause = None

            attempt += 1
            if attempt > max_retries:
                raise FetchError(url, attempt, reason) from cause

            wait = attempt * self.backoff
            log.warning("%s for %s (attempt %d/%d), retrying in %.1fs", reason, url, attempt, max_retries + 1, wait)
            await self._sleep(wait)

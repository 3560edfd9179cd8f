"""
Per-domain rate limiting with token bucket and 429 backoff.
Safe for concurrent asyncio use; state is per process.
"""
from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from typing import Optional
from urllib.parse import urlparse

from shared.utils.logging import get_logger

from verifier.config import VerifierSettings, get_verifier_settings

logger = get_logger(__name__)


def domain_of(url: str) -> str:
    """Extract domain from URL for bucket key."""
    try:
        return urlparse(url).netloc.lower() or "unknown"
    except ValueError:
        return "unknown"


class TokenBucket:
    """
    In-process token bucket per domain.
    Refills at rpm / 60 tokens per second; max burst = burst.
    """

    def __init__(self, rpm: int, burst: int) -> None:
        self._rpm = max(1, rpm)
        self._burst = max(1, burst)
        self._tokens = float(self._burst)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> bool:
        """Consume one token if available. Returns True if allowed, False if rate limited."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_refill
            self._tokens = min(self._burst, self._tokens + elapsed * (self._rpm / 60.0))
            self._last_refill = now
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    async def wait_until_available(self, timeout_s: Optional[float] = None) -> bool:
        """Wait until a token is available or timeout. Returns True if token acquired."""
        deadline = (time.monotonic() + timeout_s) if timeout_s else None
        while True:
            if await self.acquire():
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            await asyncio.sleep(60.0 / self._rpm)


class DomainRateLimiter:
    """Per-domain token buckets plus a backoff window after a 429."""

    def __init__(self, settings: Optional[VerifierSettings] = None) -> None:
        self._settings = settings or get_verifier_settings()
        self._buckets: dict[str, TokenBucket] = defaultdict(
            lambda: TokenBucket(
                rpm=self._settings.per_domain_rpm,
                burst=self._settings.per_domain_burst,
            )
        )
        self._backoff_until: dict[str, float] = {}

    def in_backoff(self, url: str) -> bool:
        return time.monotonic() < self._backoff_until.get(domain_of(url), 0.0)

    async def allow_request(self, url: str) -> bool:
        """Non-blocking check: True if a request to url may go out now."""
        if self.in_backoff(url):
            return False
        return await self._buckets[domain_of(url)].acquire()

    async def wait_for_slot(self, url: str, timeout_s: Optional[float] = None) -> bool:
        """Wait until a request to url is allowed or timeout. Returns True if allowed."""
        domain = domain_of(url)
        timeout = self._settings.slot_wait_s if timeout_s is None else timeout_s
        wait = self._backoff_until.get(domain, 0.0) - time.monotonic()
        if wait > 0:
            if wait > timeout:
                return False
            await asyncio.sleep(wait)
            timeout -= wait
        return await self._buckets[domain].wait_until_available(max(timeout, 0.001))

    def record_429(self, url: str, retry_after_s: Optional[float] = None) -> None:
        """Record a rate limit response; back off this domain."""
        domain = domain_of(url)
        backoff = retry_after_s if retry_after_s and retry_after_s > 0 else self._settings.backoff_on_429_s
        self._backoff_until[domain] = time.monotonic() + backoff
        logger.warning("rate_limit_backoff", domain=domain, backoff_s=backoff)

"""
Async content fetcher for certificate and post pages.
Includes retry logic, per-domain rate limiting, optional rendered scraping, and metrics.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from shared.utils.logging import get_logger
from shared.utils.metrics import FETCH_LATENCY, FETCH_REQUESTS, RATE_LIMIT_WAITS

from verifier.config import VerifierSettings, get_verifier_settings
from verifier.rate_limiter import DomainRateLimiter, domain_of

logger = get_logger(__name__)


class FetchError(Exception):
    """Any failure to obtain page content: network, timeout, non-2xx, rate limit."""

    def __init__(self, url: str, message: str, status: Optional[int] = None) -> None:
        self.url = url
        self.status = status
        super().__init__(f"{message} ({url})")


@dataclass(frozen=True)
class RenderedPage:
    """JS-rendered page as returned by the scraping service."""
    markdown: str = ""
    html: str = ""


def _retry_after(resp: httpx.Response) -> Optional[float]:
    try:
        return float(resp.headers.get("Retry-After", ""))
    except ValueError:
        return None


class PageFetcher:
    """
    Fetches raw HTML (direct GET) or rendered markdown/HTML (Firecrawl).
    Callers own cancellation: an aborted task aborts the in-flight request.
    """

    def __init__(
        self,
        settings: Optional[VerifierSettings] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings or get_verifier_settings()
        self._limiter = rate_limiter or DomainRateLimiter(self._settings)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            headers={
                "User-Agent": self._settings.user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
            },
            timeout=httpx.Timeout(self._settings.fetch_timeout_s, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PageFetcher":
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def rendering_enabled(self) -> bool:
        return bool(self._settings.firecrawl_api_key)

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("PageFetcher not started. Call start() first.")
        return self._client

    async def _take_slot(self, url: str) -> None:
        if await self._limiter.allow_request(url):
            return
        RATE_LIMIT_WAITS.labels(domain=domain_of(url)).inc()
        if not await self._limiter.wait_for_slot(url):
            raise FetchError(url, "Rate limit slot unavailable")

    async def fetch_html(self, url: str, source: str = "page") -> str:
        """
        GET a page and return its body text.

        Retries 5xx and timeouts with linear backoff; 429 puts the domain into
        backoff and fails immediately; other 4xx fail immediately.

        Raises:
            FetchError: when no usable response was obtained.
        """
        client = self._require_client()
        await self._take_slot(url)

        attempts = self._settings.fetch_max_attempts
        last_exc: Optional[FetchError] = None
        for attempt in range(1, attempts + 1):
            start_time = time.perf_counter()
            status = "error"
            try:
                resp = await client.get(url)
                status = str(resp.status_code)

                if resp.status_code == 429:
                    self._limiter.record_429(url, _retry_after(resp))
                    raise FetchError(url, "Rate limited", 429)

                if resp.status_code >= 500:
                    last_exc = FetchError(url, f"HTTP {resp.status_code}", resp.status_code)
                    logger.warning("fetch_server_error", source=source, url=url, status=resp.status_code, attempt=attempt)
                elif resp.status_code >= 400:
                    raise FetchError(url, f"HTTP {resp.status_code}", resp.status_code)
                else:
                    logger.debug("fetch_success", source=source, url=url, status=resp.status_code, length=len(resp.text))
                    return resp.text

            except httpx.TimeoutException:
                status = "timeout"
                last_exc = FetchError(url, "Timed out")
                logger.warning("fetch_timeout", source=source, url=url, attempt=attempt)

            except httpx.HTTPError as exc:
                last_exc = FetchError(url, f"Request failed: {exc.__class__.__name__}")
                logger.warning("fetch_request_error", source=source, url=url, error=str(exc), attempt=attempt)

            finally:
                FETCH_REQUESTS.labels(source=source, status=status).inc()
                FETCH_LATENCY.labels(source=source).observe(time.perf_counter() - start_time)

            if attempt < attempts:
                await asyncio.sleep(self._settings.retry_base_delay_s * attempt)

        raise last_exc or FetchError(url, f"Failed after {attempts} attempts")

    async def render(self, url: str) -> RenderedPage:
        """
        Scrape a JS-rendered page through Firecrawl.

        Raises:
            FetchError: when rendering is disabled or the scrape fails.
        """
        if not self.rendering_enabled:
            raise FetchError(url, "Rendering not configured")
        client = self._require_client()
        payload: dict[str, Any] = {
            "url": url,
            "formats": ["markdown", "html"],
            "onlyMainContent": False,
            "waitFor": self._settings.firecrawl_wait_ms,
        }
        start_time = time.perf_counter()
        status = "error"
        try:
            resp = await client.post(
                self._settings.firecrawl_url,
                json=payload,
                headers={"Authorization": f"Bearer {self._settings.firecrawl_api_key}"},
            )
            status = str(resp.status_code)
            if resp.status_code >= 400:
                raise FetchError(url, f"Render failed with HTTP {resp.status_code}", resp.status_code)
            data = resp.json()
        except httpx.TimeoutException as exc:
            status = "timeout"
            raise FetchError(url, "Render timed out") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise FetchError(url, f"Render failed: {exc.__class__.__name__}") from exc
        finally:
            FETCH_REQUESTS.labels(source="render", status=status).inc()
            FETCH_LATENCY.labels(source="render").observe(time.perf_counter() - start_time)

        body = (data.get("data") or data) if isinstance(data, dict) else None
        if not isinstance(body, dict):
            logger.warning("render_unexpected_payload", url=url, payload_type=type(data).__name__)
            raise FetchError(url, "Render returned unexpected payload")
        markdown, html = body.get("markdown"), body.get("html")
        return RenderedPage(
            markdown=markdown if isinstance(markdown, str) else "",
            html=html if isinstance(html, str) else "",
        )

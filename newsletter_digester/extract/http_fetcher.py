from __future__ import annotations

import logging
import time

import httpx

from newsletter_digester.errors import (
    ERROR_HTTP,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
    FetchError,
    redact_detail,
)


logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; NewsletterDigester/1.0)"


class HttpFetcher:
    def __init__(
        self,
        timeout_seconds: int = 30,
        user_agent: str = DEFAULT_USER_AGENT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(timeout_seconds),
            headers={
                "User-Agent": user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch(self, url: str) -> str:
        started = time.perf_counter()
        try:
            resp = await self._client.get(url)
        except httpx.TimeoutException as e:
            raise FetchError(ERROR_TIMEOUT, redact_detail(str(e) or url)) from e
        except (httpx.TransportError, httpx.InvalidURL) as e:
            raise FetchError(ERROR_HTTP, redact_detail(str(e) or url)) from e
        except httpx.HTTPError as e:
            raise FetchError(ERROR_UNKNOWN, redact_detail(str(e) or url)) from e

        if resp.status_code == 429:
            raise FetchError(ERROR_HTTP, "429 too many requests")
        if resp.status_code >= 500:
            raise FetchError(ERROR_HTTP, f"{resp.status_code} server error")
        if resp.status_code >= 400:
            raise FetchError(ERROR_HTTP, f"{resp.status_code} client error")

        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.debug("fetched %s status=%s bytes=%s in %sms", url, resp.status_code, len(resp.content), duration_ms)
        return resp.text

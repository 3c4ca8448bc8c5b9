"""
Asset downloading over a shared httpx client with per-URL de-duplication
"""

import asyncio
import logging
from typing import Dict, Optional

import httpx

from .errors import DownloadError
from .events import EventLog

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

ASSET_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

ERROR_PAGE_MARKERS = ("<html", "<!doctype", "404", "not found")


class AssetFetcher:
    """
    Downloads asset bytes for one clone operation.

    Each distinct URL hits the network at most once; later calls for the same
    URL await the first outcome (bytes or DownloadError). Nothing is retried,
    the caller decides what a failure means for the page.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        max_redirects: int = 5,
        max_concurrent: int = 8,
        events: Optional[EventLog] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = httpx.AsyncClient(
            headers=ASSET_HEADERS,
            timeout=timeout,
            follow_redirects=True,
            max_redirects=max_redirects,
            transport=transport,
        )
        self.events = events or EventLog()
        self.fetch_count = 0
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent))
        self._downloads: Dict[str, "asyncio.Task[bytes]"] = {}

    async def __aenter__(self) -> "AssetFetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()

    async def fetch(self, url: str) -> bytes:
        task = self._downloads.get(url)
        if task is None:
            task = asyncio.ensure_future(self._download(url))
            self._downloads[url] = task
        return await asyncio.shield(task)

    async def _download(self, url: str) -> bytes:
        async with self._semaphore:
            self.fetch_count += 1
            try:
                response = await self.client.get(url)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                self.events.emit("download.failed", logging.WARNING, url=url, error=str(exc) or type(exc).__name__)
                raise DownloadError(url, f"{type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            self.events.emit("download.failed", logging.WARNING, url=url, status=response.status_code)
            raise DownloadError(url, f"HTTP {response.status_code}", status_code=response.status_code)

        content_type = response.headers.get("content-type", "").lower()
        if "text/html" in content_type or "application/xhtml" in content_type:
            preview = response.content[:4096].decode("utf-8", errors="ignore").lower()
            if any(marker in preview for marker in ERROR_PAGE_MARKERS):
                self.events.emit("download.error_page", logging.WARNING, url=url, content_type=content_type)
                raise DownloadError(
                    url,
                    f"Server returned an HTML error page instead of the asset (Content-Type: {content_type})",
                    status_code=response.status_code,
                )

        self.events.emit("download.ok", logging.DEBUG, url=url, size=len(response.content))
        return response.content

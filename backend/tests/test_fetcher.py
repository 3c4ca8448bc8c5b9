from __future__ import annotations

import asyncio
import unittest

import httpx

from siteclone.errors import DownloadError
from siteclone.events import EventLog
from siteclone.fetcher import AssetFetcher

from support import failing_transport, make_transport


class AssetFetcherTest(unittest.IsolatedAsyncioTestCase):
    async def test_identical_urls_download_once(self) -> None:
        transport, calls = make_transport({
            "https://cdn.example.com/a.js": (200, b"console.log(1)", "application/javascript"),
        })
        async with AssetFetcher(transport=transport) as fetcher:
            results = await asyncio.gather(
                fetcher.fetch("https://cdn.example.com/a.js"),
                fetcher.fetch("https://cdn.example.com/a.js"),
            )
            again = await fetcher.fetch("https://cdn.example.com/a.js")

        self.assertEqual(results, [b"console.log(1)", b"console.log(1)"])
        self.assertEqual(again, b"console.log(1)")
        self.assertEqual(calls, ["https://cdn.example.com/a.js"])
        self.assertEqual(fetcher.fetch_count, 1)

    async def test_non_success_status_raises_and_is_not_retried(self) -> None:
        transport, calls = make_transport({})
        events = EventLog()
        async with AssetFetcher(transport=transport, events=events) as fetcher:
            with self.assertRaises(DownloadError) as ctx:
                await fetcher.fetch("https://example.com/missing.png")
            with self.assertRaises(DownloadError):
                await fetcher.fetch("https://example.com/missing.png")

        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.url, "https://example.com/missing.png")
        self.assertEqual(len(calls), 1)
        self.assertIn("download.failed", events.names())

    async def test_html_error_page_is_rejected(self) -> None:
        transport, _calls = make_transport({
            "https://example.com/logo.png": (200, b"<!DOCTYPE html><title>Not Found</title>", "text/html; charset=utf-8"),
        })
        events = EventLog()
        async with AssetFetcher(transport=transport, events=events) as fetcher:
            with self.assertRaises(DownloadError) as ctx:
                await fetcher.fetch("https://example.com/logo.png")

        self.assertIn("HTML error page", ctx.exception.cause)
        self.assertEqual(events.names(), ["download.error_page"])

    async def test_network_error_becomes_download_error(self) -> None:
        async with AssetFetcher(transport=failing_transport()) as fetcher:
            with self.assertRaises(DownloadError) as ctx:
                await fetcher.fetch("https://unreachable.example.com/a.css")

        self.assertIn("ConnectError", ctx.exception.cause)
        self.assertIsNone(ctx.exception.status_code)

    async def test_malformed_url_becomes_download_error(self) -> None:
        transport, calls = make_transport({})
        async with AssetFetcher(transport=transport) as fetcher:
            with self.assertRaises(DownloadError) as ctx:
                await fetcher.fetch("http://[::1/a.png")

        self.assertIn("InvalidURL", ctx.exception.cause)
        self.assertEqual(calls, [])

    async def test_concurrency_is_capped(self) -> None:
        active = 0
        peak = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return httpx.Response(200, content=b"x", headers={"content-type": "image/png"})

        async with AssetFetcher(max_concurrent=2, transport=httpx.MockTransport(handler)) as fetcher:
            await asyncio.gather(*(fetcher.fetch(f"https://example.com/{i}.png") for i in range(6)))

        self.assertEqual(fetcher.fetch_count, 6)
        self.assertLessEqual(peak, 2)


if __name__ == "__main__":
    unittest.main()

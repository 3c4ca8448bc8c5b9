from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Tuple

import httpx

Route = Tuple[int, bytes, str]


def make_transport(routes: Dict[str, Route]) -> Tuple[httpx.MockTransport, List[str]]:
    """MockTransport serving ``routes``; every other URL is a plain 404"""
    calls: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        calls.append(url)
        if url in routes:
            status, body, content_type = routes[url]
            return httpx.Response(status, content=body, headers={"content-type": content_type})
        return httpx.Response(404, content=b"missing", headers={"content-type": "text/plain"})

    return httpx.MockTransport(handler), calls


def failing_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)


class FakeAcquirer:
    def __init__(self, html: Optional[str], delay: float = 0.0) -> None:
        self.html = html
        self.delay = delay
        self.urls: List[str] = []

    async def acquire(self, url: str) -> Optional[str]:
        self.urls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.html

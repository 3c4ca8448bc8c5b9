"""
Page acquisition: a plain HTTP fetch first, then a headless Chromium render
(local Playwright, or a Browserbase session when credentials are configured)
that scrolls and pokes the page until lazy content has materialized.
"""

import logging
from typing import Optional, Tuple

import httpx
from browserbase import APIError, Browserbase
from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .config import ClonerSettings
from .events import EventLog
from .fetcher import BROWSER_USER_AGENT

logger = logging.getLogger(__name__)

PAGE_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Upgrade-Insecure-Requests": "1",
}

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]

VIEWPORT = {"width": 1920, "height": 1080}

REGION_SELECTORS = {
    "footer": ".footer, .site-footer, #footer, footer, [class*=footer], [id*=footer]",
    "contact": ".contact, .contact-info, [class*=contact], [id*=contact]",
    "social": ".social, .social-media, [class*=social], [id*=social]",
    "gallery": ".gallery, .slider, .carousel, [class*=gallery], [class*=slider]",
    "navigation": ".menu, .navigation, [class*=menu], [class*=nav]",
    "lazy": ".lazy, [data-src], [data-lazy], [loading=lazy]",
}

LAZY_SELECTOR = "[data-src], [data-lazy], .lazy, [loading=lazy]"

LOADING_INDICATORS = [".loading", ".spinner", ".loader", "[class*=loading]", ".ajax-loading", ".lazy-loading"]

NO_LOADING_INDICATORS_JS = (
    "(selectors) => !selectors.some((selector) => document.querySelector(selector))"
)

DISPATCH_LAZY_LOAD_JS = """(selector) => {
    document.querySelectorAll(selector).forEach((el) => {
        el.dispatchEvent(new Event('load', { bubbles: true }));
    });
}"""


class ContentAcquirer:
    """Produces the markup of a page, or None when every strategy fails"""

    def __init__(
        self,
        settings: Optional[ClonerSettings] = None,
        events: Optional[EventLog] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or ClonerSettings()
        self.events = events or EventLog()
        self.transport = transport

    async def acquire(self, url: str) -> Optional[str]:
        html = await self.fetch_static(url)
        if html:
            self.events.emit("acquire.static", url=url, length=len(html))
            return html

        self.events.emit("acquire.dynamic", url=url)
        html = await self.render_dynamic(url)
        if html:
            self.events.emit("acquire.rendered", url=url, length=len(html))
            return html

        self.events.emit("acquire.failed", logging.WARNING, url=url)
        return None

    async def fetch_static(self, url: str) -> Optional[str]:
        """
        Plain GET with browser-like headers. Network errors, non-2xx
        responses and blank bodies all count as "no markup".
        """
        try:
            async with httpx.AsyncClient(
                headers=PAGE_HEADERS,
                timeout=self.settings.download_timeout,
                follow_redirects=True,
                max_redirects=self.settings.max_redirects,
                transport=self.transport,
            ) as client:
                response = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self.events.emit("static.failed", logging.WARNING, url=url, error=f"{type(exc).__name__}: {exc}")
            return None

        if not response.is_success:
            self.events.emit("static.failed", logging.WARNING, url=url, status=response.status_code)
            return None
        if not response.text.strip():
            self.events.emit("static.failed", logging.WARNING, url=url, error="empty body")
            return None
        return response.text

    async def render_dynamic(self, url: str) -> Optional[str]:
        html = None
        try:
            async with async_playwright() as playwright:
                browser = await self._open_browser(playwright)
                try:
                    page = await self._open_page(browser)
                    await page.goto(url, wait_until="networkidle", timeout=self.settings.max_wait_ms)
                    await self.materialize(page)
                    html = await page.content()
                finally:
                    await browser.close()
                    self.events.emit("browser.closed", logging.DEBUG, url=url)
        except (PlaywrightError, APIError) as exc:
            self.events.emit("dynamic.failed", logging.WARNING, url=url, error=f"{type(exc).__name__}: {exc}")
            return None

        if not html or not html.strip():
            return None
        return html

    async def _open_browser(self, playwright: Playwright) -> Browser:
        if self.settings.browserbase_api_key:
            bb = Browserbase(api_key=self.settings.browserbase_api_key)
            session = bb.sessions.create(project_id=self.settings.browserbase_project_id)
            logger.info("Browserbase session %s (replay: https://browserbase.com/sessions/%s)", session.id, session.id)
            return await playwright.chromium.connect_over_cdp(session.connect_url)
        return await playwright.chromium.launch(headless=self.settings.headless, args=BROWSER_ARGS)

    async def _open_page(self, browser: Browser) -> Page:
        if browser.contexts:
            # Remote sessions come with a ready context and page
            context = browser.contexts[0]
            return context.pages[0] if context.pages else await context.new_page()
        context = await browser.new_context(
            user_agent=BROWSER_USER_AGENT,
            viewport=VIEWPORT,
            extra_http_headers={k: v for k, v in PAGE_HEADERS.items() if k != "User-Agent"},
        )
        return await context.new_page()

    async def materialize(self, page: Page) -> None:
        """Drive the page until lazily loaded regions have rendered"""
        await self._perform_scroll_cycles(page)
        await self._wait_for_regions(page)
        await self._simulate_interactions(page)
        await self._trigger_lazy_loading(page)
        await self._wait_for_network_idle(page)
        await self._wait_for_loading_indicators(page)

    async def _perform_scroll_cycles(self, page: Page) -> None:
        for cycle in range(1, self.settings.scroll_cycles + 1):
            logger.debug("Scroll cycle %d/%d", cycle, self.settings.scroll_cycles)
            await self._scroll_to_bottom(page, step=500, delay_ms=300)
            await page.evaluate("window.scrollTo(0, 0)")
            await page.wait_for_timeout(1000)
            await page.evaluate("window.scrollTo(0, document.body.scrollHeight / 2)")
            await page.wait_for_timeout(1000)
            await self._scroll_to_bottom(page, step=200, delay_ms=200)
            await page.wait_for_timeout(self.settings.scroll_delay_ms)

    async def _scroll_to_bottom(self, page: Page, step: int, delay_ms: int) -> int:
        height = await page.evaluate("document.body.scrollHeight")
        position = 0
        steps = 0
        while position < height:
            if steps >= self.settings.max_scroll_steps:
                self.events.emit("scroll.capped", logging.WARNING, steps=steps, height=height)
                break
            await page.evaluate(f"window.scrollBy(0, {step})")
            position += step
            steps += 1
            await page.wait_for_timeout(delay_ms)
            # Infinite-scroll pages grow while we scroll
            height = max(height, await page.evaluate("document.body.scrollHeight"))
        return height

    async def _wait_for_regions(self, page: Page) -> Tuple[str, ...]:
        found = []
        for region, selector in REGION_SELECTORS.items():
            try:
                await page.wait_for_selector(selector, timeout=self.settings.region_wait_ms)
            except PlaywrightTimeoutError:
                continue
            found.append(region)
        self.events.emit("regions.found", logging.DEBUG, regions=found)
        return tuple(found)

    async def _simulate_interactions(self, page: Page) -> None:
        await page.mouse.move(100, 100)
        await page.mouse.click(100, 100)
        await page.wait_for_timeout(500)
        await page.keyboard.press("ArrowDown")
        await page.keyboard.press("PageDown")
        await page.wait_for_timeout(500)

        triggers = await page.query_selector_all(LAZY_SELECTOR)
        for trigger in triggers[:5]:
            try:
                await trigger.click(timeout=2000)
            except PlaywrightError:
                continue
            await page.wait_for_timeout(200)

    async def _trigger_lazy_loading(self, page: Page) -> None:
        await page.evaluate(DISPATCH_LAZY_LOAD_JS, LAZY_SELECTOR)
        await page.wait_for_timeout(1000)

    async def _wait_for_network_idle(self, page: Page) -> bool:
        try:
            await page.wait_for_load_state("networkidle", timeout=self.settings.network_idle_timeout_ms)
        except PlaywrightTimeoutError:
            logger.info("Network did not go idle, continuing")
            return False
        return True

    async def _wait_for_loading_indicators(self, page: Page) -> bool:
        try:
            await page.wait_for_function(
                NO_LOADING_INDICATORS_JS,
                arg=LOADING_INDICATORS,
                timeout=self.settings.loading_indicator_timeout_ms,
            )
        except PlaywrightTimeoutError:
            logger.info("Some loading indicators may still be present")
            return False
        return True

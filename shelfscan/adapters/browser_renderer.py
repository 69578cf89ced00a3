"""
Browser render fallback for the shelfscan crawler.
Second fetch tier: a headless Chromium session with navigator spoofing
and resource blocking, used once direct HTTP stops producing pages.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple
from urllib.parse import urlparse

from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from shelfscan.adapters.http_transport import DEFAULT_USER_AGENTS
from shelfscan.adapters.proxy import ProxyProvider, build_playwright_proxy
from shelfscan.config import config
from shelfscan.context import RunContext
from shelfscan.utils.logger import LayerLogger


@dataclass
class StealthPolicy:
    """
    Stealth settings for rendered pages, expressed as data.

    spoofed_properties maps a navigator property to the JavaScript
    literal its getter should return.
    """
    spoofed_properties: Dict[str, str] = field(default_factory=lambda: {
        "webdriver": "false",
        "plugins": "[1, 2, 3, 4, 5]",
        "languages": "['en-US', 'en']",
    })
    chrome_runtime_stub: bool = True
    hide_webdriver_prototype: bool = True
    blocked_resource_types: FrozenSet[str] = frozenset({"image", "font", "stylesheet", "media"})
    blocked_url_fragments: Tuple[str, ...] = (
        "analytics",
        "tracking",
        "segment",
        "gtag",
        "facebook",
        "google-analytics",
        "doubleclick.net",
        "hotjar.com",
    )
    launch_args: List[str] = field(default_factory=lambda: [
        "--disable-blink-features=AutomationControlled",
        "--disable-dev-shm-usage",
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-infobars",
        "--disable-background-networking",
        "--disable-extensions",
        "--mute-audio",
        "--no-first-run",
        "--disable-gpu",
    ])
    extra_headers: Dict[str, str] = field(default_factory=lambda: {
        "Accept-Language": "en-US,en;q=0.9",
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    })

    def build_init_script(self) -> str:
        """JavaScript installed before any page script runs."""
        lines = []
        if self.hide_webdriver_prototype:
            lines.append("delete Object.getPrototypeOf(navigator).webdriver;")
        for name, value in self.spoofed_properties.items():
            lines.append(
                f"Object.defineProperty(navigator, '{name}', {{ get: () => {value} }});"
            )
        if self.chrome_runtime_stub:
            lines.append("window.chrome = { runtime: {} };")
        return "\n".join(lines)

    def should_block(self, resource_type: str, url: str) -> bool:
        """Whether a network request should be aborted."""
        if resource_type in self.blocked_resource_types:
            return True
        lowered = url.lower()
        return any(fragment in lowered for fragment in self.blocked_url_fragments)


@dataclass
class _BrowserSession:
    """One launched browser and its usage counters."""
    browser: Browser
    pages_served: int = 0
    active: int = 0
    retired: bool = False


class BrowserRenderer:
    """
    Playwright-backed page renderer.

    - Concurrency is capped by a semaphore (browser contexts are expensive)
    - A browser is retired after serving a bounded number of pages
    - Every page gets a fresh context seeded from the run cookie jar
    - Navigation waits for DOM-ready plus a short settle delay, never networkidle
    """

    def __init__(
        self,
        context: RunContext,
        policy: Optional[StealthPolicy] = None,
        proxy_provider: Optional[ProxyProvider] = None,
        headless: bool = config.HEADLESS,
        nav_timeout: float = config.RENDER_NAV_TIMEOUT,
        settle_ms: int = config.RENDER_SETTLE_MS,
        max_concurrency: int = config.RENDER_CONCURRENCY,
        recycle_after: int = config.RENDER_RECYCLE_AFTER,
    ):
        self.context = context
        self.policy = policy or StealthPolicy()
        self.proxy_provider = proxy_provider
        self.headless = headless
        self.nav_timeout = nav_timeout
        self.settle_ms = settle_ms
        self.max_concurrency = max(1, max_concurrency)
        self.recycle_after = max(1, recycle_after)
        self.cookie_domain = urlparse(config.SITE_BASE_URL).hostname or ""
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._lock = asyncio.Lock()
        self._playwright = None
        self._session: Optional[_BrowserSession] = None
        self.logger = LayerLogger("browser_renderer")

    async def render_page(self, url: str) -> Optional[str]:
        """
        Render a page in the browser and return its final HTML.

        Returns:
            HTML string, or None on timeout/navigation failure
        """
        async with self._semaphore:
            self.logger.log_action("render_page", "started", url=url)
            try:
                session = await self._acquire_session()
            except PlaywrightError as e:
                self.logger.log_error(
                    f"Browser launch failed: {str(e)}",
                    error_type="browser_launch",
                    url=url,
                )
                return None

            browser_context = None
            try:
                browser_context = await session.browser.new_context(
                    user_agent=random.choice(DEFAULT_USER_AGENTS),
                    locale="en-US",
                    viewport={"width": 1366, "height": 900},
                    extra_http_headers=self.policy.extra_headers,
                    proxy=self._proxy_settings(),
                )
                cookies = self.context.browser_cookies(self.cookie_domain)
                if cookies:
                    await browser_context.add_cookies(cookies)
                await browser_context.add_init_script(self.policy.build_init_script())
                await browser_context.route("**/*", self._route)

                page = await browser_context.new_page()
                response = await page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=self.nav_timeout * 1000,
                )
                # Hydration fills the state blob after DOM-ready
                await page.wait_for_timeout(self.settle_ms)
                html = await page.content()

                self.context.absorb_browser_cookies(await browser_context.cookies())
                self.logger.log_fetch(
                    url=url,
                    method="render",
                    status_code=response.status if response else None,
                    result="success",
                    content_length=len(html),
                )
                return html

            except PlaywrightTimeoutError as e:
                self.logger.log_error(
                    f"Navigation timeout: {str(e)}",
                    error_type="render_timeout",
                    url=url,
                )
                return None
            except PlaywrightError as e:
                self.logger.log_error(
                    f"Render failed: {str(e)}",
                    error_type="render_error",
                    url=url,
                )
                return None
            finally:
                if browser_context is not None:
                    try:
                        await browser_context.close()
                    except PlaywrightError as e:
                        self.logger.log_error(
                            f"Context close failed: {str(e)}",
                            error_type="render_cleanup",
                            url=url,
                        )
                await self._release_session(session)

    async def close(self):
        """Close the active browser and stop Playwright."""
        async with self._lock:
            if self._session is not None:
                await self._close_browser(self._session)
                self._session = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    async def _route(self, route: Route):
        request = route.request
        if self.policy.should_block(request.resource_type, request.url):
            await route.abort()
        else:
            await route.continue_()

    def _proxy_settings(self) -> Optional[Dict[str, str]]:
        if not self.proxy_provider:
            return None
        return build_playwright_proxy(self.proxy_provider.new_url())

    async def _acquire_session(self) -> _BrowserSession:
        async with self._lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()

            session = self._session
            if session is None or session.pages_served >= self.recycle_after:
                if session is not None:
                    self.logger.log_decision(
                        decision="recycle_browser",
                        reason=f"browser served {session.pages_served} pages",
                    )
                    session.retired = True
                    if session.active == 0:
                        await self._close_browser(session)
                browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=self.policy.launch_args,
                )
                session = _BrowserSession(browser=browser)
                self._session = session

            session.pages_served += 1
            session.active += 1
            return session

    async def _release_session(self, session: _BrowserSession):
        async with self._lock:
            session.active -= 1
            if session.retired and session.active == 0:
                await self._close_browser(session)

    async def _close_browser(self, session: _BrowserSession):
        try:
            await session.browser.close()
        except PlaywrightError as e:
            self.logger.log_error(
                f"Browser close failed: {str(e)}",
                error_type="render_cleanup",
            )

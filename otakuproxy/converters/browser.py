import asyncio
import random
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from playwright.async_api import async_playwright, Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from otakuproxy.config.settings import settings
from otakuproxy.converters.base import BaseConverter, ConversionResult
from otakuproxy.utils.errors import AutomationError, AutomationTimeoutError, UpstreamError
from otakuproxy.utils.logger import browser_logger

# ===========================
# Selectors
# ===========================
INPUT_SELECTOR = 'input[type="text"][placeholder*="instagram"]'
SUBMIT_SELECTOR = 'button:has-text("Download"), button:has-text("download")'
CONVERT_ENDPOINT = "/api/convert"

ContextFactory = Callable[[], Awaitable[Any]]


# ===========================
# Browser Page Pool
# ===========================
class BrowserPool:
    """
    Owns one persistent browser context and hands out fresh pages from it.

    At most ``max_pages`` pages are checked out at once; extra callers wait
    on the semaphore. Pages are never shared and never reused: every checkout
    opens a new page and closes it on the way out, so a page left in an
    unknown state by a timeout is discarded.
    """

    def __init__(self, max_pages: Optional[int] = None, context_factory: Optional[ContextFactory] = None):
        self.max_pages = max_pages or settings.BROWSER_MAX_PAGES
        self._semaphore = asyncio.Semaphore(self.max_pages)
        self._launch_lock = asyncio.Lock()
        self._context_factory = context_factory
        self._playwright = None
        self._context = None
        self._active_pages = 0

    @property
    def is_running(self) -> bool:
        return self._context is not None

    @property
    def active_pages(self) -> int:
        return self._active_pages

    async def _launch(self):
        if self._context_factory:
            return await self._context_factory()

        browser_logger.info(f"Launching browser context ({settings.BROWSER_USER_DATA_DIR})")
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch_persistent_context(
            settings.BROWSER_USER_DATA_DIR,
            headless=settings.BROWSER_HEADLESS,
            viewport={"width": 1920, "height": 1080},
            user_agent=settings.BROWSER_USER_AGENT,
            locale=settings.BROWSER_LOCALE,
            timezone_id=settings.BROWSER_TIMEZONE,
            extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
        )

    async def get_context(self):
        async with self._launch_lock:
            if self._context is None:
                context = await self._launch()
                context.on("close", lambda _: self._forget_context(context))
                self._context = context
            return self._context

    def _forget_context(self, context):
        if self._context is context:
            browser_logger.debug("Browser context closed")
            self._context = None

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Any]:
        async with self._semaphore:
            context = await self.get_context()
            page = await context.new_page()
            self._active_pages += 1
            try:
                page.set_default_timeout(settings.BROWSER_PAGE_TIMEOUT * 1000)
                yield page
            finally:
                self._active_pages -= 1
                try:
                    if not page.is_closed():
                        await page.close()
                except PlaywrightError as e:
                    browser_logger.debug(f"Page close failed: {type(e).__name__}")

    async def close(self):
        async with self._launch_lock:
            if self._context is not None:
                try:
                    await self._context.close()
                except PlaywrightError as e:
                    browser_logger.error(f"Context close failed: {type(e).__name__}")
                self._context = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        browser_logger.debug("Browser pool closed")


# ===========================
# Browser Automation Converter
# ===========================
class BrowserAutomationConverter(BaseConverter):

    def __init__(self, pool: Optional[BrowserPool] = None):
        self.pool = pool or BrowserPool()

    def get_strategy_name(self) -> str:
        return "browser"

    @staticmethod
    async def _wait_for(page, selector: str, label: str):
        try:
            return await page.wait_for_selector(selector)
        except PlaywrightTimeoutError as e:
            browser_logger.error(f"{label} not found - provider page may have changed")
            raise AutomationError(f"{label} not found ({selector})") from e

    @staticmethod
    def _is_convert_response(response) -> bool:
        return CONVERT_ENDPOINT in response.url and response.request.method == "POST"

    async def convert(self, resource_url: str) -> ConversionResult:
        form_url = f"{settings.FASTDL_URL}{settings.FASTDL_FORM_PATH}"

        try:
            async with self.pool.page() as page:
                browser_logger.debug(f"Navigating: {form_url}")
                await page.goto(form_url, wait_until="domcontentloaded")

                await page.wait_for_timeout(random.uniform(500, 1500))

                input_box = await self._wait_for(page, INPUT_SELECTOR, "Input field")
                await input_box.fill(resource_url)

                button = await self._wait_for(page, SUBMIT_SELECTOR, "Download button")

                async with page.expect_response(self._is_convert_response) as response_info:
                    await button.click()
                response = await response_info.value

                if not response.ok:
                    browser_logger.error(f"Intercepted HTTP {response.status}")
                    raise UpstreamError(f"Conversion endpoint returned HTTP {response.status}",
                                        response.status, await response.text())

                try:
                    return await response.json()
                except (PlaywrightError, ValueError) as e:
                    raise UpstreamError("Conversion endpoint returned a non-JSON body",
                                        response.status, await response.text()) from e

        except PlaywrightTimeoutError as e:
            browser_logger.error("Page operation timed out")
            raise AutomationTimeoutError(f"Page operation timed out after {settings.BROWSER_PAGE_TIMEOUT}s") from e
        except PlaywrightError as e:
            browser_logger.error(f"Browser error: {type(e).__name__}")
            raise AutomationError(f"Browser error: {e.message}") from e

    async def close(self):
        await self.pool.close()

"""Explicitly owned Playwright browser sessions."""
from __future__ import annotations

from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from crewapply.log import get_logger
from crewapply.proxy import playwright_proxy

log = get_logger(__name__)

VIEWPORT = {"width": 1280, "height": 900}
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class SessionError(RuntimeError):
    """The browser, context or page could not be created."""


class BrowserSession:
    """One Chromium browser, context and page owned by a single task.

    Use as ``async with BrowserSession(...) as session:``; ``close`` runs on
    exit whether or not ``open`` got all the way through.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        proxy: str | None = None,
        timeout_ms: int = 30_000,
    ) -> None:
        self.headless = headless
        self.proxy = proxy
        self.timeout_ms = timeout_ms
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self.page: Any = None

    @property
    def is_open(self) -> bool:
        return self.page is not None

    async def open(self) -> Any:
        launch_args: dict[str, Any] = {
            "headless": self.headless,
            "args": ["--no-sandbox", "--disable-setuid-sandbox"],
        }
        if self.proxy:
            launch_args["proxy"] = playwright_proxy(self.proxy)
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(**launch_args)
            self._context = await self._browser.new_context(
                viewport=VIEWPORT, user_agent=USER_AGENT,
            )
            self.page = await self._context.new_page()
            self.page.set_default_timeout(self.timeout_ms)
        except PlaywrightError as e:
            await self.close()
            raise SessionError(f"Failed to start browser: {e}") from e
        log.debug("Browser session opened (headless=%s, proxy=%s)", self.headless, bool(self.proxy))
        return self.page

    async def close(self) -> None:
        """Release page, context, browser and driver; safe to call repeatedly."""
        for attr, method in (("_context", "close"), ("_browser", "close"), ("_playwright", "stop")):
            handle = getattr(self, attr)
            if handle is None:
                continue
            setattr(self, attr, None)
            try:
                await getattr(handle, method)()
            except PlaywrightError as e:
                log.debug("Ignoring error while closing %s: %s", attr.strip("_"), e)
        self.page = None

    async def __aenter__(self) -> "BrowserSession":
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

# src/browser_session.py
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, Route, async_playwright

log = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

# navigator.webdriver を隠す
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
window.chrome = { runtime: {} };
"""


class BrowserSession:
    """
    Playwright / Chromium の所有者。
    - async with で開始・終了（例外時もクローズ）
    - page() はソース単位・検索単位の使い捨てコンテキスト＋ページ
    """

    def __init__(self, headless: Optional[bool] = None):
        if headless is None:
            headless = os.getenv("HEADLESS", "true").lower() == "true"
        self.headless = headless
        raw_block = os.getenv("BLOCK_RESOURCE_TYPES", "image,media,font")
        self.block_resource_types = {t.strip() for t in raw_block.split(",") if t.strip()}
        self._pw: Optional[Playwright] = None
        self.browser: Optional[Browser] = None

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        if self.browser:
            return
        self._pw = await async_playwright().start()
        try:
            self.browser = await self._pw.chromium.launch(
                headless=self.headless,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--no-sandbox",
                    "--disable-dev-shm-usage",  # /dev/shm不足でのクラッシュ回避
                ],
            )
        except Exception:
            await self._pw.stop()
            self._pw = None
            raise
        log.info("browser launched (headless=%s)", self.headless)

    async def new_context(self) -> BrowserContext:
        if not self.browser:
            raise RuntimeError("BrowserSession is not started")
        context = await self.browser.new_context(
            user_agent=USER_AGENT,
            locale="ja-JP",
            timezone_id="Asia/Tokyo",
            viewport={"width": 1920, "height": 1080},
            ignore_https_errors=True,
            bypass_csp=True,
        )
        await context.add_init_script(STEALTH_INIT_SCRIPT)
        if self.block_resource_types:
            await context.route("**/*", self._handle_route)
        return context

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        context = await self.new_context()
        try:
            page = await context.new_page()
            try:
                yield page
            finally:
                try:
                    await page.close()
                except Exception:
                    log.debug("page close failed", exc_info=True)
        finally:
            try:
                await context.close()
            except Exception:
                log.warning("context close failed", exc_info=True)

    async def _handle_route(self, route: Route):
        if route.request.resource_type in self.block_resource_types:
            await route.abort()
        else:
            await route.continue_()

    async def close(self) -> None:
        try:
            if self.browser:
                await self.browser.close()
        finally:
            if self._pw:
                await self._pw.stop()
        self._pw = None
        self.browser = None

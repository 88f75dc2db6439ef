# src/page_utils.py
from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from typing import Awaitable, Callable, Optional, Sequence, Tuple, Type, TypeVar

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

log = logging.getLogger(__name__)

T = TypeVar("T")
LogFn = Callable[[str], None]

EXTRA_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "ja,en-US;q=0.9,en;q=0.8",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Ch-Ua": '"Google Chrome";v="131", "Chromium";v="131"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Upgrade-Insecure-Requests": "1",
}

_COUNT_IN_TEXT_RE = re.compile(r"(\d{1,3}(?:,\d{3})*|\d+)\s*件")
_FIRST_NUMBER_RE = re.compile(r"([0-9,]+)")


def _emit(log_fn: Optional[LogFn], msg: str) -> None:
    log.info(msg)
    if log_fn:
        log_fn(msg)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    delay_sec: float = 3.0,
    retry_on: Tuple[Type[BaseException], ...] = (PlaywrightError,),
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
) -> T:
    """fn を最大 max_retries 回実行。待機は delay_sec × 試行回数（線形バックオフ）。"""
    attempt = 1
    while True:
        try:
            return await fn()
        except retry_on as e:
            if attempt >= max_retries:
                raise
            if on_retry:
                on_retry(e, attempt)
            await asyncio.sleep(delay_sec * attempt)
            attempt += 1


async def load_page_with_retry(
    page: Page,
    url: str,
    *,
    max_retries: int = 3,
    timeout_ms: int = 30000,
    wait_until: str = "domcontentloaded",
    wait_for_selector: Optional[str] = None,
    selector_timeout_ms: int = 15000,
    delay_sec: float = 3.0,
    log_fn: Optional[LogFn] = None,
) -> bool:
    async def _load() -> bool:
        await page.set_extra_http_headers(EXTRA_HEADERS)
        await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        await asyncio.sleep(random.uniform(1.0, 2.0))
        if wait_for_selector:
            try:
                await page.wait_for_selector(wait_for_selector, timeout=selector_timeout_ms)
            except PlaywrightError:
                _emit(log_fn, f'Warning: selector "{wait_for_selector}" not found')
        return True

    def _on_retry(e: BaseException, attempt: int) -> None:
        _emit(log_fn, f"Error loading page ({attempt}/{max_retries}): {e}")

    return await with_retry(_load, max_retries=max_retries, delay_sec=delay_sec, on_retry=_on_retry)


async def wait_for_any_selector(
    page: Page,
    selectors: Sequence[str],
    timeout_ms: int = 10000,
    poll_ms: int = 500,
    log_fn: Optional[LogFn] = None,
) -> Optional[str]:
    """いずれかのセレクタが1件以上になるまでポーリングし、見つかったセレクタを返す"""
    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        for selector in selectors:
            try:
                count = await page.locator(selector).count()
            except PlaywrightError:
                continue
            if count > 0:
                _emit(log_fn, f"Found {count} elements with selector: {selector}")
                return selector
        if time.monotonic() >= deadline:
            return None
        await asyncio.sleep(poll_ms / 1000)


async def first_text(scope, selectors: Sequence[str]) -> str:
    """Page/Locator 上で最初に見つかった要素のテキスト（無ければ空文字）"""
    for selector in selectors:
        try:
            loc = scope.locator(selector).first
            if await loc.count() > 0:
                text = (await loc.text_content()) or ""
                text = " ".join(text.split())
                if text:
                    return text
        except PlaywrightError:
            continue
    return ""


async def first_attr(scope, selectors: Sequence[str], name: str) -> str:
    for selector in selectors:
        try:
            loc = scope.locator(selector).first
            if await loc.count() > 0:
                value = await loc.get_attribute(name)
                if value:
                    return value.strip()
        except PlaywrightError:
            continue
    return ""


async def body_text(page: Page) -> str:
    try:
        return await page.evaluate("() => document.body ? document.body.innerText : ''")
    except PlaywrightError:
        return ""


async def extract_total_count(
    page: Page, selectors: Sequence[str], log_fn: Optional[LogFn] = None
) -> Optional[int]:
    for selector in selectors:
        text = await first_text(page, [selector])
        m = _FIRST_NUMBER_RE.search(text)
        if m:
            num = int(m.group(1).replace(",", "") or 0)
            if num > 0:
                _emit(log_fn, f"Total count: {num}")
                return num

    m = _COUNT_IN_TEXT_RE.search(await body_text(page))
    if m:
        num = int(m.group(1).replace(",", ""))
        if num > 0:
            _emit(log_fn, f"Total count (from page text): {num}")
            return num
    return None


def looks_not_found(pattern: re.Pattern, title: str, text: str, limit: int = 1000) -> bool:
    """タイトルか本文先頭が 404 系の文言に当たるか"""
    return bool(pattern.search(title or "") or pattern.search((text or "")[:limit]))

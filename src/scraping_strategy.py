# src/scraping_strategy.py
from __future__ import annotations

import asyncio
import logging
import os
import re
import urllib.parse
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from src.contact_extractor import ContactExtractor
from src.label_lookup import LabelLookup
from src.models import STEP2_COMPLETED, JobListing, RawListing, ScrapingParams
from src.page_utils import (
    body_text,
    extract_total_count,
    first_attr,
    first_text,
    load_page_with_retry,
    looks_not_found,
    wait_for_any_selector,
)
from src.rank_classifier import FALLBACK_RANK, RankResult
from src.text_normalizer import (
    clean_company_name,
    extract_prefecture,
    is_company_match,
    normalize_address,
    normalize_area,
    normalize_employees,
    normalize_industry,
    normalize_phone,
    squash_ws,
)

log = logging.getLogger(__name__)

LogFn = Callable[[str], None]
CountFn = Callable[[int], None]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


class ScrapingStrategy:
    """
    求人サイトごとの抽出ストラテジーの基底。
    scrape() は RawListing を1件ずつ返す非同期ジェネレータで、再開はできない。
    サイト差分（URL、セレクタ、詳細ページ抽出、ランク判定）はサブクラスで実装する。
    """

    source = ""
    host = ""
    results_url_marker = ""
    not_found_re = re.compile(r"404|ページが見つかりません")

    default_request_interval_sec = 3.0
    default_page_interval_sec = 5.0
    default_max_pages = 10
    nav_timeout_ms = 30000
    ready_timeout_ms = 15000
    search_wait_until = "domcontentloaded"

    card_selectors: Sequence[str] = ()
    link_selectors: Sequence[str] = ()
    company_selectors: Sequence[str] = ()
    title_selectors: Sequence[str] = ()
    next_page_selectors: Sequence[str] = ()
    total_count_selectors: Sequence[str] = ()

    # 社名検索（更新チェック）用
    company_search_card_selectors: Sequence[str] = ()
    company_search_name_selectors: Sequence[str] = ()
    company_search_title_selectors: Sequence[str] = ()
    company_search_link_selectors: Sequence[str] = ("a[href]",)

    def __init__(
        self,
        *,
        request_interval_sec: Optional[float] = None,
        page_interval_sec: Optional[float] = None,
        max_pages: Optional[int] = None,
        rank_classifier: Optional[Callable[..., RankResult]] = None,
        lookup_factory: Callable[[str], LabelLookup] = LabelLookup,
        contact_extractor: Optional[ContactExtractor] = None,
        contact_pass: Optional[bool] = None,
    ):
        prefix = self.source.upper()
        self.request_interval_sec = (
            request_interval_sec
            if request_interval_sec is not None
            else _env_float(f"{prefix}_REQUEST_INTERVAL_SEC", self.default_request_interval_sec)
        )
        self.page_interval_sec = (
            page_interval_sec
            if page_interval_sec is not None
            else _env_float(f"{prefix}_PAGE_INTERVAL_SEC", self.default_page_interval_sec)
        )
        self.max_pages = max_pages or _env_int(f"{prefix}_MAX_PAGES", self.default_max_pages)
        self.rank_classifier = rank_classifier or self.default_rank_classifier
        self.lookup_factory = lookup_factory
        if contact_pass is None:
            contact_pass = os.getenv("CONTACT_PASS", "true").lower() == "true"
        self.contact_pass = contact_pass
        self.contact_extractor = contact_extractor or ContactExtractor()
        self.item_errors = 0

    # ---------- サブクラスで実装 ----------
    @staticmethod
    def default_rank_classifier(**signals) -> RankResult:
        return FALLBACK_RANK

    def build_search_url(self, params: ScrapingParams) -> str:
        raise NotImplementedError

    def build_company_search_url(self, company_name: str) -> str:
        raise NotImplementedError

    async def _classify_card(self, card: Locator, index: int, page_num: int, href: str) -> RankResult:
        raise NotImplementedError

    async def _extract_detail(self, page: Page, card: Dict[str, Any], log_fn: Optional[LogFn]) -> Optional[RawListing]:
        raise NotImplementedError

    # ---------- 共通処理 ----------
    def _log(self, log_fn: Optional[LogFn], msg: str) -> None:
        log.info("[%s] %s", self.source, msg)
        if log_fn:
            log_fn(f"[{self.source}] {msg}")

    def _normalize_detail_url(self, href: Optional[str]) -> Optional[str]:
        if not href:
            return None
        href = href.strip()
        if href.startswith("javascript:"):
            return None
        url = urllib.parse.urljoin(f"https://{self.host}/", href)
        if self.host not in urllib.parse.urlparse(url).netloc:
            return None
        return url

    def _is_results_url(self, url: str) -> bool:
        return bool(self.results_url_marker) and self.results_url_marker in (url or "")

    async def _prepare_page(self, page: Page) -> None:
        """検索前のページ設定（ヘッダ等）。必要なサイトだけ上書き。"""
        return None

    async def _open_search(self, page: Page, url: str, log_fn: Optional[LogFn]) -> Optional[str]:
        await load_page_with_retry(
            page,
            url,
            timeout_ms=self.nav_timeout_ms,
            wait_until=self.search_wait_until,
            log_fn=lambda m: self._log(log_fn, m),
        )
        selector = await wait_for_any_selector(page, self.card_selectors, timeout_ms=self.ready_timeout_ms)
        if not selector:
            self._log(log_fn, "No job cards found with any known selector")
        return selector

    async def _is_not_found(self, page: Page) -> bool:
        try:
            title = await page.title()
        except PlaywrightError:
            title = ""
        return looks_not_found(self.not_found_re, title, await body_text(page))

    async def _card_href(self, card: Locator, selectors: Sequence[str]) -> str:
        return await first_attr(card, selectors, "href")

    async def _card_extras(self, card: Locator) -> Dict[str, Any]:
        return {}

    async def _collect_cards(self, page: Page, selector: str, page_num: int, offset: int, log_fn: Optional[LogFn]) -> List[Dict[str, Any]]:
        cards: List[Dict[str, Any]] = []
        locators = await page.locator(selector).all()
        self._log(log_fn, f"Found {len(locators)} job cards on page {page_num}")
        for idx, card in enumerate(locators):
            try:
                url = self._normalize_detail_url(await self._card_href(card, self.link_selectors))
                if not url:
                    continue
                try:
                    rank = await self._classify_card(card, offset + idx, page_num, url)
                except PlaywrightError:
                    rank = FALLBACK_RANK
                info = {
                    "url": url,
                    "company_name": await first_text(card, self.company_selectors),
                    "job_title": await first_text(card, self.title_selectors),
                    "rank": rank,
                }
                info.update(await self._card_extras(card))
                cards.append(info)
            except PlaywrightError as e:
                self._log(log_fn, f"Error reading job card: {e}")
        return cards

    async def _return_to_results(self, page: Page, results_url: str, log_fn: Optional[LogFn]) -> bool:
        """
        一覧へ戻る。戻れなければ一覧URLを読み直して False を返す
        （呼び出し側はそのページの残りを打ち切る）。
        """
        try:
            for _ in range(3):
                if self._is_results_url(page.url):
                    return True
                await page.go_back(wait_until="domcontentloaded", timeout=self.nav_timeout_ms)
            if self._is_results_url(page.url):
                return True
        except PlaywrightError as e:
            self._log(log_fn, f"Back navigation failed: {e}")
        self._log(log_fn, "Reloading search results")
        await page.goto(results_url, wait_until="domcontentloaded", timeout=self.nav_timeout_ms)
        return False

    async def _go_next_page(self, page: Page, log_fn: Optional[LogFn]) -> bool:
        for selector in self.next_page_selectors:
            btn = page.locator(selector).first
            try:
                if await btn.count() == 0 or not await btn.is_visible():
                    continue
                if (await btn.get_attribute("aria-disabled")) == "true":
                    self._log(log_fn, "Next button is disabled")
                    return False
                next_url = self._normalize_detail_url(await btn.get_attribute("href"))
                if next_url:
                    self._log(log_fn, f"Navigating to next page: {next_url}")
                    await page.goto(next_url, wait_until="domcontentloaded", timeout=self.nav_timeout_ms)
                else:
                    await btn.click()
                    await page.wait_for_load_state("domcontentloaded")
                return await wait_for_any_selector(page, self.card_selectors, timeout_ms=self.ready_timeout_ms) is not None
            except PlaywrightError as e:
                self._log(log_fn, f"Error navigating to next page: {e}")
                return False
        self._log(log_fn, "No next page button found")
        return False

    async def _enrich_contacts(self, page: Page, listing: RawListing, log_fn: Optional[LogFn]) -> None:
        """企業HPから電話・メールを補完（一覧の履歴を崩さないよう別タブで）"""
        if not (self.contact_pass and listing.homepage_url):
            return
        if listing.phone and listing.email:
            return
        contact_page = await page.context.new_page()
        try:
            info = await self.contact_extractor.extract(contact_page, listing.homepage_url, log_fn)
        finally:
            try:
                await contact_page.close()
            except PlaywrightError:
                pass
        if info.phone_number and not listing.phone:
            listing.phone = info.phone_number
        if info.email and not listing.email:
            listing.email = info.email
        if info.contact_page_url and not listing.contact_page_url:
            listing.contact_page_url = info.contact_page_url
        if info.phone_number or info.email:
            listing.scrape_status = STEP2_COMPLETED

    def _finalize(self, listing: RawListing) -> RawListing:
        listing.company_name = clean_company_name(listing.company_name)
        listing.job_title = squash_ws(listing.job_title)
        listing.address = normalize_address(listing.address)
        listing.area = normalize_area(listing.area) or extract_prefecture(listing.address)
        listing.industry = normalize_industry(listing.industry)
        listing.employees = normalize_employees(listing.employees)
        listing.phone = normalize_phone(listing.phone)
        listing.salary_text = squash_ws(listing.salary_text)
        return listing

    async def scrape(
        self,
        page: Page,
        params: ScrapingParams,
        log_fn: Optional[LogFn] = None,
        on_total_count: Optional[CountFn] = None,
    ) -> AsyncIterator[RawListing]:
        self.item_errors = 0
        await self._prepare_page(page)
        search_url = self.build_search_url(params)
        self._log(log_fn, f"Navigating to: {search_url}")
        selector = await self._open_search(page, search_url, log_fn)
        if not selector:
            return

        if on_total_count:
            total = await extract_total_count(page, self.total_count_selectors)
            if total:
                on_total_count(total)

        results_url = page.url or search_url
        seen: set[str] = set()
        offset = 0
        for page_num in range(1, self.max_pages + 1):
            self._log(log_fn, f"Processing page {page_num}")
            cards = await self._collect_cards(page, selector, page_num, offset, log_fn)
            offset += len(cards)

            yielded = 0
            for card in cards:
                if card["url"] in seen:
                    continue
                seen.add(card["url"])
                await asyncio.sleep(self.request_interval_sec)

                listing: Optional[RawListing] = None
                try:
                    target = card.get("detail_url") or card["url"]
                    self._log(log_fn, f"Visiting: {target}")
                    await page.goto(target, wait_until="domcontentloaded", timeout=self.nav_timeout_ms)
                    if await self._is_not_found(page):
                        self._log(log_fn, "Page not found or listing closed, skipping")
                    else:
                        listing = await self._extract_detail(page, card, log_fn)
                        if listing is not None:
                            await self._enrich_contacts(page, listing, log_fn)
                except Exception as e:
                    self.item_errors += 1
                    self._log(log_fn, f"Error scraping job: {e}")
                    log.debug("item error", exc_info=True)
                    listing = None

                returned = await self._return_to_results(page, results_url, log_fn)
                if listing is not None:
                    yielded += 1
                    yield self._finalize(listing)
                if not returned:
                    self._log(log_fn, "Aborting current results page")
                    break

            if yielded == 0:
                self._log(log_fn, f"No listings extracted on page {page_num}, stopping")
                break
            if page_num >= self.max_pages:
                self._log(log_fn, f"Reached max pages ({self.max_pages})")
                break
            await asyncio.sleep(self.page_interval_sec)
            if not await self._go_next_page(page, log_fn):
                break
            results_url = page.url

    async def search_by_company(self, page: Page, company_name: str, log_fn: Optional[LogFn] = None) -> List[JobListing]:
        await self._prepare_page(page)
        url = self.build_company_search_url(company_name)
        self._log(log_fn, f"Searching for: {company_name}")
        await page.goto(url, wait_until="domcontentloaded", timeout=self.nav_timeout_ms)
        selector = await wait_for_any_selector(page, self.company_search_card_selectors, timeout_ms=10000)
        if not selector:
            return []

        results: List[JobListing] = []
        for idx, card in enumerate(await page.locator(selector).all()):
            name = await first_text(card, self.company_search_name_selectors)
            if not is_company_match(company_name, name):
                continue
            href = self._normalize_detail_url(await self._card_href(card, self.company_search_link_selectors)) or ""
            try:
                rank = await self._classify_card(card, idx, 1, href)
            except PlaywrightError:
                rank = FALLBACK_RANK
            results.append(
                JobListing(
                    source=self.source,
                    title=await first_text(card, self.company_search_title_selectors),
                    company=name,
                    url=href,
                    rank=rank.rank,
                )
            )
        self._log(log_fn, f"Found {len(results)} matching jobs")
        return results

    def close(self) -> None:
        self.contact_extractor.close()


def create_strategy(source: str, **kwargs) -> ScrapingStrategy:
    from src.doda_strategy import DodaStrategy
    from src.mynavi_strategy import MynaviStrategy
    from src.rikunabi_strategy import RikunabiStrategy

    classes = {
        "mynavi": MynaviStrategy,
        "doda": DodaStrategy,
        "rikunabi": RikunabiStrategy,
    }
    try:
        cls = classes[source]
    except KeyError:
        raise ValueError(f"Unknown source: {source}") from None
    return cls(**kwargs)

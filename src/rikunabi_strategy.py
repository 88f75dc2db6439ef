# src/rikunabi_strategy.py
from __future__ import annotations

import asyncio
import json
import urllib.parse
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from src.browser_session import STEALTH_INIT_SCRIPT
from src.models import RawListing, ScrapingParams
from src.page_utils import EXTRA_HEADERS, first_text, load_page_with_retry, wait_for_any_selector
from src.rank_classifier import RankResult, classify_rikunabi
from src.scraping_strategy import LogFn, ScrapingStrategy
from src.text_normalizer import PREFECTURE_ROMAJI

SEARCH_BASE_URL = "https://next.rikunabi.com/job_search/"

JOB_TYPE_SLUGS = {
    "営業": "selling",
    "企画/マーケティング": "promotion",
    "コーポレートスタッフ": "corporatestaff",
    "SCM/生産管理/購買/物流": "scm",
    "事務/受付/秘書/翻訳": "administration",
    "小売販売/流通": "retail",
    "サービス/接客": "hospitality",
    "飲食": "foodservice",
    "コンサル/士業/リサーチャー": "consulting",
    "IT・Web・ゲームエンジニア": "it",
    "クリエイティブ/デザイン職": "design",
    "建築/土木/プラント専門職": "building",
    "不動産専門職": "realestate",
    "機械/電気/電子製品専門職": "electronic",
    "化学/素材専門職": "chemicals",
    "化粧品/日用品/アパレル専門職": "consumergoods",
    "医薬品専門職": "pharmaceuticals",
    "医療機器/理化学機器専門職": "medicaldevices",
    "医療/福祉専門職": "medical",
    "金融専門職": "financial",
    "食品/香料/飼料専門職": "culinary",
    "出版/メディア/エンタメ専門職": "broadcasting",
    "インフラ専門職": "infrastructure",
    "交通/運輸/物流専門職": "transportation",
    "人材サービス専門職": "recruitment",
    "教育/保育専門職": "instruction",
    "エグゼクティブ": "executive",
    "学術研究": "analysis",
    "公務員/団体職員/農林水産": "publicsector",
    # 統合カテゴリ
    "営業・販売": "selling",
    "経営・事業企画・人事・事務": "corporatestaff",
    "モノづくりエンジニア": "electronic",
    "コンサルタント・士業・金融": "consulting",
    "サービス・販売・接客": "hospitality",
    "不動産・建設": "building",
    "物流・運輸・運転": "transportation",
    "医療・福祉・介護": "medical",
    "クリエイティブ・マスコミ": "design",
    "教育・保育": "instruction",
    "その他": "publicsector",
}

HOMEPAGE_LABELS = ("企業HP", "ホームページ", "HP", "企業ホームページ", "WEBサイト", "Webサイト", "公式サイト")


def extract_published_date(html: str) -> Optional[str]:
    """__NEXT_DATA__ の datePublished（ミリ秒）を ISO 文字列で"""
    soup = BeautifulSoup(html or "", "html.parser")
    tag = soup.find("script", id="__NEXT_DATA__")
    if not tag or not tag.string:
        return None
    try:
        data = json.loads(tag.string)
    except ValueError:
        return None
    props = (data.get("props") or {}).get("pageProps") or {}
    ts = (((props.get("job") or {}).get("lettice") or {}).get("letticeLogBase") or {}).get("datePublished")
    if not ts:
        ts = (props.get("jobData") or {}).get("datePublished")
    if not isinstance(ts, (int, float)):
        return None
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).isoformat()


class RikunabiStrategy(ScrapingStrategy):
    source = "rikunabi"
    host = "next.rikunabi.com"
    results_url_marker = "/job_search/"

    default_request_interval_sec = 3.0
    default_page_interval_sec = 5.0
    default_max_pages = 5

    card_selectors = ('a[class*="styles_bigCard"]', '[class*="styles_detailArea"]')
    link_selectors = ('a[href*="/viewjob/"]',)
    company_selectors = ('[class*="styles_companyName"]',)
    title_selectors = ('[class*="styles_title"]',)
    next_page_selectors = ('a[aria-label="次へ"]',)
    total_count_selectors = (
        ".styles_bodyText__KY7__",
        '[class*="styles_bodyText"]',
        '[class*="searchCount"]',
        ".search-result-count",
    )

    company_search_card_selectors = ('a[class*="styles_bigCard"]',)
    company_search_name_selectors = ('[class*="styles_companyName"]',)
    company_search_title_selectors = ('[class*="styles_title"]',)

    default_rank_classifier = staticmethod(classify_rikunabi)

    def build_search_url(self, params: ScrapingParams) -> str:
        parts = []
        if params.prefectures:
            slug = PREFECTURE_ROMAJI.get(params.prefectures[0])
            if slug:
                parts.append(f"area-{slug}")
        if params.job_types:
            slug = JOB_TYPE_SLUGS.get(params.job_types[0])
            if slug:
                parts.append(f"oc-{slug}")
        url = SEARCH_BASE_URL + "".join(p + "/" for p in parts)
        if params.keywords:
            url += "?" + urllib.parse.urlencode({"kw": params.keywords})
        return url

    def build_company_search_url(self, company_name: str) -> str:
        return SEARCH_BASE_URL + "?" + urllib.parse.urlencode({"kw": company_name})

    async def _prepare_page(self, page: Page) -> None:
        await page.add_init_script(STEALTH_INIT_SCRIPT)
        await page.set_extra_http_headers(EXTRA_HEADERS)

    async def _open_search(self, page: Page, url: str, log_fn: Optional[LogFn]) -> Optional[str]:
        # HTTP/2 エラーが出やすいので 5 秒間隔でリトライ
        await load_page_with_retry(
            page,
            url,
            timeout_ms=60000,
            delay_sec=5.0,
            log_fn=lambda m: self._log(log_fn, m),
        )
        try:
            await page.wait_for_load_state("networkidle", timeout=30000)
        except PlaywrightError:
            self._log(log_fn, "Network idle timeout, continuing...")
        await asyncio.sleep(3)
        selector = await wait_for_any_selector(page, self.card_selectors, timeout_ms=self.ready_timeout_ms)
        if not selector:
            self._log(log_fn, "No job cards found after extended wait")
        return selector

    async def _card_href(self, card: Locator, selectors) -> str:
        # カード自体が <a>
        href = await card.get_attribute("href")
        if href and "/viewjob/" in href:
            return href
        return await super()._card_href(card, selectors)

    async def _classify_card(self, card: Locator, index: int, page_num: int, href: str) -> RankResult:
        has_flair = await card.locator('[class*="flair"], [class*="premium"], [class*="sponsored"]').count() > 0
        return self.rank_classifier(has_flair=has_flair, absolute_index=index)

    async def _extract_detail(self, page: Page, card: Dict[str, Any], log_fn: Optional[LogFn]) -> Optional[RawListing]:
        try:
            await page.wait_for_load_state("networkidle", timeout=15000)
        except PlaywrightError:
            pass
        await asyncio.sleep(2)

        company_name = await first_text(page, ('a[class*="styles_linkTextCompany"]', '[class*="styles_employerName"]'))
        if not company_name:
            self._log(log_fn, "No company name found, skipping")
            return None

        html = await page.content()
        lookup = self.lookup_factory(html)
        homepage = lookup.get_link(*HOMEPAGE_LABELS, exclude_hosts=("rikunabi.com",))
        rank: RankResult = card["rank"]
        return RawListing(
            source=self.source,
            url=card["url"],
            company_name=company_name,
            job_title=await first_text(page, ('h1[class*="styles_heading"]', 'h2[class*="styles_title"]'))
            or card.get("job_title", ""),
            salary_text=lookup.get("給与"),
            representative=lookup.get("代表者"),
            establishment=lookup.get("設立"),
            employees=lookup.get("従業員数"),
            revenue=lookup.get("売上高"),
            phone=lookup.get("企業代表番号"),
            homepage_url=homepage,
            industry=lookup.get("事業内容"),
            address=lookup.get("本社所在地", "勤務地"),
            budget_rank=rank.rank,
            rank_confidence=rank.confidence,
            job_page_updated_at=extract_published_date(html),
        )

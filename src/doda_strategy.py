# src/doda_strategy.py
from __future__ import annotations

import re
import urllib.parse
from datetime import date
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup
from playwright.async_api import Locator, Page

from src.models import RawListing, ScrapingParams
from src.page_utils import first_text
from src.rank_classifier import RankResult, classify_doda
from src.scraping_strategy import LogFn, ScrapingStrategy
from src.text_normalizer import prefecture_code

SEARCH_BASE_URL = "https://doda.jp/DodaFront/View/JobSearchList/"

# 職種コード（Lサフィックス付き）。統合カテゴリ名はエイリアス。
JOB_TYPE_CODES = {
    "営業": "01L",
    "企画・管理": "02L",
    "SE/インフラエンジニア/Webエンジニア": "03L",
    "機械/電気": "04L",
    "化学/素材/化粧品 ほか": "05L",
    "建築/土木/不動産/プラント/設備": "06L",
    "コンサルタント/士業": "07L",
    "クリエイティブ": "08L",
    "販売/サービス": "09L",
    "公務員/教員 ほか": "10L",
    "事務/アシスタント": "11L",
    "医療系専門職": "12L",
    "金融専門職": "13L",
    "組み込みソフトウェア": "14L",
    "食品/香料/飼料 ほか": "15L",
    "営業・販売・カスタマー対応": "01L",
    "企画・マーケティング・経営": "02L",
    "事務・管理・アシスタント": "11L",
    "ITエンジニア・Web・ゲーム": "03L",
    "電気・電子・機械・半導体・制御": "04L",
    "化学・素材・食品・医薬": "05L",
    "建築・土木・設備・プラント・不動産技術": "06L",
    "クリエイティブ・デザイン": "08L",
    "コンサルタント・専門職": "07L",
    "医療・介護・福祉": "12L",
    "教育・保育・公共サービス": "10L",
    "サービス・外食・レジャー・美容・ホテル・交通": "09L",
    "物流・運輸・技能工・設備・製造": "09L",  # doda に該当カテゴリなし
    "公務員・団体職員・その他": "10L",
}

_PERIOD_END_RE = re.compile(
    r"掲載予定期間[：:]\s*\d{4}/\d{1,2}/\d{1,2}[（(][月火水木金土日][）)]\s*[～〜ー-]\s*(\d{4}/\d{1,2}/\d{1,2})"
)
_UPDATED_RE = re.compile(r"更新日[：:]\s*(\d{4}/\d{1,2}/\d{1,2})")
_TAB_SUFFIX_RE = re.compile(r"-tab__[a-z]+/?$")

_SCROLL_JS = """
async () => {
  const step = 1500;
  let pos = 0;
  while (pos < document.body.scrollHeight) {
    pos += step;
    window.scrollTo(0, pos);
    await new Promise(r => setTimeout(r, 30));
  }
}
"""


def parse_slash_date(text: Optional[str]) -> Optional[str]:
    """'2025/1/31' → '2025-01-31'"""
    if not text:
        return None
    try:
        y, m, d = (int(x) for x in text.split("/"))
        return date(y, m, d).isoformat()
    except ValueError:
        return None


def parse_publishing_dates(text: Optional[str]) -> Dict[str, Optional[str]]:
    text = text or ""
    period = _PERIOD_END_RE.search(text)
    updated = _UPDATED_RE.search(text)
    return {
        "job_page_end_date": parse_slash_date(period.group(1)) if period else None,
        "job_page_updated_at": parse_slash_date(updated.group(1)) if updated else None,
    }


def to_detail_tab_url(url: str) -> str:
    """求人URL → 「仕事詳細」タブのURL"""
    if "-fm__jobdetail" in url:
        return url
    if "-tab__" in url:
        return _TAB_SUFFIX_RE.sub("-tab__jd/-fm__jobdetail/", url)
    return url.rstrip("/") + "/-tab__jd/-fm__jobdetail/"


class DodaStrategy(ScrapingStrategy):
    source = "doda"
    host = "doda.jp"
    results_url_marker = "JobSearchList"

    default_request_interval_sec = 1.5
    default_page_interval_sec = 2.0
    default_max_pages = 10

    card_selectors = (".jobCard-card",)
    link_selectors = (
        "a.jobCard-header__link",
        'a[href*="JobSearchDetail"]',
        'a[href*="jid"]',
        ".jobCard-header a",
        "a[href]",
    )
    company_selectors = ("a.jobCard-header__link h2", ".jobCard-header h2", "h2")
    title_selectors = ("a.jobCard-header__link p", ".jobCard-header p", ".jobCard-header__jobTitle")
    next_page_selectors = (
        'a:has-text("次のページ")',
        'a:has-text("次へ")',
        'a[rel="next"]',
        '.pager a:has-text("次")',
    )
    total_count_selectors = (".search-sidebar__total-count__number",)

    company_search_card_selectors = (".jobCard-card",)
    company_search_name_selectors = (".jobCard-header__company", "h2")
    company_search_title_selectors = (".jobCard-header__title", "p")
    company_search_link_selectors = ("a.jobCard-header__link",)

    default_rank_classifier = staticmethod(classify_doda)

    def build_search_url(self, params: ScrapingParams) -> str:
        parts = []
        if params.prefectures:
            code = prefecture_code(params.prefectures[0])
            if code:
                parts.append(f"j_pr__{code}")
        if params.job_types:
            job_code = JOB_TYPE_CODES.get(params.job_types[0])
            if job_code:
                # 都道府県と組み合わせる時は -oc__
                parts.append(f"-oc__{job_code}" if parts else f"j_oc__{job_code}")
        url = SEARCH_BASE_URL
        if parts:
            url += "/".join(parts) + "/"
        if params.keywords:
            url += "?" + urllib.parse.urlencode({"kw": params.keywords})
        return url

    def build_company_search_url(self, company_name: str) -> str:
        return f"{SEARCH_BASE_URL}j_kw__{urllib.parse.quote(company_name)}/"

    async def _classify_card(self, card: Locator, index: int, page_num: int, href: str) -> RankResult:
        return self.rank_classifier(href=href, absolute_index=index)

    async def _card_extras(self, card: Locator) -> Dict[str, Any]:
        extras: Dict[str, Any] = {}
        info = card.locator("dl.jobCard-info")
        if await info.count() > 0:
            lookup = self.lookup_factory(await info.first.inner_html())
            extras["card_salary"] = lookup.get("給与")
            extras["card_area"] = lookup.get("勤務地")
            extras["card_industry"] = lookup.get("事業")
        return extras

    async def _collect_cards(self, page, selector, page_num, offset, log_fn):
        cards = await super()._collect_cards(page, selector, page_num, offset, log_fn)
        for card in cards:
            card["detail_url"] = to_detail_tab_url(card["url"])
        return cards

    @staticmethod
    def find_homepage(html: str) -> str:
        soup = BeautifulSoup(html or "", "html.parser")
        a = soup.select_one("a.jobSearchDetail-companyOverview__link")
        if a and a.get("href", "").startswith("http") and "doda.jp" not in a["href"]:
            return a["href"]
        for dt in soup.find_all("dt"):
            if dt.get_text(strip=True) != "企業URL":
                continue
            scope = dt.find_parent(class_=re.compile("columnItem")) or dt.find_next_sibling("dd")
            link = scope.find("a", href=True) if scope else None
            if link and link["href"].startswith("http") and "doda.jp" not in link["href"]:
                return link["href"]
        return ""

    async def _extract_detail(self, page: Page, card: Dict[str, Any], log_fn: Optional[LogFn]) -> Optional[RawListing]:
        # 遅延読み込みの会社概要を出すためにスクロール
        await page.evaluate(_SCROLL_JS)
        await page.wait_for_timeout(200)
        html = await page.content()
        lookup = self.lookup_factory(html)

        date_text = await first_text(
            page, (".jobSearchDetail-heading__publishingDate", '[class*="publishingDate"]', ".detailPublish")
        )
        dates = parse_publishing_dates(date_text)
        rank: RankResult = card["rank"]
        return RawListing(
            source=self.source,
            url=card["url"],
            company_name=card.get("company_name", ""),
            job_title=card.get("job_title", ""),
            salary_text=lookup.get("給与", "年収") or card.get("card_salary", ""),
            representative=lookup.get("代表者"),
            establishment=lookup.get("設立"),
            employees=lookup.get("従業員数"),
            revenue=lookup.get("売上高"),
            homepage_url=self.find_homepage(html),
            industry=lookup.get("事業概要", "事業内容") or card.get("card_industry", ""),
            address=lookup.get("本社所在地", "所在地", "勤務地"),
            area=card.get("card_area", ""),
            budget_rank=rank.rank,
            rank_confidence=rank.confidence,
            job_page_updated_at=dates["job_page_updated_at"],
            job_page_end_date=dates["job_page_end_date"],
        )

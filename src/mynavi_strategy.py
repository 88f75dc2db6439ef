# src/mynavi_strategy.py
from __future__ import annotations

import re
import urllib.parse
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup
from playwright.async_api import Locator, Page

from src.models import RawListing, ScrapingParams
from src.page_utils import first_text
from src.rank_classifier import RankResult, classify_mynavi
from src.scraping_strategy import LogFn, ScrapingStrategy

SEARCH_BASE_URL = "https://tenshoku.mynavi.jp/list/"

_MSG_SUFFIX_RE = re.compile(r"/msg/?$")


def _external_http(url: str) -> bool:
    return url.startswith("http") and "mynavi.jp" not in url


class MynaviStrategy(ScrapingStrategy):
    source = "mynavi"
    host = "tenshoku.mynavi.jp"
    results_url_marker = "/list/"
    not_found_re = re.compile(r"404|ページが見つかりません|お探しのページは|掲載が終了", re.I)
    search_wait_until = "networkidle"

    default_request_interval_sec = 3.0
    default_page_interval_sec = 5.0
    default_max_pages = 10

    # 上ほど優先（マークアップ変更に備えたフォールバック列）
    card_selectors = (
        ".cassetteRecruitRecommend__content",
        ".cassetteRecruit__content",
        ".cassetteRecruit",
        '[class*="cassetteRecruit"]',
        'article[class*="recruit"]',
        '[class*="recruitCard"]',
        '[class*="jobCard"]',
        ".searchResultItem",
    )
    link_selectors = (
        'a[href*="/jobinfo-"]',
        "a.linkArrowS",
        "a.js__ga--setCookieOccName",
        'a[href*="/jobinfo/"]',
        'a[href*="/msg/"]',
        "a[href]",
    )
    company_selectors = (
        "h3.cassetteRecruitRecommend__name",
        ".cassetteRecruitRecommend__name",
        ".cassetteRecruit__name",
        ".companyName",
        '[class*="companyName"]',
    )
    title_selectors = (
        ".cassetteRecruitRecommend__copy a",
        "p.cassetteRecruitRecommend__copy a",
        ".cassetteRecruit__copy a",
        ".cassetteRecruit__heading",
        "h2 a",
        "h3 a",
    )
    next_page_selectors = (
        'a:has-text("次へ")',
        ".pager__next a",
        'a[rel="next"]',
        '[class*="pagination"] a:has-text("次")',
        "a.next",
    )
    total_count_selectors = (".result__num em", ".js__searchRecruit--count")

    company_search_card_selectors = (".cassetteRecruitRecommend", ".recruitList__item", ".recruit")
    company_search_name_selectors = (
        ".cassetteRecruitRecommend__name",
        ".recruit_company_name",
        ".recruit_company",
    )
    company_search_title_selectors = (
        ".cassetteRecruitRecommend__copy",
        ".recruit_job_title",
        ".recruit_title",
    )
    company_search_link_selectors = ('a[href*="/jobinfo"]',)

    default_rank_classifier = staticmethod(classify_mynavi)

    def build_search_url(self, params: ScrapingParams) -> str:
        query = {}
        if params.keywords:
            query["searchKeyword"] = params.keywords
        if params.location:
            query["locationCodes"] = params.location
        if not query:
            return SEARCH_BASE_URL
        return SEARCH_BASE_URL + "?" + urllib.parse.urlencode(query)

    def build_company_search_url(self, company_name: str) -> str:
        return f"{SEARCH_BASE_URL}kw{urllib.parse.quote(company_name)}/"

    def _normalize_detail_url(self, href: Optional[str]) -> Optional[str]:
        if not href or "javascript:" in href:
            return None
        href = href.strip()
        if href.startswith("http"):
            url = href
        elif href.startswith("//"):
            url = "https:" + href
        elif self.host in href:
            # "tenshoku.mynavi.jp/jobinfo-..." のようにスキーム無しでドメインが入っている
            url = "https://" + self.host + href.split(self.host, 1)[1]
        else:
            url = urllib.parse.urljoin(f"https://{self.host}/", href)
        if "mynavi.jp" not in url:
            return None
        # /jobinfo-xxx/msg/ → /jobinfo-xxx/
        return _MSG_SUFFIX_RE.sub("/", url)

    async def _classify_card(self, card: Locator, index: int, page_num: int, href: str) -> RankResult:
        data_ty = await card.get_attribute("data-ty")
        if data_ty is None and await card.locator('[data-ty="rzs"]').count() > 0:
            data_ty = "rzs"
        has_attention = await card.locator(".cassetteRecruitRecommend__label--attention").count() > 0
        return self.rank_classifier(data_ty=data_ty, has_attention_label=has_attention, page_num=page_num)

    @staticmethod
    def find_homepage(html: str) -> str:
        """
        企業ホームページ:
        1) 「企業ホームページ」行のリンクテキスト（href はマイナビ経由のリダイレクト）
        2) 「企業ホームページ」「コーポレートサイト」というリンク
        3) 会社概要テーブル内の外部リンク
        """
        soup = BeautifulSoup(html or "", "html.parser")
        for th in soup.find_all("th"):
            if "企業ホームページ" in th.get_text():
                td = th.find_next_sibling("td")
                a = td.find("a") if td else None
                text = a.get_text(strip=True) if a else ""
                if text.startswith("http"):
                    return text
        for a in soup.find_all("a"):
            label = a.get_text(strip=True)
            if ("企業ホームページ" in label or "コーポレートサイト" in label) and label.startswith("http"):
                return label
        for a in soup.select('.jobOfferTable a[href^="http"], .companyData a[href^="http"], .company-info a[href^="http"]'):
            text = a.get_text(strip=True)
            if _external_http(text):
                return text
        return ""

    async def _extract_detail(self, page: Page, card: Dict[str, Any], log_fn: Optional[LogFn]) -> Optional[RawListing]:
        html = await page.content()
        lookup = self.lookup_factory(html)

        company_name = card.get("company_name") or await first_text(
            page, ('.companyName', '[class*="company-name"]', "h1 + p", ".recruiter")
        )
        job_title = card.get("job_title") or await first_text(page, ("h1", ".jobTitle", '[class*="job-title"]'))
        description = await first_text(
            page,
            (".jobDescriptionText", '[class*="description"]', ".recruitContents", '[class*="job-detail"]'),
        )
        rank: RankResult = card["rank"]
        return RawListing(
            source=self.source,
            url=card["url"],
            company_name=company_name,
            job_title=job_title,
            salary_text=lookup.get("給与", "年収", "想定年収"),
            representative=lookup.get("代表者"),
            establishment=lookup.get("設立"),
            employees=lookup.get("従業員数"),
            revenue=lookup.get("売上高"),
            phone=lookup.get("電話番号"),
            homepage_url=self.find_homepage(html),
            industry=lookup.get("事業内容", "業種"),
            address=lookup.get("本社所在地", "勤務地", "所在地"),
            job_description=description[:500],
            budget_rank=rank.rank,
            rank_confidence=rank.confidence,
        )

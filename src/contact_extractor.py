# src/contact_extractor.py
"""
企業ホームページから電話番号・メールアドレスを拾う補助パス。
トップページ → よくある会社概要/問い合わせパスの順に見て、両方そろうか候補が尽きたら終わる。
どんな失敗でも例外は外に出さず、見つかった分だけ返す。
"""
from __future__ import annotations

import asyncio
import logging
import os
import random
import re
import urllib.parse
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from src.models import ContactInfo
from src.text_normalizer import to_halfwidth_digits

log = logging.getLogger(__name__)

LogFn = Callable[[str], None]

PHONE_PATTERNS = [
    re.compile(r"0120[-‐－ー―]?\d{3}[-‐－ー―]?\d{3}(?!\d)"),
    re.compile(r"0\d{1,4}[-‐－ー―]\d{1,4}[-‐－ー―]\d{4}"),
    re.compile(r"(?<!\d)0\d{9,10}(?!\d)"),
    re.compile(r"\(0\d{1,4}\)\s*\d{1,4}-\d{4}"),
    re.compile(r"0\d{1,4}\s+\d{1,4}\s+\d{4}"),
    re.compile(r"TEL[:\s：]*0\d{1,4}[-\s]?\d{1,4}[-\s]?\d{4}", re.I),
    re.compile(r"電話[:\s：]*0\d{1,4}[-\s]?\d{1,4}[-\s]?\d{4}"),
]
EMAIL_PATTERNS = [
    re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
    re.compile(r"[a-zA-Z0-9._%+-]+(?:\[at\]|（at）)[a-zA-Z0-9.-]+(?:(?:\[dot\]|（dot）)[a-zA-Z0-9-]+)+"),
]
_VALID_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_PRIORITY_EMAIL_RE = re.compile(r"^(info|contact|sales|support)@", re.I)
_NOREPLY_RE = re.compile(r"no-?reply", re.I)

_CONTACT_CONTEXT_RE = re.compile(r"代表|本社|お問い合わせ|電話番号|TEL|連絡先|総務|受付", re.I)
_FAX_RE = re.compile(r"FAX|ファックス|ＦＡＸ", re.I)
_PHONE_PREFIX_RE = re.compile(r"TEL[:\s：]*|電話[:\s：]*", re.I)

NOT_FOUND_TITLE_RE = re.compile(r"404|not found|ページが見つかりません", re.I)
NOT_FOUND_BODY_RE = re.compile(r"404|not found|ページが見つかりません|お探しのページ|存在しません", re.I)

# 連絡先が載りやすい領域（優先順）
TARGET_SELECTORS = [
    ".company-info",
    ".companyInfo",
    '[class*="company"]',
    '[class*="corporate"]',
    ".contact",
    '[class*="contact"]',
    '[class*="inquiry"]',
    "footer",
    '[class*="footer"]',
    "table",
    "dl",
    "address",
    '[class*="about"]',
    '[class*="access"]',
    '[class*="profile"]',
    ".overview",
    "#company",
    "#access",
]

PAGE_PATHS = [
    ("/company/", "会社概要"),
    ("/corporate/", "企業情報"),
    ("/about/", "About"),
    ("/aboutus/", "About Us"),
    ("/profile/", "プロフィール"),
    ("/outline/", "概要"),
    ("/info/", "情報"),
    ("/access/", "アクセス"),
    ("/contact/", "お問い合わせ"),
    ("/inquiry/", "お問い合わせ"),
    ("/company/outline/", "会社概要"),
    ("/company/profile/", "会社プロフィール"),
    ("/company/access/", "会社アクセス"),
    ("/corporate/profile/", "企業プロフィール"),
    ("/corporate/outline/", "企業概要"),
]


def build_url(base_url: str, path: str) -> str:
    """パスを差し替え、クエリ・フラグメントを落とす"""
    parsed = urllib.parse.urlparse(base_url)
    return urllib.parse.urlunparse((parsed.scheme or "https", parsed.netloc, path, "", "", ""))


def is_not_found_page(title: str, body_text: str) -> bool:
    if NOT_FOUND_TITLE_RE.search(title or ""):
        return True
    text = body_text or ""
    return len(text) < 500 and bool(NOT_FOUND_BODY_RE.search(text))


def normalize_phone_match(raw: str) -> str:
    phone = _PHONE_PREFIX_RE.sub("", raw)
    phone = re.sub(r"[‐－ー―]", "-", phone)
    phone = re.sub(r"\s+", "-", phone.strip())
    return re.sub(r"-{2,}", "-", phone)


def pick_phone(text: str) -> Optional[str]:
    """
    候補の優先順:
    1) フリーダイヤル 0120/0800
    2) 前後100文字に「代表」「本社」等があり、直前がFAXでないもの
    3) 直前30文字がFAXっぽくない最初のもの
    4) 最初の候補
    """
    text = to_halfwidth_digits(text or "")
    found: List[Tuple[str, int, int]] = []
    seen: set[str] = set()
    for pattern in PHONE_PATTERNS:
        for m in pattern.finditer(text):
            phone = normalize_phone_match(m.group(0))
            if phone.startswith("0570"):  # ナビダイヤル
                continue
            digits = re.sub(r"\D", "", phone)
            if not (10 <= len(digits) <= 11):
                continue
            if phone in seen:
                continue
            seen.add(phone)
            found.append((phone, m.start(), m.end()))
    if not found:
        return None

    for phone, _, _ in found:
        if phone.startswith("0120") or phone.startswith("0800"):
            return phone
    for phone, start, end in found:
        context = text[max(0, start - 100): end + 100]
        if _CONTACT_CONTEXT_RE.search(context) and not _FAX_RE.search(text[max(0, start - 20): start]):
            return phone
    for phone, start, _ in found:
        if not _FAX_RE.search(text[max(0, start - 30): start]):
            return phone
    return found[0][0]


def _deobfuscate(email: str) -> str:
    return email.replace("[at]", "@").replace("[dot]", ".").replace("（at）", "@").replace("（dot）", ".")


def pick_email(candidates: List[str]) -> Optional[str]:
    emails = []
    for raw in candidates:
        email = _deobfuscate(raw)
        if _NOREPLY_RE.search(email) or not _VALID_EMAIL_RE.match(email):
            continue
        emails.append(email)
    if not emails:
        return None
    for email in emails:
        if _PRIORITY_EMAIL_RE.match(email):
            return email
    return emails[0]


def collect_region_text(soup: BeautifulSoup) -> str:
    chunks: List[str] = []
    for selector in TARGET_SELECTORS:
        for el in soup.select(selector):
            text = el.get_text("\n")
            if text:
                chunks.append(text)
    text = "\n".join(chunks)
    if len(text) < 100:
        body = soup.body or soup
        text = body.get_text("\n")
    return text


def find_phone_in_html(html: str) -> Optional[str]:
    soup = BeautifulSoup(html or "", "html.parser")
    return pick_phone(collect_region_text(soup))


def find_email_in_html(html: str) -> Optional[str]:
    soup = BeautifulSoup(html or "", "html.parser")
    mailtos = [a["href"][len("mailto:"):].split("?")[0].strip() for a in soup.select('a[href^="mailto:"]')]
    email = pick_email(mailtos)
    if email:
        return email
    text = collect_region_text(soup)
    candidates: List[str] = []
    for pattern in EMAIL_PATTERNS:
        candidates.extend(pattern.findall(text))
    return pick_email(candidates)


class ContactExtractor:
    def __init__(
        self,
        request_interval_sec: Optional[float] = None,
        timeout_ms: Optional[int] = None,
        http_first: Optional[bool] = None,
    ):
        self.request_interval_sec = (
            request_interval_sec
            if request_interval_sec is not None
            else float(os.getenv("CONTACT_REQUEST_INTERVAL_SEC", "1.5"))
        )
        self.timeout_ms = timeout_ms or int(os.getenv("CONTACT_TIMEOUT_MS", "15000"))
        if http_first is None:
            http_first = os.getenv("CONTACT_HTTP_FIRST", "true").lower() == "true"
        self.http_first = http_first
        self.http_session: Optional[requests.Session] = requests.Session()

    def _session_get(self, url: str, **kwargs: Any):
        if self.http_session:
            return self.http_session.get(url, **kwargs)
        return requests.get(url, **kwargs)

    async def _fetch_http(self, url: str) -> Optional[Dict[str, str]]:
        """
        requests で軽量取得。404/410 は {"not_found": "1"}、その他のエラーや本文が薄ければ None（ブラウザへ）。
        """
        timeout_sec = max(2, self.timeout_ms / 1000)
        try:
            resp = await asyncio.to_thread(
                self._session_get,
                url,
                timeout=(timeout_sec, timeout_sec),
                headers={"User-Agent": "Mozilla/5.0"},
            )
        except requests.RequestException:
            log.debug("[contact] http fetch failed %s", url, exc_info=True)
            return None
        if resp.status_code in (404, 410):
            return {"not_found": "1", "html": "", "title": ""}
        if resp.status_code >= 400:
            # 403/429 などボット対策はブラウザで再挑戦
            return None
        html = resp.text or ""
        soup = BeautifulSoup(html, "html.parser")
        text = soup.get_text(" ", strip=True)
        if len(text) < 200 and len(html) < 1800:
            return None
        title = soup.title.get_text(strip=True) if soup.title else ""
        return {"html": html, "title": title, "text": text}

    async def _fetch_browser(self, page: Page, url: str) -> Dict[str, str]:
        await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
        await asyncio.sleep(random.uniform(0.5, 1.0))
        html = await page.content()
        title = await page.title()
        text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)
        return {"html": html, "title": title, "text": text}

    async def _fetch(self, page: Page, url: str) -> Optional[Dict[str, str]]:
        if self.http_first:
            got = await self._fetch_http(url)
            if got is not None:
                return got
        return await self._fetch_browser(page, url)

    async def extract(self, page: Page, homepage_url: str, log_fn: Optional[LogFn] = None) -> ContactInfo:
        def emit(msg: str) -> None:
            log.info("[contact] %s", msg)
            if log_fn:
                log_fn(f"[contact] {msg}")

        result = ContactInfo()
        if not homepage_url or not homepage_url.startswith("http"):
            return result

        candidates = [(homepage_url, "トップページ", "")]
        candidates += [(build_url(homepage_url, path), name, path) for path, name in PAGE_PATHS]

        try:
            for idx, (url, name, path) in enumerate(candidates):
                if result.is_complete():
                    break
                if idx > 0:
                    await asyncio.sleep(self.request_interval_sec)
                try:
                    emit(f"Checking {name}: {url}")
                    fetched = await self._fetch(page, url)
                except (PlaywrightError, requests.RequestException) as e:
                    emit(f"Skip {url}: {e}")
                    continue
                if not fetched or fetched.get("not_found") or is_not_found_page(fetched["title"], fetched.get("text", "")):
                    continue

                if not result.phone_number:
                    result.phone_number = find_phone_in_html(fetched["html"])
                    if result.phone_number:
                        emit(f"Found phone: {result.phone_number}")
                if not result.email:
                    result.email = find_email_in_html(fetched["html"])
                    if result.email:
                        emit(f"Found email: {result.email}")
                if path and ("contact" in path or "inquiry" in path) and not result.contact_page_url:
                    result.contact_page_url = url
        except Exception as e:
            log.warning("[contact] extraction aborted for %s", homepage_url, exc_info=True)
            emit(f"Error extracting contact info: {e}")
        return result

    def close(self) -> None:
        if self.http_session:
            try:
                self.http_session.close()
            except Exception:
                log.debug("http session close failed", exc_info=True)
        self.http_session = None

# src/data_converter.py
"""
RawListing → NormalizedJob 変換。
ID は "{source}_{サイト固有ID}"。URL から取れない時は URL のハッシュ。
"""
import hashlib
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from src.models import NormalizedJob, RawListing
from src.text_normalizer import extract_prefecture, parse_salary_range, squash_ws, to_halfwidth_digits

_JOB_ID_PATTERNS = {
    # https://tenshoku.mynavi.jp/jobinfo-99359-1-160-1/
    "mynavi": (re.compile(r"/jobinfo-([^/]+)/"),),
    # https://doda.jp/DodaFront/View/JobSearchDetail/j_jid__3014345383/
    "doda": (re.compile(r"j_jid__(\d+)"),),
    # https://next.rikunabi.com/viewjob/jk9b4.../ , /company/cmi1234567/
    "rikunabi": (re.compile(r"/viewjob/([^/?#]+)"), re.compile(r"/company/([^/]+)/")),
}

_HOURLY_RE = re.compile(r"時給\s*(\d+(?:,\d+)?)\s*円(?:\s*[〜~～\-－]\s*(\d+(?:,\d+)?)\s*円)?")
# 8h × 20日 × 12ヶ月
_HOURS_PER_YEAR = 8 * 20 * 12

UNKNOWN_TITLE = "タイトル不明"
DEFAULT_EMPLOYMENT_TYPE = "正社員"


def hash_url(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()[:12]


def extract_job_id(url: str, source: str) -> str:
    for pattern in _JOB_ID_PATTERNS.get(source, ()):
        m = pattern.search(url or "")
        if m:
            return m.group(1)
    return hash_url(url or "")


def make_job_id(url: str, source: str) -> str:
    return f"{source}_{extract_job_id(url, source)}"


def salary_bounds_yen(salary_text: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    """年収（円）の下限・上限。時給は年換算。"""
    if not salary_text:
        return None, None
    text = to_halfwidth_digits(salary_text)
    m = _HOURLY_RE.search(text)
    if m:
        lo = int(m.group(1).replace(",", ""))
        hi = int(m.group(2).replace(",", "")) if m.group(2) else lo
        return lo * _HOURS_PER_YEAR, hi * _HOURS_PER_YEAR
    lo_man, hi_man = parse_salary_range(text)
    return (
        lo_man * 10000 if lo_man is not None else None,
        hi_man * 10000 if hi_man is not None else None,
    )


def parse_locations(address: Optional[str], area: Optional[str]) -> List[Dict[str, str]]:
    text = squash_ws(address or area or "")
    if not text:
        return []
    pref = extract_prefecture(text)
    if not pref:
        return [{"address": text}]
    after = text[text.index(pref) + len(pref):]
    m = re.match(r"^([^、,\s]+)", after)
    loc = {"region": pref, "address": text}
    if m:
        loc["locality"] = m.group(1)
    return [loc]


class DataConverter:
    @staticmethod
    def listing_to_job(listing: RawListing, now: Optional[str] = None) -> NormalizedJob:
        now = now or datetime.now(timezone.utc).isoformat()
        salary_min, salary_max = salary_bounds_yen(listing.salary_text)
        return NormalizedJob(
            id=make_job_id(listing.url, listing.source),
            source=listing.source,
            source_job_id=extract_job_id(listing.url, listing.source),
            source_url=listing.url,
            company_name=listing.company_name,
            title=listing.job_title or UNKNOWN_TITLE,
            company_url=listing.homepage_url or "",
            employment_type=DEFAULT_EMPLOYMENT_TYPE,
            industry=listing.industry or "",
            description=listing.job_description or "",
            salary_min=salary_min,
            salary_max=salary_max,
            salary_text=listing.salary_text or "",
            locations=parse_locations(listing.address, listing.area),
            location_summary=listing.address or listing.area or "",
            date_posted=now,
            date_expires=listing.job_page_end_date,
            date_updated=listing.job_page_updated_at or now,
            scraped_at=now,
            last_checked_at=now,
            is_active=True,
        )

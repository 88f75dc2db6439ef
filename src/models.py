# src/models.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

SOURCES = ("mynavi", "doda", "rikunabi")

STEP1_COMPLETED = "step1_completed"
STEP2_COMPLETED = "step2_completed"

LISTING_ACTIVE = "掲載中"
LISTING_ENDED = "掲載終了"


@dataclass
class ScrapingParams:
    keywords: str = ""
    location: str = ""
    prefectures: List[str] = field(default_factory=list)
    job_types: List[str] = field(default_factory=list)


@dataclass
class RawListing:
    """
    ストラテジーが1求人ごとに生成するレコード（永続化はしない）。
    url は詳細ページURLで、リードの重複判定キーになる。
    """
    source: str
    url: str
    company_name: str
    job_title: str = ""
    salary_text: str = ""
    representative: str = ""
    establishment: str = ""
    employees: str = ""
    revenue: str = ""
    phone: str = ""
    email: str = ""
    homepage_url: str = ""
    contact_page_url: str = ""
    industry: str = ""
    area: str = ""
    address: str = ""
    job_description: str = ""
    budget_rank: Optional[str] = None
    rank_confidence: Optional[float] = None
    job_page_updated_at: Optional[str] = None
    job_page_end_date: Optional[str] = None
    scrape_status: str = STEP1_COMPLETED

    def to_lead_fields(self) -> Dict[str, Any]:
        data = asdict(self)
        # 問い合わせページは leads 側では contact_form_url に入る
        data["contact_form_url"] = data.pop("contact_page_url") or ""
        return data


@dataclass
class ContactInfo:
    phone_number: Optional[str] = None
    email: Optional[str] = None
    contact_page_url: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.phone_number and self.email)


@dataclass
class JobListing:
    """更新チェック時の社名検索でヒットした求人"""
    source: str
    title: str
    company: str
    url: str = ""
    rank: Optional[str] = None


@dataclass
class NormalizedJob:
    id: str
    source: str
    source_job_id: str
    source_url: str
    company_name: str
    title: str
    company_url: str = ""
    employment_type: str = "正社員"
    industry: str = ""
    description: str = ""
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    salary_text: str = ""
    locations: List[Dict[str, str]] = field(default_factory=list)
    location_summary: str = ""
    date_posted: Optional[str] = None
    date_expires: Optional[str] = None
    date_updated: Optional[str] = None
    scraped_at: Optional[str] = None
    last_checked_at: Optional[str] = None
    is_active: bool = True
    update_count: int = 0


@dataclass
class ScrapeProgress:
    current: int = 0
    total: int = 0
    status: str = "idle"
    source: str = ""
    new_count: int = 0
    duplicate_count: int = 0
    total_jobs: int = 0
    estimated_minutes: Optional[float] = None
    start_time: Optional[float] = None

    def snapshot(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScrapingLogEntry:
    scrape_type: str
    source: str
    status: str
    jobs_found: int = 0
    new_jobs: int = 0
    updated_jobs: int = 0
    errors: int = 0
    error_message: Optional[str] = None
    duration_ms: int = 0
    target_url: Optional[str] = None
    scraped_at: Optional[str] = None


@dataclass
class UpdateResult:
    company_id: int
    company_name: str
    changes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    updated_at: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["error"] is None:
            data.pop("error")
        return data

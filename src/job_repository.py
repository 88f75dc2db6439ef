# src/job_repository.py
import json
import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from src.database_manager import DatabaseManager
from src.models import NormalizedJob

log = logging.getLogger(__name__)

_COLUMNS = (
    "id",
    "source",
    "source_job_id",
    "source_url",
    "company_name",
    "company_url",
    "title",
    "employment_type",
    "industry",
    "description",
    "salary_min",
    "salary_max",
    "salary_text",
    "locations",
    "location_summary",
    "date_posted",
    "date_expires",
    "date_updated",
    "scraped_at",
    "last_checked_at",
    "is_active",
    "update_count",
)

# update() で書き換える列（id / source / source_job_id / scraped_at は固定）
_UPDATE_COLUMNS = tuple(
    c for c in _COLUMNS if c not in ("id", "source", "source_job_id", "scraped_at", "update_count")
)


def _to_row(job: NormalizedJob) -> Dict[str, Any]:
    data = asdict(job)
    data["locations"] = json.dumps(data["locations"] or [], ensure_ascii=False)
    data["is_active"] = 1 if data["is_active"] else 0
    return data


def _from_row(row) -> NormalizedJob:
    data = dict(row)
    try:
        data["locations"] = json.loads(data.get("locations") or "[]")
    except ValueError:
        data["locations"] = []
    data["is_active"] = bool(data.get("is_active"))
    data["update_count"] = data.get("update_count") or 0
    return NormalizedJob(**{k: data.get(k) for k in _COLUMNS if k in data})


class JobRepository:
    """jobs テーブル。一意キーは (source, source_job_id) と source_url。"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @property
    def conn(self):
        return self.db.conn

    def get_by_id(self, job_id: str) -> Optional[NormalizedJob]:
        row = self.conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
        return _from_row(row) if row else None

    def get_by_source_url(self, url: str) -> Optional[NormalizedJob]:
        row = self.conn.execute("SELECT * FROM jobs WHERE source_url=?", (url,)).fetchone()
        return _from_row(row) if row else None

    def get_all(self, filters: Optional[Dict[str, Any]] = None) -> List[NormalizedJob]:
        filters = filters or {}
        sql = "SELECT * FROM jobs WHERE 1=1"
        params: list[Any] = []
        if filters.get("source") and filters["source"] != "all":
            sql += " AND source = ?"
            params.append(filters["source"])
        if filters.get("search"):
            term = f"%{filters['search']}%"
            sql += " AND (company_name LIKE ? OR title LIKE ? OR description LIKE ? OR location_summary LIKE ?)"
            params.extend([term] * 4)
        if filters.get("salary_min") is not None:
            sql += " AND salary_min >= ?"
            params.append(filters["salary_min"])
        if filters.get("salary_max") is not None:
            sql += " AND salary_max <= ?"
            params.append(filters["salary_max"])
        if filters.get("location"):
            sql += " AND location_summary LIKE ?"
            params.append(f"%{filters['location']}%")
        if filters.get("is_active") is not None:
            sql += " AND is_active = ?"
            params.append(1 if filters["is_active"] else 0)
        sql += " ORDER BY scraped_at DESC"
        return [_from_row(r) for r in self.conn.execute(sql, params).fetchall()]

    def insert(self, job: NormalizedJob) -> None:
        data = _to_row(job)
        data["update_count"] = 0
        self.db.cur.execute(
            f"INSERT INTO jobs ({', '.join(_COLUMNS)}) VALUES ({', '.join('?' for _ in _COLUMNS)})",
            [data[c] for c in _COLUMNS],
        )
        self.db._commit_with_checkpoint()

    def update(self, job: NormalizedJob) -> None:
        """内容の書き換え。update_count を +1 する。"""
        data = _to_row(job)
        sets = ", ".join(f"{c}=?" for c in _UPDATE_COLUMNS)
        self.db.cur.execute(
            f"UPDATE jobs SET {sets}, update_count = COALESCE(update_count, 0) + 1 WHERE id=?",
            [*(data[c] for c in _UPDATE_COLUMNS), job.id],
        )
        self.db._commit_with_checkpoint()

    def update_last_checked(self, job_id: str, timestamp: str) -> None:
        self.db.cur.execute("UPDATE jobs SET last_checked_at=? WHERE id=?", (timestamp, job_id))
        self.db._commit_with_checkpoint()

    def deactivate(self, job_id: str) -> None:
        self.db.cur.execute("UPDATE jobs SET is_active=0 WHERE id=?", (job_id,))
        self.db._commit_with_checkpoint()

    def count_active_by_source(self) -> Dict[str, int]:
        rows = self.conn.execute(
            "SELECT source, COUNT(*) AS cnt FROM jobs WHERE is_active = 1 GROUP BY source"
        ).fetchall()
        return {r["source"]: r["cnt"] for r in rows}

# src/scraping_log_repository.py
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.database_manager import DatabaseManager
from src.models import ScrapingLogEntry

_COLUMNS = (
    "scrape_type",
    "source",
    "target_url",
    "status",
    "jobs_found",
    "new_jobs",
    "updated_jobs",
    "errors",
    "error_message",
    "duration_ms",
    "scraped_at",
)


class ScrapingLogRepository:
    """scraping_logs は追記のみ。"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def insert(self, entry: ScrapingLogEntry) -> int:
        data = asdict(entry)
        if not data.get("scraped_at"):
            data["scraped_at"] = datetime.now(timezone.utc).isoformat()
        self.db.cur.execute(
            f"INSERT INTO scraping_logs ({', '.join(_COLUMNS)}) VALUES ({', '.join('?' for _ in _COLUMNS)})",
            [data[c] for c in _COLUMNS],
        )
        log_id = self.db.cur.lastrowid
        self.db._commit_with_checkpoint()
        return log_id

    def get_recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self.db.conn.execute(
            "SELECT * FROM scraping_logs ORDER BY scraped_at DESC, id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [dict(r) for r in rows]

    def get_latest_by_source(self, source: str) -> Optional[Dict[str, Any]]:
        row = self.db.conn.execute(
            "SELECT * FROM scraping_logs WHERE source = ? ORDER BY scraped_at DESC, id DESC LIMIT 1",
            (source,),
        ).fetchone()
        return dict(row) if row else None

    def get_stats(self) -> Dict[str, Any]:
        row = self.db.conn.execute(
            """
            SELECT COUNT(*) AS total_runs,
                   SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS success_count,
                   SUM(jobs_found) AS total_jobs_found,
                   SUM(new_jobs) AS total_new_jobs
              FROM scraping_logs
            """
        ).fetchone()
        total = row["total_runs"] or 0
        return {
            "total_runs": total,
            "success_rate": (row["success_count"] or 0) / total * 100 if total else 0.0,
            "total_jobs_found": row["total_jobs_found"] or 0,
            "total_new_jobs": row["total_new_jobs"] or 0,
        }

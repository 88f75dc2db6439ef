# src/upsert_service.py
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable

from src.database_manager import DatabaseManager
from src.job_repository import JobRepository
from src.models import NormalizedJob

log = logging.getLogger(__name__)

# この列のどれかが変わった時だけ内容を書き換える
MATERIAL_FIELDS = (
    "title",
    "salary_min",
    "salary_max",
    "salary_text",
    "description",
    "date_expires",
    "is_active",
    "employment_type",
    "location_summary",
)


def needs_update(existing: NormalizedJob, fresh: NormalizedJob) -> bool:
    return any(getattr(existing, f) != getattr(fresh, f) for f in MATERIAL_FIELDS)


class UpsertService:
    def __init__(self, db: DatabaseManager, job_repo: JobRepository = None):
        self.db = db
        self.job_repo = job_repo or JobRepository(db)

    def upsert(self, job: NormalizedJob) -> bool:
        """新規なら True。既存は重要列が変わった時だけ更新し、それ以外は last_checked_at のみ進める。"""
        existing = self.job_repo.get_by_id(job.id)
        if existing is None:
            self.job_repo.insert(job)
            return True

        if needs_update(existing, job):
            # 初回観測の日時は保持
            self.job_repo.update(replace(job, date_posted=existing.date_posted, scraped_at=existing.scraped_at))
        else:
            self.job_repo.update_last_checked(job.id, datetime.now(timezone.utc).isoformat())
        return False

    def batch_upsert(self, jobs: Iterable[NormalizedJob]) -> Dict[str, int]:
        """1トランザクションでまとめて upsert。途中で失敗したら全体をロールバック。"""
        new_count = 0
        updated_count = 0
        with self.db.transaction():
            for job in jobs:
                if self.upsert(job):
                    new_count += 1
                else:
                    updated_count += 1
        log.info("batch upsert: new=%s updated=%s", new_count, updated_count)
        return {"new_count": new_count, "updated_count": updated_count}

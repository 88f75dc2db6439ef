# src/update_engine.py
"""
既存リードの再チェック。
会社ごとに3サイトの社名検索を並列に走らせ（サイトごとに別コンテキスト/ページ）、
最高ランク・求人数・掲載状況を集約して差分を記録する。
"""
import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from src.browser_session import BrowserSession
from src.database_manager import DatabaseManager
from src.models import LISTING_ACTIVE, LISTING_ENDED, SOURCES, JobListing, UpdateResult
from src.rank_classifier import best_rank, rank_direction
from src.scraping_strategy import create_strategy

log = logging.getLogger(__name__)

ALREADY_RUNNING = "Update already in progress"


@dataclass
class AggregateResult:
    jobs: List[JobListing] = field(default_factory=list)
    rank: Optional[str] = None
    job_count: int = 0
    sources: Dict[str, int] = field(default_factory=dict)


def aggregate_results(per_source: Dict[str, List[JobListing]]) -> AggregateResult:
    jobs = [job for source in per_source for job in per_source[source]]
    return AggregateResult(
        jobs=jobs,
        rank=best_rank(j.rank for j in jobs),
        job_count=len(jobs),
        sources={source: len(found) for source, found in per_source.items()},
    )


def detect_changes(company: Dict[str, Any], agg: AggregateResult) -> Dict[str, Dict[str, Any]]:
    changes: Dict[str, Dict[str, Any]] = {}

    old_rank = company.get("budget_rank")
    if agg.rank is not None and agg.rank != old_rank:
        changes["rank"] = {"old": old_rank, "new": agg.rank, "direction": rank_direction(old_rank, agg.rank)}

    old_count = company.get("job_count") or 0
    if agg.job_count != old_count:
        changes["job_count"] = {"old": old_count, "new": agg.job_count, "delta": agg.job_count - old_count}

    was_active = (company.get("listing_status") or LISTING_ACTIVE) == LISTING_ACTIVE
    is_active = agg.job_count > 0
    if was_active != is_active:
        changes["listing_status"] = {
            "old": LISTING_ACTIVE if was_active else LISTING_ENDED,
            "new": LISTING_ACTIVE if is_active else LISTING_ENDED,
        }
    return changes


class UpdateEngine:
    def __init__(
        self,
        db: DatabaseManager,
        *,
        session_factory: Callable[[], BrowserSession] = BrowserSession,
        strategies: Optional[Dict[str, Any]] = None,
        delay_sec: Optional[float] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.db = db
        self.session_factory = session_factory
        self._strategies = strategies
        self.delay_sec = delay_sec if delay_sec is not None else float(os.getenv("UPDATE_COMPANY_DELAY_SEC", "3"))
        self._sleep = sleep
        self._running = False
        self._should_stop = False

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._should_stop = True

    def _build_strategies(self) -> Dict[str, Any]:
        if self._strategies is not None:
            return self._strategies
        # 社名検索では詳細ページも企業HPも見ない
        return {source: create_strategy(source, contact_pass=False) for source in SOURCES}

    def _load_companies(self, company_ids: Optional[Iterable[int]]) -> List[Dict[str, Any]]:
        ids = list(company_ids or [])
        if not ids:
            return self.db.get_all({})
        companies = []
        for cid in ids:
            company = self.db.get_by_id(cid)
            if company is not None:
                companies.append(company)
        return companies

    async def start(
        self,
        company_ids: Optional[Iterable[int]] = None,
        on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_log: Optional[Callable[[str], None]] = None,
    ) -> Dict[str, Any]:
        if self._running:
            return {"success": False, "error": ALREADY_RUNNING}
        self._running = True
        self._should_stop = False

        def emit_log(msg: str) -> None:
            line = f"[Update] {msg}"
            log.info(line)
            if on_log:
                on_log(line)

        strategies: Dict[str, Any] = {}
        results: List[Dict[str, Any]] = []
        try:
            strategies = self._build_strategies()
            companies = self._load_companies(company_ids)
            emit_log(f"更新対象: {len(companies)}社")
            start_time = time.time()

            async with self.session_factory() as session:
                for i, company in enumerate(companies):
                    if self._should_stop:
                        emit_log("更新を中止しました")
                        break
                    if on_progress:
                        on_progress({
                            "current": i + 1,
                            "total": len(companies),
                            "company_name": company["company_name"],
                            "status": f"{company['company_name']} を更新中...",
                            "start_time": start_time,
                        })
                    try:
                        result = await self.update_single_company(session, strategies, company, emit_log)
                    except Exception as e:
                        emit_log(f"エラー ({company['company_name']}): {e}")
                        log.warning("refresh failed for id=%s", company["id"], exc_info=True)
                        result = UpdateResult(
                            company_id=company["id"],
                            company_name=company["company_name"],
                            updated_at=datetime.now(timezone.utc).isoformat(),
                            error=str(e),
                        )
                    results.append(result.to_dict())
                    self._log_changes(result, emit_log)

                    # レート制限
                    if i < len(companies) - 1:
                        await self._sleep(self.delay_sec)

            emit_log(f"更新完了: {len(results)}社")
            return {"success": True, "results": results}
        except Exception as e:
            emit_log(f"致命的エラー: {e}")
            log.error("refresh fatal error", exc_info=True)
            return {"success": False, "error": str(e), "results": results}
        finally:
            if self._strategies is None:
                for strategy in strategies.values():
                    strategy.close()
            self._running = False

    async def _search_site(self, session: BrowserSession, strategy, company_name: str, emit_log) -> List[JobListing]:
        """1サイト分の社名検索。失敗はそのサイト0件として扱う。"""
        def site_log(msg: str) -> None:
            emit_log(f"[{strategy.source}] {msg}")

        try:
            async with session.page() as page:
                jobs = await strategy.search_by_company(page, company_name, site_log)
        except Exception as e:
            site_log(f"エラー: {e}")
            return []
        site_log(f"{len(jobs)}件の求人を検出")
        return jobs

    async def update_single_company(
        self,
        session: BrowserSession,
        strategies: Dict[str, Any],
        company: Dict[str, Any],
        emit_log: Callable[[str], None],
    ) -> UpdateResult:
        name = company["company_name"]
        sources = list(strategies.keys())
        found = await asyncio.gather(
            *(self._search_site(session, strategies[s], name, emit_log) for s in sources)
        )
        agg = aggregate_results(dict(zip(sources, found)))
        changes = detect_changes(company, agg)
        self.db.apply_refresh(
            company["id"],
            job_count=agg.job_count,
            latest_job_title=agg.jobs[0].title if agg.jobs else None,
            changes=changes,
        )
        return UpdateResult(
            company_id=company["id"],
            company_name=name,
            changes=changes,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

    @staticmethod
    def _log_changes(result: UpdateResult, emit_log) -> None:
        if not result.changes:
            return
        emit_log(f"変更検出: {result.company_name}")
        if "rank" in result.changes:
            c = result.changes["rank"]
            emit_log(f"  ランク: {c['old']} → {c['new']} ({c['direction']})")
        if "job_count" in result.changes:
            c = result.changes["job_count"]
            emit_log(f"  求人数: {c['old']} → {c['new']}")
        if "listing_status" in result.changes:
            c = result.changes["listing_status"]
            emit_log(f"  ステータス: {c['old']} → {c['new']}")

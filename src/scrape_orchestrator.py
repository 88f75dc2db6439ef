# src/scrape_orchestrator.py
"""
スクレイピング実行の司令塔。
ソースを順番に回し（ソースごとにコンテキスト/ページを作って閉じる）、
各求人をリードと正規化求人へ二重書き込みし、既知URLが連続したら早期終了する。
"""
import json
import logging
import math
import os
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from src.browser_session import BrowserSession
from src.data_converter import DataConverter
from src.database_manager import DatabaseManager
from src.models import RawListing, ScrapeProgress, ScrapingLogEntry, ScrapingParams
from src.scraping_log_repository import ScrapingLogRepository
from src.scraping_strategy import create_strategy
from src.upsert_service import UpsertService

log = logging.getLogger(__name__)

ProgressFn = Callable[[Dict[str, Any]], None]
LogFn = Callable[[str], None]

ALREADY_RUNNING = "Scraping already in progress"
STATUS_RUNNING = "スクレイピング中..."


@dataclass
class SourceStats:
    source: str
    jobs_found: int = 0
    new_jobs: int = 0
    updated_jobs: int = 0
    errors: int = 0
    duplicates: int = 0
    smart_stopped: bool = False
    error_message: Optional[str] = None
    started: float = field(default_factory=time.time)

    @property
    def status(self) -> str:
        if self.error_message and self.jobs_found == 0:
            return "error"
        return "partial" if self.errors > self.jobs_found * 0.5 else "success"

    def summary(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "status": self.status,
            "jobs_found": self.jobs_found,
            "new_jobs": self.new_jobs,
            "updated_jobs": self.updated_jobs,
            "errors": self.errors,
            "duplicates": self.duplicates,
            "smart_stopped": self.smart_stopped,
        }


class ScrapeOrchestrator:
    def __init__(
        self,
        db: DatabaseManager,
        *,
        session_factory: Callable[[], BrowserSession] = BrowserSession,
        strategy_factory: Callable[..., Any] = create_strategy,
        upsert_service: Optional[UpsertService] = None,
        log_repo: Optional[ScrapingLogRepository] = None,
        phone_lookup=None,
        ai_summarizer=None,
        smart_stop_threshold: Optional[int] = None,
    ):
        self.db = db
        self.session_factory = session_factory
        self.strategy_factory = strategy_factory
        self.upsert_service = upsert_service or UpsertService(db)
        self.log_repo = log_repo or ScrapingLogRepository(db)
        self.phone_lookup = phone_lookup
        self.ai_summarizer = ai_summarizer
        self.smart_stop_threshold = smart_stop_threshold or int(os.getenv("SMART_STOP_THRESHOLD", "50"))
        self._running = False
        self._should_stop = False

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """協調的停止。処理中の1件が終わった時点で抜ける。"""
        self._should_stop = True

    async def start(
        self,
        sources: Sequence[str],
        params: ScrapingParams,
        on_progress: Optional[ProgressFn] = None,
        on_log: Optional[LogFn] = None,
    ) -> Dict[str, Any]:
        if self._running:
            return {"success": False, "error": ALREADY_RUNNING}
        self._running = True
        self._should_stop = False

        results: List[Dict[str, Any]] = []
        try:
            async with self.session_factory() as session:
                for source in sources:
                    if self._should_stop:
                        break
                    stats = await self._run_source(session, source, params, on_progress, on_log)
                    results.append(stats.summary())
            return {"success": True, "stopped": self._should_stop, "sources": results}
        except Exception as e:
            # ブラウザ起動失敗など、実行全体を止める致命的エラー
            log.error("scraping fatal error: %s", e, exc_info=True)
            return {"success": False, "error": str(e), "sources": results}
        finally:
            self._running = False

    async def _run_source(
        self,
        session: BrowserSession,
        source: str,
        params: ScrapingParams,
        on_progress: Optional[ProgressFn],
        on_log: Optional[LogFn],
    ) -> SourceStats:
        stats = SourceStats(source=source)
        progress = ScrapeProgress(source=source, status="ナビゲーション中...", start_time=time.time())

        def emit_log(msg: str) -> None:
            line = f"[{source}] {msg}"
            log.info(line)
            if on_log:
                on_log(line)

        def emit_progress() -> None:
            if on_progress:
                on_progress(progress.snapshot())

        def on_total_count(count: int) -> None:
            progress.total = count
            progress.total_jobs = count
            progress.status = STATUS_RUNNING
            emit_progress()

        emit_progress()
        strategy = None
        consecutive_duplicates = 0
        try:
            strategy = self.strategy_factory(source)
            async with session.page() as page:
                async with aclosing(strategy.scrape(page, params, emit_log, on_total_count)) as listings:
                    async for listing in listings:
                        if self._should_stop:
                            emit_log("停止要求を受け付けました")
                            break
                        stats.jobs_found += 1
                        progress.current += 1

                        is_duplicate = await self._store_listing(listing, stats, emit_log)
                        if is_duplicate:
                            stats.duplicates += 1
                            consecutive_duplicates += 1
                        elif is_duplicate is False:
                            consecutive_duplicates = 0

                        progress.new_count = stats.new_jobs
                        progress.duplicate_count = stats.duplicates
                        progress.status = STATUS_RUNNING
                        progress.estimated_minutes = self._estimate_minutes(progress)
                        emit_progress()

                        if consecutive_duplicates >= self.smart_stop_threshold:
                            stats.smart_stopped = True
                            emit_log(f"既知の求人が{consecutive_duplicates}件連続したため終了します（smart stop）")
                            progress.status = "smart stop"
                            emit_progress()
                            break
        except Exception as e:
            stats.errors += 1
            stats.error_message = str(e)
            emit_log(f"Error in strategy: {e}")
            log.warning("strategy %s failed", source, exc_info=True)
            progress.status = f"エラー発生: {e}"
            emit_progress()
        finally:
            if strategy is not None:
                stats.errors += strategy.item_errors
                strategy.close()
            self._write_log(stats)

        if not stats.error_message and progress.status != "smart stop":
            progress.status = "completed"
            emit_progress()
        emit_log(
            f"完了: found={stats.jobs_found} new={stats.new_jobs} updated={stats.updated_jobs} "
            f"duplicates={stats.duplicates} errors={stats.errors}"
        )
        return stats

    async def _store_listing(self, listing: RawListing, stats: SourceStats, emit_log: LogFn) -> Optional[bool]:
        """リードと正規化求人へ書き込む。既知URLなら True、保存できなかった行は None。1件の失敗は数えて握る。"""
        try:
            is_duplicate = self.db.exists(listing.url)
        except Exception as e:
            stats.errors += 1
            emit_log(f"重複チェック失敗: {e}")
            return False

        try:
            result = self.db.safe_upsert(listing.to_lead_fields())
            if result.get("id") is None:
                stats.errors += 1
                emit_log(f"会社名またはURLが空のため保存しません: {listing.url or '(no url)'}")
                return None
            if result["is_new"]:
                stats.new_jobs += 1
            else:
                stats.updated_jobs += 1
            self.upsert_service.upsert(DataConverter.listing_to_job(listing))
        except Exception as e:
            stats.errors += 1
            emit_log(f"保存失敗 ({listing.url}): {e}")
            log.warning("persist failed %s", listing.url, exc_info=True)
            return is_duplicate

        await self._enrich(result["id"], listing, result["is_new"], emit_log)
        return is_duplicate

    async def _enrich(self, company_id: int, listing: RawListing, is_new: bool, emit_log: LogFn) -> None:
        # どちらも失敗は「データなし」扱い
        if self.phone_lookup is not None and self.phone_lookup.enabled and not listing.phone:
            lead = self.db.get_by_id(company_id) or {}
            if not lead.get("phone"):
                try:
                    emit_log(f"電話番号を検索中: {listing.company_name}")
                    phone = await self.phone_lookup.find_phone(listing.company_name, listing.address)
                except Exception as e:
                    log.warning("phone lookup failed: %s", e)
                    phone = None
                if phone and self.db.fill_empty(company_id, {"phone": phone}):
                    emit_log(f"電話番号取得: {phone}")

        if is_new and self.ai_summarizer is not None and self.ai_summarizer.enabled:
            try:
                summary = await self.ai_summarizer.summarize(listing.to_lead_fields())
            except Exception as e:
                log.warning("ai summary failed: %s", e)
                summary = None
            if summary:
                self.db.fill_empty(
                    company_id,
                    {"ai_summary": summary["summary"], "ai_tags": json.dumps(summary["tags"], ensure_ascii=False)},
                )

    @staticmethod
    def _estimate_minutes(progress: ScrapeProgress) -> Optional[float]:
        if not progress.total or not progress.start_time or progress.current <= 0:
            return None
        elapsed = time.time() - progress.start_time
        remaining = max(0, progress.total - progress.current)
        return math.ceil(remaining * (elapsed / progress.current) / 60)

    def _write_log(self, stats: SourceStats) -> None:
        error_message = stats.error_message
        if not error_message and stats.errors > 0:
            error_message = f"{stats.errors} errors occurred"
        try:
            self.log_repo.insert(
                ScrapingLogEntry(
                    scrape_type="full",
                    source=stats.source,
                    status=stats.status,
                    jobs_found=stats.jobs_found,
                    new_jobs=stats.new_jobs,
                    updated_jobs=stats.updated_jobs,
                    errors=stats.errors,
                    error_message=error_message,
                    duration_ms=int((time.time() - stats.started) * 1000),
                )
            )
        except Exception:
            log.error("failed to write scraping log for %s", stats.source, exc_info=True)

# main.py
import argparse
import asyncio
import json
import logging
import os
import sys

from dotenv import load_dotenv

from src.ai_summarizer import AISummarizer
from src.database_manager import DatabaseManager
from src.maps_phone_lookup import MapsPhoneLookup
from src.models import SOURCES, ScrapingParams
from src.scrape_orchestrator import ScrapeOrchestrator
from src.scraping_log_repository import ScrapingLogRepository
from src.update_engine import UpdateEngine

# .env 読み込み
load_dotenv()

# --------------------------------------------------
# ロギング設定
# --------------------------------------------------
LOG_FILE = os.getenv("LOG_FILE", "logs/app.log")
os.makedirs(os.path.dirname(LOG_FILE) or ".", exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[
        logging.FileHandler(LOG_FILE, encoding="utf-8"),
        logging.StreamHandler(),
    ],
)
log = logging.getLogger(__name__)

# --------------------------------------------------
# 実行オプション（.env）
# --------------------------------------------------
DB_PATH = os.getenv("DB_PATH", "data/leads.db")
SCRAPE_SOURCES = [s.strip() for s in os.getenv("SCRAPE_SOURCES", ",".join(SOURCES)).split(",") if s.strip()]
SCRAPE_KEYWORDS = os.getenv("SCRAPE_KEYWORDS", "")
SCRAPE_LOCATION = os.getenv("SCRAPE_LOCATION", "")
SCRAPE_PREFECTURES = [s.strip() for s in os.getenv("SCRAPE_PREFECTURES", "").split(",") if s.strip()]
SCRAPE_JOB_TYPES = [s.strip() for s in os.getenv("SCRAPE_JOB_TYPES", "").split(",") if s.strip()]


def _print_progress(snapshot: dict) -> None:
    log.info(
        "[progress] %s %s/%s new=%s dup=%s eta=%s min",
        snapshot.get("source"),
        snapshot.get("current"),
        snapshot.get("total"),
        snapshot.get("new_count"),
        snapshot.get("duplicate_count"),
        snapshot.get("estimated_minutes"),
    )


def _parse_ids(raw: str) -> list[int]:
    return [int(x) for x in raw.split(",") if x.strip()]


async def run_scrape(db: DatabaseManager, args: argparse.Namespace) -> dict:
    phone_lookup = MapsPhoneLookup()
    orchestrator = ScrapeOrchestrator(
        db,
        phone_lookup=phone_lookup,
        ai_summarizer=AISummarizer(),
    )
    params = ScrapingParams(
        keywords=args.keywords,
        location=args.location,
        prefectures=args.prefecture or SCRAPE_PREFECTURES,
        job_types=args.job_type or SCRAPE_JOB_TYPES,
    )
    try:
        return await orchestrator.start(args.sources, params, on_progress=_print_progress)
    finally:
        phone_lookup.close()


async def run_refresh(db: DatabaseManager, args: argparse.Namespace) -> dict:
    engine = UpdateEngine(db)
    return await engine.start(_parse_ids(args.ids) if args.ids else None)


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="求人サイトからの営業リード収集")
    ap.add_argument("--db", default=DB_PATH)
    sub = ap.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("scrape", help="求人サイトをスクレイピングしてリードを更新")
    sp.add_argument("--sources", nargs="+", choices=SOURCES, default=SCRAPE_SOURCES)
    sp.add_argument("--keywords", default=SCRAPE_KEYWORDS)
    sp.add_argument("--location", default=SCRAPE_LOCATION)
    sp.add_argument("--prefecture", action="append", default=[])
    sp.add_argument("--job-type", action="append", default=[])

    rp = sub.add_parser("refresh", help="既存リードのランク・掲載状況を再チェック")
    rp.add_argument("--ids", default="", help="例: 1,2,3（省略時は全件）")

    lp = sub.add_parser("logs", help="実行ログを表示")
    lp.add_argument("--limit", type=int, default=20)

    args = ap.parse_args(argv)

    db = DatabaseManager(args.db)
    try:
        if args.command == "scrape":
            result = asyncio.run(run_scrape(db, args))
        elif args.command == "refresh":
            result = asyncio.run(run_refresh(db, args))
        else:
            repo = ScrapingLogRepository(db)
            result = {"recent": repo.get_recent(args.limit), "stats": repo.get_stats()}
            result["success"] = True
    finally:
        db.close()

    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())

import json

import main
from src.database_manager import DatabaseManager
from src.models import ScrapingLogEntry
from src.scraping_log_repository import ScrapingLogRepository


def test_logs_command_prints_recent_runs(tmp_path, capsys):
    db_path = str(tmp_path / "leads.db")
    db = DatabaseManager(db_path)
    ScrapingLogRepository(db).insert(ScrapingLogEntry(scrape_type="full", source="doda", status="success", jobs_found=2))
    db.close()

    assert main.main(["--db", db_path, "logs", "--limit", "5"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert [r["source"] for r in out["recent"]] == ["doda"]
    assert out["stats"]["total_jobs_found"] == 2


def test_scrape_command_arguments(tmp_path, capsys, monkeypatch):
    seen = {}

    async def fake_run_scrape(db, args):
        seen["args"] = args
        return {"success": False, "error": "boom"}

    monkeypatch.setattr(main, "run_scrape", fake_run_scrape)
    code = main.main([
        "--db", str(tmp_path / "leads.db"),
        "scrape",
        "--sources", "doda", "rikunabi",
        "--prefecture", "東京都",
        "--job-type", "営業",
        "--keywords", "SaaS",
    ])

    assert code == 1
    args = seen["args"]
    assert args.sources == ["doda", "rikunabi"]
    assert args.prefecture == ["東京都"]
    assert args.job_type == ["営業"]
    assert args.keywords == "SaaS"
    assert json.loads(capsys.readouterr().out)["error"] == "boom"


def test_parse_ids():
    assert main._parse_ids("1, 2,,3") == [1, 2, 3]

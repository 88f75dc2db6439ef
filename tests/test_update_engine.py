from contextlib import asynccontextmanager

import pytest

from src.models import LISTING_ACTIVE, LISTING_ENDED, JobListing
from src.update_engine import ALREADY_RUNNING, UpdateEngine, aggregate_results, detect_changes


class FakeSession:
    def __init__(self):
        self.pages = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @asynccontextmanager
    async def page(self):
        page = object()
        self.pages.append(page)
        yield page


class FakeSearch:
    """社名検索だけを持つストラテジーの代役"""

    def __init__(self, source, results=None, error=None):
        self.source = source
        self.results = results or {}
        self.error = error
        self.pages = []
        self.closed = False

    async def search_by_company(self, page, company_name, log_fn=None):
        self.pages.append(page)
        if self.error:
            raise self.error
        return list(self.results.get(company_name, []))

    def close(self):
        self.closed = True


def _job(source, rank, title="法人営業", company="株式会社サンプル"):
    return JobListing(source=source, title=title, company=company, url=f"https://{source}.example/1", rank=rank)


def _company(db, name="株式会社サンプル", url="https://tenshoku.mynavi.jp/jobinfo-1-1-1-1/", rank="C"):
    res = db.safe_upsert({"source": "mynavi", "url": url, "company_name": name, "budget_rank": rank})
    return res["id"]


def _engine(db, strategies, sleeps=None, session=None):
    session = session or FakeSession()

    async def fake_sleep(sec):
        if sleeps is not None:
            sleeps.append(sec)

    return UpdateEngine(db, session_factory=lambda: session, strategies=strategies, delay_sec=3, sleep=fake_sleep)


def test_aggregate_and_detect_changes():
    agg = aggregate_results({
        "mynavi": [_job("mynavi", "B")],
        "doda": [],
        "rikunabi": [_job("rikunabi", "A"), _job("rikunabi", "C")],
    })
    assert agg.rank == "A"
    assert agg.job_count == 3
    assert agg.sources == {"mynavi": 1, "doda": 0, "rikunabi": 2}

    changes = detect_changes({"budget_rank": "C", "job_count": 1, "listing_status": LISTING_ACTIVE}, agg)
    assert changes["rank"] == {"old": "C", "new": "A", "direction": "upgrade"}
    assert changes["job_count"] == {"old": 1, "new": 3, "delta": 2}
    assert "listing_status" not in changes


def test_detect_changes_listing_ended_keeps_rank():
    agg = aggregate_results({"mynavi": [], "doda": [], "rikunabi": []})
    changes = detect_changes({"budget_rank": "A", "job_count": 2, "listing_status": LISTING_ACTIVE}, agg)
    assert "rank" not in changes
    assert changes["job_count"]["delta"] == -2
    assert changes["listing_status"] == {"old": LISTING_ACTIVE, "new": LISTING_ENDED}

    # 終了していたものが再掲載
    agg = aggregate_results({"mynavi": [_job("mynavi", "C")]})
    changes = detect_changes({"budget_rank": "C", "job_count": 0, "listing_status": LISTING_ENDED}, agg)
    assert changes["listing_status"] == {"old": LISTING_ENDED, "new": LISTING_ACTIVE}


@pytest.mark.asyncio
async def test_best_rank_across_sites_is_recorded(db):
    cid = _company(db)
    strategies = {
        "mynavi": FakeSearch("mynavi", {"株式会社サンプル": [_job("mynavi", "B", title="法人営業（東京）")]}),
        "doda": FakeSearch("doda"),
        "rikunabi": FakeSearch("rikunabi", {"株式会社サンプル": [_job("rikunabi", "A")]}),
    }
    session = FakeSession()
    engine = _engine(db, strategies, session=session)

    result = await engine.start([cid])

    assert result["success"] is True
    changes = result["results"][0]["changes"]
    assert changes["rank"] == {"old": "C", "new": "A", "direction": "upgrade"}
    assert changes["job_count"] == {"old": 0, "new": 2, "delta": 2}
    assert "error" not in result["results"][0]

    row = db.get_by_id(cid)
    assert row["budget_rank"] == "A"
    assert row["last_rank"] == "C"
    assert row["job_count"] == 2
    assert row["update_count"] == 1
    assert row["latest_job_title"] == "法人営業（東京）"
    assert row["listing_status"] == LISTING_ACTIVE

    # サイトごとに別ページ
    assert len(session.pages) == 3
    assert len({id(p) for p in session.pages}) == 3
    # 渡された strategies は呼び出し側が閉じる
    assert not any(s.closed for s in strategies.values())


@pytest.mark.asyncio
async def test_site_failure_counts_as_no_jobs(db):
    cid = _company(db, rank="B")
    strategies = {
        "mynavi": FakeSearch("mynavi", {"株式会社サンプル": [_job("mynavi", "B")]}),
        "doda": FakeSearch("doda", error=RuntimeError("timeout")),
        "rikunabi": FakeSearch("rikunabi"),
    }
    logs = []
    engine = _engine(db, strategies)

    result = await engine.start([cid], on_log=logs.append)

    changes = result["results"][0]["changes"]
    assert "rank" not in changes
    assert changes["job_count"]["new"] == 1
    assert any("[doda] エラー: timeout" in line for line in logs)


@pytest.mark.asyncio
async def test_company_error_does_not_stop_others(db, monkeypatch):
    first = _company(db, name="株式会社アルファ", url="https://a/")
    second = _company(db, name="株式会社ベータ", url="https://b/")
    strategies = {"mynavi": FakeSearch("mynavi")}
    engine = _engine(db, strategies)

    original = db.apply_refresh

    def flaky_apply(company_id, **kw):
        if company_id == first:
            raise RuntimeError("disk full")
        return original(company_id, **kw)

    monkeypatch.setattr(db, "apply_refresh", flaky_apply)

    result = await engine.start([first, second])

    assert result["success"] is True
    by_id = {r["company_id"]: r for r in result["results"]}
    assert by_id[first]["error"] == "disk full"
    assert "error" not in by_id[second]
    assert db.get_by_id(second)["update_count"] == 1
    assert db.get_by_id(first)["update_count"] == 0


@pytest.mark.asyncio
async def test_delay_between_companies_only(db):
    ids = [_company(db, name=f"株式会社{n}", url=f"https://{n}/") for n in ("a", "b", "c")]
    sleeps = []
    engine = _engine(db, {"mynavi": FakeSearch("mynavi")}, sleeps=sleeps)

    result = await engine.start(ids)

    assert len(result["results"]) == 3
    assert sleeps == [3, 3]


@pytest.mark.asyncio
async def test_all_companies_and_missing_ids(db):
    _company(db, name="株式会社アルファ", url="https://a/")
    kept = _company(db, name="株式会社ベータ", url="https://b/")
    engine = _engine(db, {"mynavi": FakeSearch("mynavi")})

    only = await engine.start([kept, 9999])
    assert [r["company_id"] for r in only["results"]] == [kept]
    # 求人ゼロ → 掲載終了
    assert only["results"][0]["changes"]["listing_status"]["new"] == LISTING_ENDED

    everything = await engine.start()
    assert len(everything["results"]) == 2


@pytest.mark.asyncio
async def test_running_guard(db):
    engine = _engine(db, {})
    engine._running = True
    assert await engine.start() == {"success": False, "error": ALREADY_RUNNING}

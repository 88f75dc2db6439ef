import json
import sqlite3

import pytest

from src.database_manager import DatabaseManager
from src.models import LISTING_ACTIVE, LISTING_ENDED, STEP2_COMPLETED


def _lead(url="https://tenshoku.mynavi.jp/jobinfo-1-1-1-1/", **kw):
    data = {
        "source": "mynavi",
        "url": url,
        "company_name": "株式会社サンプル",
        "job_title": "法人営業",
        "industry": "IT・通信",
        "address": "東京都渋谷区渋谷1-1-1",
        "budget_rank": "B",
        "rank_confidence": 0.7,
    }
    data.update(kw)
    return data


# 新規作成 → 同じURLで更新
def test_safe_upsert_insert_then_update(db: DatabaseManager):
    first = db.safe_upsert(_lead())
    assert first["is_new"] is True
    assert first["id"] is not None

    row = db.get_by_id(first["id"])
    assert row["status"] == "new"
    assert row["rank_detected_at"] is not None
    assert row["listing_status"] == LISTING_ACTIVE

    second = db.safe_upsert(_lead(job_title="インサイドセールス", budget_rank="A", rank_confidence=0.9))
    assert second == {"is_new": False, "id": first["id"]}
    row = db.get_by_id(first["id"])
    assert row["job_title"] == "インサイドセールス"
    assert row["budget_rank"] == "A"
    assert row["rank_confidence"] == 0.9
    assert len(db.get_all()) == 1


def test_safe_upsert_requires_url_and_name(db: DatabaseManager):
    assert db.safe_upsert({"company_name": "X"}) == {"is_new": False, "id": None}
    assert db.safe_upsert({"url": "https://example.com/"}) == {"is_new": False, "id": None}
    assert db.get_all() == []


# 営業担当が手で直した電話番号は再スクレイプで上書きしない
def test_protected_phone_is_not_overwritten(db: DatabaseManager):
    res = db.safe_upsert(_lead(phone="03-1111-2222"))
    db.update(res["id"], {"status": "contacted", "note": "担当: 佐藤"})

    db.safe_upsert(_lead(phone="03-9999-0000", status="new", note=""))
    row = db.get_by_id(res["id"])
    assert row["phone"] == "03-1111-2222"
    assert row["status"] == "contacted"
    assert row["note"] == "担当: 佐藤"


def test_empty_value_never_clears(db: DatabaseManager):
    res = db.safe_upsert(_lead(phone="03-1111-2222", representative="山田 太郎"))
    db.safe_upsert(_lead(phone="", representative="", industry=""))
    row = db.get_by_id(res["id"])
    assert row["phone"] == "03-1111-2222"
    assert row["representative"] == "山田 太郎"
    assert row["industry"] == "IT・通信"


def test_fill_only_fields_fill_when_empty(db: DatabaseManager):
    res = db.safe_upsert(_lead())
    db.safe_upsert(_lead(phone="03-1234-5678", email="info@example.co.jp", scrape_status=STEP2_COMPLETED))
    row = db.get_by_id(res["id"])
    assert row["phone"] == "03-1234-5678"
    assert row["email"] == "info@example.co.jp"
    assert row["scrape_status"] == STEP2_COMPLETED


def test_insert_ignores_operator_fields(db: DatabaseManager):
    res = db.safe_upsert(_lead(status="contacted", ai_summary="should not be stored"))
    row = db.get_by_id(res["id"])
    assert row["status"] == "new"
    assert row["ai_summary"] is None


def test_url_is_unique(db: DatabaseManager):
    db.safe_upsert(_lead())
    with pytest.raises(sqlite3.IntegrityError):
        db.cur.execute(
            "INSERT INTO companies (company_name, url) VALUES (?, ?)",
            ("別会社", "https://tenshoku.mynavi.jp/jobinfo-1-1-1-1/"),
        )


def test_get_all_filters(db: DatabaseManager):
    a = db.safe_upsert(_lead(url="https://a/", company_name="アルファ株式会社", budget_rank="A"))
    db.safe_upsert(_lead(url="https://b/", company_name="ベータ株式会社", source="doda", budget_rank="C"))
    db.safe_upsert(_lead(url="https://c/", company_name="ガンマ株式会社", source="rikunabi", budget_rank="B"))
    db.update(a["id"], {"status": "contacted", "note": "展示会で名刺交換"})

    assert len(db.get_all({"status": "all"})) == 3
    assert [r["company_name"] for r in db.get_all({"status": "contacted"})] == ["アルファ株式会社"]
    assert [r["company_name"] for r in db.get_all({"source": "doda"})] == ["ベータ株式会社"]
    assert [r["company_name"] for r in db.get_all({"budget_rank": "B"})] == ["ガンマ株式会社"]
    # メモも検索対象
    assert [r["company_name"] for r in db.get_all({"search": "展示会"})] == ["アルファ株式会社"]
    # 新しい順
    assert db.get_all()[0]["company_name"] == "ガンマ株式会社"


def test_update_and_delete(db: DatabaseManager):
    a = db.safe_upsert(_lead(url="https://a/"))
    b = db.safe_upsert(_lead(url="https://b/"))
    c = db.safe_upsert(_lead(url="https://c/"))

    assert db.update(a["id"], {"note": "メモ", "unknown_column": 1}) is True
    assert db.update(a["id"], {"unknown_column": 1}) is False
    assert db.get_by_id(a["id"])["note"] == "メモ"

    assert db.delete(a["id"]) is True
    assert db.delete(a["id"]) is False
    assert db.delete_many([b["id"], c["id"], 9999]) == 2
    assert db.delete_many([]) == 0
    assert db.get_all() == []


def test_fill_empty_returns_filled_columns(db: DatabaseManager):
    res = db.safe_upsert(_lead(phone="03-1111-2222"))
    filled = db.fill_empty(res["id"], {"phone": "03-9999-0000", "ai_summary": "SaaS の受託開発", "ai_tags": json.dumps(["IT"])})
    assert sorted(filled) == ["ai_summary", "ai_tags"]
    row = db.get_by_id(res["id"])
    assert row["phone"] == "03-1111-2222"
    assert json.loads(row["ai_tags"]) == ["IT"]
    assert db.fill_empty(9999, {"phone": "x"}) == []


def test_apply_refresh_rank_change_keeps_previous_rank(db: DatabaseManager):
    res = db.safe_upsert(_lead(budget_rank="B"))
    db.apply_refresh(
        res["id"],
        job_count=3,
        latest_job_title="法人営業（東京）",
        changes={"rank": {"old": "B", "new": "A", "direction": "upgrade"}},
    )
    row = db.get_by_id(res["id"])
    assert row["budget_rank"] == "A"
    assert row["last_rank"] == "B"
    assert row["rank_changed_at"] is not None
    assert row["job_count"] == 3
    assert row["update_count"] == 1
    assert row["latest_job_title"] == "法人営業（東京）"

    db.apply_refresh(
        res["id"],
        job_count=0,
        latest_job_title=None,
        changes={"listing_status": {"old": LISTING_ACTIVE, "new": LISTING_ENDED}},
    )
    row = db.get_by_id(res["id"])
    assert row["update_count"] == 2
    assert row["budget_rank"] == "A"
    assert row["listing_status"] == LISTING_ENDED
    assert row["latest_job_title"] == "法人営業（東京）"


def test_apply_refresh_rejects_unknown_listing_status(db: DatabaseManager):
    res = db.safe_upsert(_lead())
    with pytest.raises(ValueError):
        db.apply_refresh(res["id"], job_count=0, latest_job_title=None, changes={"listing_status": {"new": "不明"}})


def test_transaction_rolls_back(db: DatabaseManager):
    with pytest.raises(RuntimeError):
        with db.transaction():
            db.safe_upsert(_lead(url="https://a/"))
            with db.transaction():
                db.safe_upsert(_lead(url="https://b/"))
            raise RuntimeError("boom")
    assert db.get_all() == []

    with db.transaction():
        db.safe_upsert(_lead(url="https://a/"))
    assert db.exists("https://a/")


def test_reopen_keeps_schema(tmp_path):
    path = str(tmp_path / "leads.db")
    first = DatabaseManager(db_path=path)
    first.safe_upsert(_lead())
    first.close()

    second = DatabaseManager(db_path=path)
    try:
        assert second.exists("https://tenshoku.mynavi.jp/jobinfo-1-1-1-1/")
        assert "listing_status" in second._get_table_columns()
    finally:
        second.close()

# src/database_manager.py
import os
import sqlite3
import time
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional, Dict, Any

from src.models import LISTING_ACTIVE, LISTING_ENDED, STEP2_COMPLETED

log = logging.getLogger(__name__)

# 再スクレイプで「新しい値があれば」上書きする列
ALWAYS_UPDATE_FIELDS = (
    "company_name",
    "homepage_url",
    "industry",
    "area",
    "job_title",
    "salary_text",
    "representative",
    "establishment",
    "employees",
    "revenue",
    "address",
    "job_page_updated_at",
    "job_page_end_date",
)

# 空のときだけ埋める列（営業担当・エンリッチで入った値を守る）
FILL_ONLY_FIELDS = ("phone", "email", "contact_form_url")

# スクレイプでは絶対に触らない列
OPERATOR_FIELDS = ("status", "note", "ai_summary", "ai_tags")

SEARCH_COLUMNS = ("company_name", "address", "note", "ai_summary", "ai_tags")

# 後から増えた列（既存DBへ ALTER TABLE で追加）
_LATE_COLUMNS = (
    ("email", "TEXT"),
    ("contact_form_url", "TEXT"),
    ("budget_rank", "TEXT"),
    ("rank_confidence", "REAL"),
    ("rank_detected_at", "TEXT"),
    ("last_updated_at", "TEXT"),
    ("update_count", "INTEGER DEFAULT 0"),
    ("last_rank", "TEXT"),
    ("rank_changed_at", "TEXT"),
    ("job_count", "INTEGER DEFAULT 0"),
    ("latest_job_title", "TEXT"),
    ("listing_status", f"TEXT DEFAULT '{LISTING_ACTIVE}'"),
    ("job_page_updated_at", "TEXT"),
    ("job_page_end_date", "TEXT"),
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class DatabaseManager:
    """
    リード（companies）・正規化求人（jobs）・実行ログ（scraping_logs）の SQLite ストア。
    - url は UNIQUE 制約で一意（アプリ側の重複判定とは独立）
    - DB初期化（スキーマ作成/索引作成）時の "database is locked" をリトライで回避
    - PRAGMA busy_timeout を 60s、WAL + synchronous=NORMAL
    - transaction() は BEGIN IMMEDIATE で書込ロックを先取りし、例外時はロールバック
    """
    def __init__(self, db_path: Optional[str] = None):
        db_path = db_path or os.getenv("DB_PATH", "data/leads.db")
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)

        # autocommit（isolation_level=None）+ 長めの timeout
        self.conn = sqlite3.connect(
            db_path,
            timeout=60,
            isolation_level=None,    # autocommit
            check_same_thread=False
        )
        self.conn.row_factory = sqlite3.Row
        self.cur = self.conn.cursor()
        self.db_path = db_path

        self._configure_pragmas()

        self.wal_checkpoint_interval = max(0, int(os.getenv("WAL_CHECKPOINT_INTERVAL", "200")))
        self._writes_since_checkpoint = 0
        self._tx_depth = 0
        self._schema_columns: set[str] = set()

        # ★ 初期化はロック競合が起きやすいので安全にリトライ
        self._ensure_schema_with_retry()
        self._ensure_indexes()
        self._refresh_schema_columns()

    def _commit_with_checkpoint(self) -> None:
        # transaction() の中では外側でまとめてコミットする
        if self._tx_depth:
            return
        self.conn.commit()
        self._maybe_checkpoint()

    def _maybe_checkpoint(self) -> None:
        if self.wal_checkpoint_interval <= 0:
            return
        self._writes_since_checkpoint += 1
        if self._writes_since_checkpoint >= self.wal_checkpoint_interval:
            try:
                self.conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
            except sqlite3.DatabaseError:
                pass
            else:
                self._writes_since_checkpoint = 0

    # ---------- PRAGMA ----------
    def _configure_pragmas(self) -> None:
        self.conn.execute("PRAGMA journal_mode=WAL;")
        self.conn.execute("PRAGMA synchronous=NORMAL;")
        self.conn.execute("PRAGMA busy_timeout=60000;")  # 60秒

    def _get_table_columns(self, table: str = "companies") -> set[str]:
        return {r[1] for r in self.conn.execute(f"PRAGMA table_info({table})")}

    def _refresh_schema_columns(self) -> None:
        self._schema_columns = self._get_table_columns()

    # ---------- 初期化（ロックに強いリトライ付） ----------
    def _ensure_schema_with_retry(self, max_retry_sec: int = 20) -> None:
        start = time.time()
        while True:
            try:
                self._ensure_schema()
                return
            except sqlite3.OperationalError as e:
                msg = str(e).lower()
                if ("locked" in msg or "busy" in msg) and (time.time() - start < max_retry_sec):
                    time.sleep(1.0)
                    continue
                raise

    def _ensure_schema(self) -> None:
        self.cur.execute(
            """
            CREATE TABLE IF NOT EXISTS companies (
                id INTEGER PRIMARY KEY,
                company_name     TEXT NOT NULL,
                source           TEXT,
                url              TEXT NOT NULL UNIQUE,
                homepage_url     TEXT,
                status           TEXT DEFAULT 'new',
                industry         TEXT,
                area             TEXT,
                job_title        TEXT,
                job_description  TEXT,
                salary_text      TEXT,
                representative   TEXT,
                establishment    TEXT,
                employees        TEXT,
                revenue          TEXT,
                phone            TEXT,
                address          TEXT,
                ai_summary       TEXT,
                ai_tags          TEXT,
                note             TEXT,
                scrape_status    TEXT DEFAULT 'pending',
                error_message    TEXT,
                last_seen_at     TEXT,
                created_at       TEXT,
                updated_at       TEXT
            )
            """
        )
        self.cur.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                id               TEXT PRIMARY KEY,
                source           TEXT NOT NULL,
                source_job_id    TEXT NOT NULL,
                source_url       TEXT NOT NULL UNIQUE,
                company_name     TEXT NOT NULL,
                company_url      TEXT,
                title            TEXT NOT NULL,
                employment_type  TEXT,
                industry         TEXT,
                description      TEXT,
                salary_min       INTEGER,
                salary_max       INTEGER,
                salary_text      TEXT,
                locations        TEXT,
                location_summary TEXT,
                date_posted      TEXT,
                date_expires     TEXT,
                date_updated     TEXT,
                scraped_at       TEXT NOT NULL,
                last_checked_at  TEXT NOT NULL,
                is_active        INTEGER DEFAULT 1,
                update_count     INTEGER DEFAULT 0,
                CONSTRAINT unique_source_job UNIQUE (source, source_job_id)
            )
            """
        )
        self.cur.execute(
            """
            CREATE TABLE IF NOT EXISTS scraping_logs (
                id            INTEGER PRIMARY KEY AUTOINCREMENT,
                scrape_type   TEXT NOT NULL,
                source        TEXT NOT NULL,
                target_url    TEXT,
                status        TEXT NOT NULL CHECK (status IN ('success', 'error', 'partial')),
                jobs_found    INTEGER DEFAULT 0,
                new_jobs      INTEGER DEFAULT 0,
                updated_jobs  INTEGER DEFAULT 0,
                errors        INTEGER DEFAULT 0,
                error_message TEXT,
                duration_ms   INTEGER,
                scraped_at    TEXT NOT NULL
            )
            """
        )

        cols = self._get_table_columns()
        # 既存データベースとの互換を保つため、後から増えた列を順に追加する
        for name, ddl in _LATE_COLUMNS:
            if name not in cols:
                self.conn.execute(f"ALTER TABLE companies ADD COLUMN {name} {ddl};")
                cols.add(name)
        if "update_count" not in self._get_table_columns("jobs"):
            self.conn.execute("ALTER TABLE jobs ADD COLUMN update_count INTEGER DEFAULT 0;")

    def _ensure_indexes(self) -> None:
        try:
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_companies_status ON companies(status);")
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_companies_budget_rank ON companies(budget_rank);")
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_companies_source ON companies(source);")
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_source ON jobs(source);")
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_company ON jobs(company_name);")
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_active ON jobs(is_active);")
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_logs_source ON scraping_logs(source);")
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_logs_scraped ON scraping_logs(scraped_at);")
        except sqlite3.DatabaseError:
            # 古いSQLiteなどで失敗しても致命ではない
            pass

    # ---------- トランザクション ----------
    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        if self._tx_depth:
            # ネストは外側に合流
            self._tx_depth += 1
            try:
                yield self.cur
            finally:
                self._tx_depth -= 1
            return

        cur = self.conn.cursor()
        # IMMEDIATE: 直ちに RESERVED ロック（書込予約）を取り、競合を避ける
        cur.execute("BEGIN IMMEDIATE;")
        self._tx_depth = 1
        try:
            yield cur
        except Exception:
            self._tx_depth = 0
            self.conn.rollback()
            raise
        self._tx_depth = 0
        self._commit_with_checkpoint()

    # ---------- 読み込み ----------
    def get_all(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        filters:
          status       'all' または未指定で無効
          source       mynavi / doda / rikunabi
          budget_rank  A / B / C
          search       会社名・住所・メモ・AI要約・AIタグの部分一致
        新しい順。
        """
        filters = filters or {}
        sql = "SELECT * FROM companies WHERE 1=1"
        params: list[Any] = []

        status = filters.get("status")
        if status and status != "all":
            sql += " AND status = ?"
            params.append(status)
        if filters.get("source"):
            sql += " AND source = ?"
            params.append(filters["source"])
        if filters.get("budget_rank"):
            sql += " AND budget_rank = ?"
            params.append(filters["budget_rank"])
        if filters.get("search"):
            term = f"%{filters['search']}%"
            sql += " AND (" + " OR ".join(f"{c} LIKE ?" for c in SEARCH_COLUMNS) + ")"
            params.extend([term] * len(SEARCH_COLUMNS))

        sql += " ORDER BY created_at DESC, id DESC"
        return [dict(r) for r in self.conn.execute(sql, params).fetchall()]

    def get_by_id(self, company_id: int) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM companies WHERE id=?", (company_id,)).fetchone()
        return dict(row) if row else None

    def get_by_url(self, url: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM companies WHERE url=?", (url,)).fetchone()
        return dict(row) if row else None

    def exists(self, url: str) -> bool:
        return self.conn.execute("SELECT 1 FROM companies WHERE url=?", (url,)).fetchone() is not None

    # ---------- 書き込み ----------
    def _known(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in fields.items() if k in self._schema_columns and k != "id"}

    def safe_upsert(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        url をキーにリードを作成/更新する。
        戻り値: {"is_new": bool, "id": int | None}
        更新時:
          - ALWAYS_UPDATE_FIELDS は新しい値が空でなければ上書き
          - FILL_ONLY_FIELDS は保存値が空のときだけ埋める
          - OPERATOR_FIELDS は触らない
          - budget_rank があれば rank 系を上書き
        """
        url = fields.get("url")
        if not url or not fields.get("company_name"):
            return {"is_new": False, "id": None}

        now = _now()
        existing = self.get_by_url(url)
        if existing is None:
            data = self._known(fields)
            for k in OPERATOR_FIELDS:
                data.pop(k, None)
            data["last_seen_at"] = now
            data["created_at"] = now
            data["updated_at"] = now
            data["rank_detected_at"] = now if fields.get("budget_rank") else None
            cols = list(data.keys())
            self.cur.execute(
                f"INSERT INTO companies ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                [data[c] for c in cols],
            )
            new_id = self.cur.lastrowid
            self._commit_with_checkpoint()
            return {"is_new": True, "id": new_id}

        updates: Dict[str, Any] = {}
        for k in ALWAYS_UPDATE_FIELDS:
            if not _is_empty(fields.get(k)):
                updates[k] = fields[k]
        for k in FILL_ONLY_FIELDS:
            if not _is_empty(fields.get(k)) and _is_empty(existing.get(k)):
                updates[k] = fields[k]
        if fields.get("scrape_status") == STEP2_COMPLETED:
            updates["scrape_status"] = STEP2_COMPLETED
        if fields.get("budget_rank"):
            updates["budget_rank"] = fields["budget_rank"]
            updates["rank_confidence"] = fields.get("rank_confidence")
            updates["rank_detected_at"] = now
        updates["last_seen_at"] = now
        updates["updated_at"] = now

        self._update_columns(existing["id"], updates)
        return {"is_new": False, "id": existing["id"]}

    def _update_columns(self, company_id: int, updates: Dict[str, Any]) -> int:
        updates = self._known(updates)
        if not updates:
            return 0
        sets = ", ".join(f"{k}=?" for k in updates)
        self.cur.execute(f"UPDATE companies SET {sets} WHERE id=?", [*updates.values(), company_id])
        changed = self.cur.rowcount
        self._commit_with_checkpoint()
        return changed

    def update(self, company_id: int, fields: Dict[str, Any]) -> bool:
        """任意列の更新（営業担当の編集用）。保護はかけない。"""
        data = self._known(fields)
        if not data:
            return False
        data["updated_at"] = _now()
        return self._update_columns(company_id, data) > 0

    def fill_empty(self, company_id: int, fields: Dict[str, Any]) -> List[str]:
        """保存値が空の列だけ埋める。埋めた列名を返す。"""
        existing = self.get_by_id(company_id)
        if existing is None:
            return []
        updates = {
            k: v for k, v in self._known(fields).items()
            if not _is_empty(v) and _is_empty(existing.get(k))
        }
        if not updates:
            return []
        filled = list(updates.keys())
        updates["updated_at"] = _now()
        self._update_columns(company_id, updates)
        return filled

    def apply_refresh(
        self,
        company_id: int,
        *,
        job_count: int,
        latest_job_title: Optional[str],
        changes: Dict[str, Dict[str, Any]],
    ) -> None:
        """
        再チェック結果の反映。
        rank 変動時は旧ランクを last_rank に退避、update_count は毎回 +1。
        """
        now = _now()
        sets = ["last_updated_at = ?", "update_count = COALESCE(update_count, 0) + 1", "job_count = ?"]
        params: list[Any] = [now, job_count]

        rank = changes.get("rank")
        if rank and rank.get("new"):
            sets += ["last_rank = budget_rank", "budget_rank = ?", "rank_changed_at = ?"]
            params += [rank["new"], now]

        status = changes.get("listing_status")
        if status:
            new_status = status["new"]
            if new_status not in (LISTING_ACTIVE, LISTING_ENDED):
                raise ValueError(f"invalid listing_status: {new_status}")
            sets.append("listing_status = ?")
            params.append(new_status)

        if latest_job_title:
            sets.append("latest_job_title = ?")
            params.append(latest_job_title)

        sets.append("updated_at = ?")
        params += [now, company_id]
        self.cur.execute(f"UPDATE companies SET {', '.join(sets)} WHERE id = ?", params)
        self._commit_with_checkpoint()

    def delete(self, company_id: int) -> bool:
        self.cur.execute("DELETE FROM companies WHERE id=?", (company_id,))
        deleted = self.cur.rowcount > 0
        self._commit_with_checkpoint()
        return deleted

    def delete_many(self, company_ids: Iterable[int]) -> int:
        ids = list(company_ids)
        if not ids:
            return 0
        self.cur.execute(
            f"DELETE FROM companies WHERE id IN ({', '.join('?' for _ in ids)})",
            ids,
        )
        deleted = self.cur.rowcount
        self._commit_with_checkpoint()
        return deleted

    def close(self) -> None:
        try:
            if self.wal_checkpoint_interval > 0:
                try:
                    self.conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
                except sqlite3.DatabaseError:
                    pass
            self.cur.close()
        finally:
            self.conn.close()

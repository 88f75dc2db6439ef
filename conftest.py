# conftest.py
import sys
import os

import pytest

# プロジェクトルートを sys.path の先頭に追加（tests から `from src.xxx import ...` できるように）
ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, ROOT)

from src.database_manager import DatabaseManager  # noqa: E402


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(db_path=str(tmp_path / "leads.db"))
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture(autouse=True)
def _no_external_keys(monkeypatch):
    # テスト中に実 API を叩かない
    for name in ("GOOGLE_MAPS_API_KEY", "GEMINI_API_KEY", "USE_AI"):
        monkeypatch.delenv(name, raising=False)

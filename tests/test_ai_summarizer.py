# tests/test_ai_summarizer.py
import asyncio
import json

import pytest
from google.api_core.exceptions import GoogleAPIError

from src.ai_summarizer import AISummarizer, build_source_text, parse_summary


class DummyModel:
    def __init__(self, fake_result=None, raw_text=None, error=None, delay=0.0):
        self._fake_result = fake_result
        self._raw_text = raw_text
        self._error = error
        self._delay = delay
        self.prompts = []

    async def generate_content_async(self, prompt, *args, **kwargs):
        class DummyResponse:
            def __init__(self, text):
                self.text = text
        self.prompts.append(prompt)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        if self._raw_text is not None:
            return DummyResponse(self._raw_text)
        return DummyResponse(json.dumps(self._fake_result, ensure_ascii=False))


LEAD = {
    "company_name": "株式会社サンプル",
    "industry": "IT・通信",
    "job_description": "自社SaaSの法人営業",
    "address": "東京都渋谷区",
}


@pytest.mark.asyncio
async def test_summarize_success():
    model = DummyModel({"summary": "中小企業向け会計SaaSを開発・販売", "tags": ["SaaS", "会計", "BtoB"]})
    summarizer = AISummarizer(model=model)
    result = await summarizer.summarize(LEAD)

    assert result == {"summary": "中小企業向け会計SaaSを開発・販売", "tags": ["SaaS", "会計", "BtoB"]}
    assert "会社名: 株式会社サンプル" in model.prompts[0]
    assert "事業内容: 自社SaaSの法人営業" in model.prompts[0]


@pytest.mark.asyncio
async def test_summarize_handles_fenced_json():
    raw = '```json\n{"summary": "物流倉庫の運営", "tags": ["物流"]}\n```'
    summarizer = AISummarizer(model=DummyModel(raw_text=raw))
    assert await summarizer.summarize(LEAD) == {"summary": "物流倉庫の運営", "tags": ["物流"]}


@pytest.mark.asyncio
async def test_summarize_returns_none_on_non_json():
    summarizer = AISummarizer(model=DummyModel(raw_text="not a json"))
    assert await summarizer.summarize(LEAD) is None


@pytest.mark.asyncio
async def test_summarize_returns_none_on_api_error():
    summarizer = AISummarizer(model=DummyModel(error=GoogleAPIError("quota")))
    assert await summarizer.summarize(LEAD) is None


@pytest.mark.asyncio
async def test_summarize_times_out(monkeypatch):
    monkeypatch.setenv("AI_CALL_TIMEOUT_SEC", "0.01")
    summarizer = AISummarizer(model=DummyModel({"summary": "x", "tags": []}, delay=1.0))
    assert await summarizer.summarize(LEAD) is None


@pytest.mark.asyncio
async def test_disabled_without_key():
    summarizer = AISummarizer()
    assert summarizer.enabled is False
    assert await summarizer.summarize(LEAD) is None


def test_parse_summary_limits():
    raw = json.dumps({"summary": "あ" * 150, "tags": ["a", "b", "", "c", "d", "e", "f"]})
    parsed = parse_summary(raw)
    assert len(parsed["summary"]) == 100
    assert parsed["tags"] == ["a", "b", "c", "d", "e"]
    assert parse_summary('{"tags": ["x"]}') is None
    assert parse_summary('{"summary": "要約", "tags": "x"}') == {"summary": "要約", "tags": []}


def test_build_source_text_skips_empty():
    assert build_source_text({"company_name": "X", "industry": ""}) == "会社名: X"
    assert build_source_text({}) == ""

# src/ai_summarizer.py
import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

import google.generativeai as generativeai
from google.api_core.exceptions import GoogleAPIError

log = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-lite"
SUMMARY_MAX_LEN = 100
MAX_TAGS = 5
INPUT_MAX_LEN = 10000


def _getenv_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    return (str(v).strip().lower() == "true") if v is not None else default


def _extract_first_json(text: str) -> Optional[Dict[str, Any]]:
    if not text:
        return None
    text = re.sub(r"```(?:json)?", "", text, flags=re.IGNORECASE).strip()
    brace_stack = 0
    start = -1
    for i, ch in enumerate(text):
        if ch == "{":
            if brace_stack == 0:
                start = i
            brace_stack += 1
        elif ch == "}":
            brace_stack -= 1
            if brace_stack == 0 and start != -1:
                try:
                    return json.loads(text[start:i + 1])
                except ValueError:
                    start = -1
    try:
        return json.loads(text)
    except ValueError:
        return None


def _resp_text(resp: Any) -> str:
    t = getattr(resp, "text", None)
    if isinstance(t, str) and t.strip():
        return t
    for cand in getattr(resp, "candidates", []) or []:
        parts = getattr(getattr(cand, "content", None), "parts", []) or []
        for p in parts:
            pt = getattr(p, "text", None)
            if isinstance(pt, str) and pt.strip():
                return pt
    return str(resp)


def parse_summary(raw: str) -> Optional[Dict[str, Any]]:
    """{"summary": str(<=100), "tags": [<=5]} に整える。要約が無ければ None。"""
    data = _extract_first_json(raw)
    if not isinstance(data, dict):
        return None
    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        return None
    tags = data.get("tags")
    tags = [str(t).strip() for t in tags if str(t).strip()] if isinstance(tags, list) else []
    return {"summary": summary.strip()[:SUMMARY_MAX_LEN], "tags": tags[:MAX_TAGS]}


def build_source_text(lead: Dict[str, Any]) -> str:
    parts: List[str] = []
    for label, key in (
        ("会社名", "company_name"),
        ("業種", "industry"),
        ("事業内容", "job_description"),
        ("職種", "job_title"),
        ("所在地", "address"),
        ("従業員数", "employees"),
        ("売上高", "revenue"),
    ):
        value = lead.get(key)
        if value:
            parts.append(f"{label}: {value}")
    return "\n".join(parts)


class AISummarizer:
    """
    Gemini で新規リードの営業向け要約とタグを作る。
    失敗・タイムアウト・無効時は None（呼び出し側は「データなし」として扱う）。
    """

    def __init__(self, model=None, enabled: Optional[bool] = None):
        self.timeout_sec = float(os.getenv("AI_CALL_TIMEOUT_SEC", "20") or 0)
        if model is not None:
            self.model = model
            return
        api_key = (os.getenv("GEMINI_API_KEY") or "").strip()
        use_ai = _getenv_bool("USE_AI", False) if enabled is None else enabled
        self.model = None
        if not (use_ai and api_key):
            log.info("[ai] disabled (USE_AI=%s, KEY_SET=%s)", use_ai, bool(api_key))
            return
        model_name = (os.getenv("GEMINI_MODEL") or DEFAULT_MODEL).strip()
        try:
            generativeai.configure(api_key=api_key)
            self.model = generativeai.GenerativeModel(model_name)
            log.info("[ai] Gemini model initialized (%s).", model_name)
        except (GoogleAPIError, ValueError) as e:
            log.error("[ai] failed to init model: %s", e, exc_info=True)

    @property
    def enabled(self) -> bool:
        return self.model is not None

    def _build_prompt(self, text: str) -> str:
        return (
            "以下の企業情報（募集要項や会社概要）から、営業活動に役立つ情報を抽出してください。\n\n"
            "出力フォーマット（JSONのみ、マークダウンなし）:\n"
            "{\n"
            f'  "summary": "{SUMMARY_MAX_LEN}文字以内の事業概要要約。何をしている会社か具体的に",\n'
            f'  "tags": ["業界", "特徴", "技術スタック", "キーワード"] (最大{MAX_TAGS}つ)\n'
            "}\n\n"
            "対象テキスト:\n"
            f"{text[:INPUT_MAX_LEN]}"
        )

    async def _generate_with_timeout(self, prompt: str) -> Any:
        if not self.model:
            return None
        call = self.model.generate_content_async(prompt)
        if self.timeout_sec > 0:
            try:
                return await asyncio.wait_for(call, timeout=self.timeout_sec)
            except asyncio.TimeoutError:
                log.warning("[ai] Gemini call timed out after %.1fs", self.timeout_sec)
                return None
        return await call

    async def summarize(self, lead: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not self.model:
            return None
        text = build_source_text(lead)
        if not text:
            return None
        try:
            resp = await self._generate_with_timeout(self._build_prompt(text))
        except GoogleAPIError as e:
            log.warning("[ai] Google API error for %s: %s", lead.get("company_name"), e)
            return None
        if resp is None:
            return None
        return parse_summary(_resp_text(resp))

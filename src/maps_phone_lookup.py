# src/maps_phone_lookup.py
import asyncio
import logging
import os
import re
import time
from typing import Any, Dict, Optional

import requests

log = logging.getLogger(__name__)

PLACES_BASE_URL = "https://maps.googleapis.com/maps/api/place"

_FULLWIDTH_ALNUM_RE = re.compile(r"[Ａ-Ｚａ-ｚ０-９]")


def normalize_query_name(name: str) -> str:
    """パイプ以降・【】[] を落とし、全角英数字を半角に"""
    name = re.split(r"[|｜]", name or "")[0]
    name = _FULLWIDTH_ALNUM_RE.sub(lambda m: chr(ord(m.group(0)) - 0xFEE0), name)
    name = name.replace("　", " ")
    name = re.sub(r"[【】\[\]]", "", name)
    return re.sub(r"\s+", " ", name).strip()


class MapsPhoneLookup:
    """
    Google Places（Text Search → Place Details）で代表電話を引く。
    見つからない・API エラー・通信エラーはすべて None。
    """

    def __init__(self, api_key: Optional[str] = None, rate_limit_sec: Optional[float] = None, session=None):
        self.api_key = (api_key if api_key is not None else os.getenv("GOOGLE_MAPS_API_KEY", "")).strip()
        self.rate_limit_sec = (
            rate_limit_sec if rate_limit_sec is not None else float(os.getenv("MAPS_RATE_LIMIT_SEC", "0.5"))
        )
        self.timeout_sec = 10
        self.session = session or requests.Session()
        self._last_request = 0.0

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _rate_limit(self) -> None:
        wait = self.rate_limit_sec - (time.monotonic() - self._last_request)
        if wait > 0:
            await asyncio.sleep(wait)
        self._last_request = time.monotonic()

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        await self._rate_limit()
        resp = await asyncio.to_thread(
            self.session.get,
            f"{PLACES_BASE_URL}/{path}",
            params={**params, "key": self.api_key},
            timeout=self.timeout_sec,
        )
        resp.raise_for_status()
        return resp.json()

    async def find_phone(self, company_name: str, address: Optional[str] = None) -> Optional[str]:
        if not self.enabled or not company_name:
            return None
        name = normalize_query_name(company_name)
        addr = re.sub(r"\s+", " ", address or "").strip()
        query = f"{name} {addr}" if addr else name
        try:
            found = await self._get_json("textsearch/json", {"query": query, "language": "ja", "region": "jp"})
            if found.get("status") != "OK" or not found.get("results"):
                log.info("[maps] no results: %s", query)
                return None
            place = found["results"][0]
            details = await self._get_json(
                "details/json",
                {
                    "place_id": place["place_id"],
                    "fields": "formatted_phone_number,international_phone_number,name,website",
                    "language": "ja",
                },
            )
        except (requests.RequestException, ValueError, KeyError) as e:
            log.warning("[maps] lookup failed for %s: %s", company_name, e)
            return None
        result = details.get("result") if details.get("status") == "OK" else None
        if not result:
            return None
        phone = result.get("formatted_phone_number") or result.get("international_phone_number")
        if phone:
            log.info("[maps] phone %s for %s", phone, result.get("name"))
        return phone or None

    def close(self) -> None:
        self.session.close()

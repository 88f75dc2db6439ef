# src/label_lookup.py
from __future__ import annotations

import re
import urllib.parse
from typing import Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup
from bs4.element import Tag

from src.text_normalizer import norm_text_compact, squash_ws

_FREE_TEXT_SEP = r"\s*[:：]\s*"


def _host_excluded(url: str, exclude_hosts: Iterable[str]) -> bool:
    host = urllib.parse.urlparse(url).netloc.lower()
    return any(h and h in host for h in exclude_hosts)


class LabelLookup:
    """
    詳細ページの「ラベル → 値」抽出。
    1) dl の dt/dd
    2) table の th/td
    3) 本文中の「ラベル：値」
    の順に探し、最初に見つかった値を返す。ラベルは完全一致を部分一致より優先。
    """

    def __init__(self, html: str):
        soup = BeautifulSoup(html or "", "html.parser")
        for t in soup(["script", "style", "noscript"]):
            t.decompose()
        self._dl_pairs = self._collect_pairs(soup, "dt", "dd")
        self._table_pairs = self._collect_pairs(soup, "th", "td")
        self._lines = [squash_ws(s) for s in soup.get_text("\n").splitlines()]
        self._lines = [s for s in self._lines if s]

    @staticmethod
    def _collect_pairs(soup: BeautifulSoup, label_tag: str, value_tag: str) -> List[Tuple[str, Tag]]:
        pairs: List[Tuple[str, Tag]] = []
        for label_el in soup.find_all(label_tag):
            value_el = label_el.find_next_sibling(value_tag)
            if value_el is None:
                continue
            key = norm_text_compact(label_el.get_text(" "))
            if key:
                pairs.append((key, value_el))
        return pairs

    @staticmethod
    def _match(pairs: List[Tuple[str, Tag]], label: str) -> Optional[Tag]:
        want = norm_text_compact(label)
        if not want:
            return None
        for key, el in pairs:
            if key == want:
                return el
        for key, el in pairs:
            if want in key:
                return el
        return None

    def _find_cell(self, label: str) -> Optional[Tag]:
        return self._match(self._dl_pairs, label) or self._match(self._table_pairs, label)

    def _free_text(self, label: str) -> str:
        pattern = re.compile(re.escape(label) + _FREE_TEXT_SEP + r"(.+)")
        for line in self._lines:
            m = pattern.search(line)
            if m:
                return m.group(1).strip()
        return ""

    def lookup(self, label: str) -> str:
        cell = self._find_cell(label)
        if cell is not None:
            value = squash_ws(cell.get_text(" "))
            if value:
                return value
        return self._free_text(label)

    def get(self, *labels: str) -> str:
        for label in labels:
            value = self.lookup(label)
            if value:
                return value
        return ""

    def get_link(self, *labels: str, exclude_hosts: Iterable[str] = ()) -> str:
        """値セル内の外部リンク（href、無ければ http で始まるテキスト）"""
        exclude_hosts = tuple(exclude_hosts)
        for label in labels:
            cell = self._find_cell(label)
            if cell is None:
                continue
            for a in cell.find_all("a", href=True):
                for candidate in (a["href"].strip(), a.get_text(strip=True)):
                    if candidate.startswith("http") and not _host_excluded(candidate, exclude_hosts):
                        return candidate
            text = squash_ws(cell.get_text(" "))
            if text.startswith("http"):
                url = text.split(" ")[0]
                if not _host_excluded(url, exclude_hosts):
                    return url
        return ""

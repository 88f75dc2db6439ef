# src/rank_classifier.py
"""
掲載ランク（A/B/C）の判定。
各サイトの「有料掲載」シグナル > 掲載位置 > 既定C の優先順で決める。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

RANK_ORDER = {"A": 3, "B": 2, "C": 1}

# ドーダ/リクナビは絶対位置がこの件数未満なら B
POSITION_THRESHOLD = 100


@dataclass(frozen=True)
class RankResult:
    rank: str
    confidence: float


FALLBACK_RANK = RankResult("C", 0.3)


def classify_mynavi(*, data_ty: Optional[str], has_attention_label: bool, page_num: int) -> RankResult:
    # data-ty="rzs" / attention ラベル = 有料オプション
    if data_ty == "rzs" or has_attention_label:
        return RankResult("A", 0.9)
    if page_num == 1:
        return RankResult("B", 0.7)
    return RankResult("C", 0.5)


def classify_doda(*, href: Optional[str], absolute_index: int) -> RankResult:
    # -tab__pr/ を含むURLはPR枠
    if href and "-tab__pr/" in href:
        return RankResult("A", 0.95)
    if absolute_index < POSITION_THRESHOLD:
        return RankResult("B", 0.7)
    return RankResult("C", 0.5)


def classify_rikunabi(*, has_flair: bool, absolute_index: int) -> RankResult:
    if has_flair:
        return RankResult("A", 0.9)
    if absolute_index < POSITION_THRESHOLD:
        return RankResult("B", 0.7)
    return RankResult("C", 0.6)


def rank_ordinal(rank: Optional[str]) -> int:
    return RANK_ORDER.get(rank or "", 0)


def best_rank(ranks: Iterable[Optional[str]]) -> Optional[str]:
    best: Optional[str] = None
    for r in ranks:
        if rank_ordinal(r) > rank_ordinal(best):
            best = r
    return best


def rank_direction(old: Optional[str], new: Optional[str]) -> str:
    diff = rank_ordinal(new) - rank_ordinal(old)
    if diff > 0:
        return "upgrade"
    if diff < 0:
        return "downgrade"
    return "same"

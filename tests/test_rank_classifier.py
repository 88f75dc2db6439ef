from itertools import permutations

import pytest

from src.rank_classifier import (
    best_rank,
    classify_doda,
    classify_mynavi,
    classify_rikunabi,
    rank_direction,
)


def test_mynavi_paid_signals():
    assert classify_mynavi(data_ty="rzs", has_attention_label=False, page_num=3).rank == "A"
    assert classify_mynavi(data_ty=None, has_attention_label=True, page_num=3).rank == "A"


def test_mynavi_position():
    r = classify_mynavi(data_ty=None, has_attention_label=False, page_num=1)
    assert (r.rank, r.confidence) == ("B", 0.7)
    assert classify_mynavi(data_ty=None, has_attention_label=False, page_num=2).rank == "C"


def test_doda_pr_tab_beats_position():
    href = "https://doda.jp/DodaFront/View/JobSearchDetail/j_jid__3014345383/-tab__pr/"
    r = classify_doda(href=href, absolute_index=500)
    assert (r.rank, r.confidence) == ("A", 0.95)
    assert classify_doda(href="https://doda.jp/x/", absolute_index=99).rank == "B"
    assert classify_doda(href="https://doda.jp/x/", absolute_index=100).rank == "C"


def test_rikunabi():
    assert classify_rikunabi(has_flair=True, absolute_index=300).rank == "A"
    assert classify_rikunabi(has_flair=False, absolute_index=0).rank == "B"
    r = classify_rikunabi(has_flair=False, absolute_index=150)
    assert (r.rank, r.confidence) == ("C", 0.6)


@pytest.mark.parametrize("ranks", list(permutations(["A", "B", "C"])))
def test_best_rank_is_order_independent(ranks):
    assert best_rank(ranks) == "A"


def test_best_rank_ignores_missing():
    assert best_rank([None, "C", None, "B"]) == "B"
    assert best_rank([]) is None


def test_rank_direction():
    assert rank_direction("C", "A") == "upgrade"
    assert rank_direction(None, "C") == "upgrade"
    assert rank_direction("A", "B") == "downgrade"
    assert rank_direction("B", "B") == "same"

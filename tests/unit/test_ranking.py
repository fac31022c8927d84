"""L1 Unit Tests: 时间衰减 + MMR 重排序."""

from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest

from mnemo.memory.mmr import apply_mmr, jaccard_similarity, tokenize
from mnemo.memory.temporal_decay import apply_temporal_decay, compute_decay
from mnemo.memory.types import Fragment, FragmentSource, MatchSource, SearchResult

NOW = datetime(2026, 6, 1, 12, 0, 0)


def _result(text: str, score: float, age_days: float = 0, source=FragmentSource.USER):
    fragment = Fragment(
        id=f"f-{text[:8]}-{score}",
        scope_id="__kb__" if source is FragmentSource.KNOWLEDGE else "u1",
        text=text,
        content_hash="h",
        source=source,
        created_at=NOW - timedelta(days=age_days),
    )
    return SearchResult(fragment=fragment, score=score, source=MatchSource.KEYWORD)


class TestComputeDecay:
    @pytest.mark.parametrize(
        "age_days, expected",
        [(0, 1.0), (30, 0.5), (60, 0.25), (90, 0.125)],
    )
    def test_half_life_points(self, age_days, expected):
        created = NOW - timedelta(days=age_days)
        assert compute_decay(created, 30, now=NOW) == pytest.approx(expected)

    def test_non_positive_half_life_disables(self):
        created = NOW - timedelta(days=365)
        assert compute_decay(created, 0, now=NOW) == 1.0
        assert compute_decay(created, -5, now=NOW) == 1.0

    def test_future_timestamp_clamped(self):
        created = NOW + timedelta(days=3)
        assert compute_decay(created, 30, now=NOW) == 1.0

    def test_strictly_decreasing(self):
        values = [compute_decay(NOW - timedelta(days=d), 30, now=NOW) for d in range(0, 120, 7)]
        assert all(a > b for a, b in zip(values, values[1:]))


class TestApplyTemporalDecay:
    def test_old_memory_downweighted(self):
        results = [_result("old note", 0.8, age_days=30)]
        decayed = apply_temporal_decay(results, 30, now=NOW)
        assert decayed[0].score == pytest.approx(0.4)
        # 原结果不被修改
        assert results[0].score == 0.8

    def test_knowledge_exempt(self):
        results = [_result("kb fact", 0.8, age_days=300, source=FragmentSource.KNOWLEDGE)]
        decayed = apply_temporal_decay(results, 30, now=NOW)
        assert decayed[0].score == 0.8


@dataclass
class _Candidate:
    text: str
    score: float


class TestMMR:
    def test_jaccard(self):
        assert jaccard_similarity(tokenize("a b c"), tokenize("b c d")) == pytest.approx(0.5)
        assert jaccard_similarity(frozenset(), frozenset()) == 0.0

    def test_tokenize_lowercases(self):
        assert tokenize("Hello  WORLD") == frozenset({"hello", "world"})

    def test_trivial_inputs(self):
        assert apply_mmr([], 0.7, 5) == []
        single = [_Candidate("only", 0.9)]
        assert apply_mmr(single, 0.7, 5) == single

    def test_limit(self):
        cands = [_Candidate(f"text {i}", 1 - i / 10) for i in range(6)]
        assert len(apply_mmr(cands, 0.7, 3)) == 3
        assert apply_mmr(cands, 0.7, 0) == []

    def test_first_pick_is_highest_score(self):
        cands = [_Candidate("b", 0.5), _Candidate("a", 0.9), _Candidate("c", 0.7)]
        assert apply_mmr(cands, 0.7, 3)[0].text == "a"

    def test_diversity_beats_near_duplicate(self):
        cands = [
            _Candidate("user likes dark theme in the editor", 0.90),
            _Candidate("user likes dark theme in the editor too", 0.88),
            _Candidate("project deadline is next friday", 0.80),
        ]
        picked = apply_mmr(cands, 0.5, 2)
        assert [c.text for c in picked] == [
            "user likes dark theme in the editor",
            "project deadline is next friday",
        ]

    def test_lambda_one_is_pure_relevance(self):
        cands = [
            _Candidate("same words here", 0.9),
            _Candidate("same words here again", 0.85),
            _Candidate("totally different", 0.5),
        ]
        picked = apply_mmr(cands, 1.0, 3)
        assert [c.score for c in picked] == [0.9, 0.85, 0.5]

"""
MMR (Maximal Marginal Relevance) 重排序

每轮选出 lambda * relevance - (1 - lambda) * max_sim_to_selected 最大的候选,
相似度为小写空格分词后的 Jaccard 系数。lambda 接近 1 偏向相关性, 接近 0 偏向多样性。
"""

from __future__ import annotations

from typing import Protocol, TypeVar


class Rankable(Protocol):
    @property
    def score(self) -> float: ...

    @property
    def text(self) -> str: ...


T = TypeVar("T", bound=Rankable)


def tokenize(text: str) -> frozenset[str]:
    return frozenset(text.lower().split())


def jaccard_similarity(a: frozenset[str], b: frozenset[str]) -> float:
    if not a and not b:
        return 0.0
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def apply_mmr(candidates: list[T], lambda_: float, limit: int) -> list[T]:
    """按 MMR 从候选中选出至多 limit 个, 保持选择顺序"""
    if len(candidates) <= 1:
        return list(candidates)
    if limit <= 0:
        return []

    tokens = [tokenize(c.text) for c in candidates]
    remaining = list(range(len(candidates)))

    first = max(remaining, key=lambda i: candidates[i].score)
    selected = [first]
    remaining.remove(first)

    while remaining and len(selected) < limit:
        best_idx = remaining[0]
        best_value = float("-inf")
        for i in remaining:
            max_sim = max(jaccard_similarity(tokens[i], tokens[j]) for j in selected)
            value = lambda_ * candidates[i].score - (1 - lambda_) * max_sim
            if value > best_value:
                best_value = value
                best_idx = i
        selected.append(best_idx)
        remaining.remove(best_idx)

    return [candidates[i] for i in selected]

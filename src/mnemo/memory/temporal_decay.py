"""
时间衰减

multiplier = exp(-ln2 / half_life_days * age_days)

半衰期 30 天时:
- 0 天: 1.0x
- 30 天: 0.5x
- 60 天: 0.25x
- 90 天: 0.125x
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime

from .types import SearchResult

SECONDS_PER_DAY = 86400


def compute_decay(
    created_at: datetime,
    half_life_days: float,
    now: datetime | None = None,
) -> float:
    """返回 0-1 的衰减系数 (1 = 最新)"""
    if half_life_days <= 0:
        return 1.0

    now = now or datetime.now()
    age_days = max(0.0, (now - created_at).total_seconds() / SECONDS_PER_DAY)
    lam = math.log(2) / half_life_days
    return math.exp(-lam * age_days)


def apply_temporal_decay(
    results: list[SearchResult],
    half_life_days: float,
    now: datetime | None = None,
) -> list[SearchResult]:
    """对非知识库结果按年龄降权; 知识库内容长期有效, 不衰减"""
    now = now or datetime.now()
    decayed = []
    for r in results:
        if r.fragment.is_knowledge:
            decayed.append(r)
            continue
        factor = compute_decay(r.fragment.created_at, half_life_days, now)
        decayed.append(replace(r, score=r.score * factor))
    return decayed

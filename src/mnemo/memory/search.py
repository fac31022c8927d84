"""
混合检索

向量 + 关键词 → 合并打分 → 时间衰减 → MMR 重排:
1. 关键词: 查询扩展 → FTS5 (当前 scope + 全局知识库, 超量召回 max(limit*4, 24))
2. 向量: 查询只 embed 一次, 与 scope + 知识库内所有带 embedding 的分块算余弦相似度
3. 合并: 两路都命中 → vector_weight*v + keyword_weight*k (hybrid), 否则取单路得分
4. 过滤 min_score → 衰减 (知识库豁免) → 排序 → MMR 或直接截断

没有 embedding provider 时所有结果都是 keyword; 查询扩展为空且无 provider 时,
以原始查询作为单个字面关键词重试。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..core.errors import EmbeddingError
from .embeddings import EmbeddingService, cosine_similarity
from .mmr import apply_mmr
from .query_expansion import build_fts_query, extract_keywords
from .storage import MemoryStorage
from .temporal_decay import apply_temporal_decay
from .types import (
    DEFAULT_MEMORY_CONFIG,
    KNOWLEDGE_SCOPE,
    Fragment,
    MatchSource,
    MemoryConfig,
    SearchResult,
)

logger = logging.getLogger(__name__)

MIN_KEYWORD_CANDIDATES = 24


@dataclass
class _ScoreEntry:
    fragment: Fragment
    vector_score: float = 0.0
    keyword_score: float = 0.0
    has_vector: bool = False
    has_keyword: bool = False


class HybridSearch:
    """向量 + 关键词混合检索"""

    def __init__(self, storage: MemoryStorage, embeddings: EmbeddingService) -> None:
        self._storage = storage
        self._embeddings = embeddings

    @staticmethod
    def _scopes(scope: str) -> list[str]:
        if scope == KNOWLEDGE_SCOPE:
            return [KNOWLEDGE_SCOPE]
        return [scope, KNOWLEDGE_SCOPE]

    async def search(
        self,
        query: str,
        scope: str,
        config: MemoryConfig = DEFAULT_MEMORY_CONFIG,
    ) -> list[SearchResult]:
        if not query or not query.strip():
            return []

        scores: dict[str, _ScoreEntry] = {}

        fts_query = build_fts_query(extract_keywords(query))
        if not fts_query and not self._embeddings.available:
            fts_query = build_fts_query([query.strip()])

        if fts_query:
            candidate_count = max(config.max_results * 4, MIN_KEYWORD_CANDIDATES)
            for fragment, score in self._keyword_candidates(fts_query, scope, candidate_count):
                entry = scores.setdefault(fragment.id, _ScoreEntry(fragment))
                entry.keyword_score = score
                entry.has_keyword = True

        if self._embeddings.available:
            await self._add_vector_scores(query, scope, scores)

        merged = self._merge(scores, config)

        if config.decay.enabled:
            merged = apply_temporal_decay(merged, config.decay.half_life_days)

        merged.sort(key=lambda r: r.score, reverse=True)

        if config.mmr.enabled and len(merged) > 1:
            results = apply_mmr(merged, config.mmr.lambda_, config.max_results)
        else:
            results = merged[:config.max_results]

        logger.debug(
            f"[Search] query={query[:50]!r} scope={scope} "
            f"candidates={len(scores)} returned={len(results)}"
        )
        return results

    def _keyword_candidates(
        self, fts_query: str, scope: str, limit: int
    ) -> list[tuple[Fragment, float]]:
        """当前 scope 与知识库分别召回, 按 id 去重保留较高分"""
        best: dict[str, tuple[Fragment, float]] = {}
        for s in self._scopes(scope):
            for fragment, score in self._storage.keyword_search(s, fts_query, limit):
                existing = best.get(fragment.id)
                if existing is None or score > existing[1]:
                    best[fragment.id] = (fragment, score)
        return list(best.values())

    async def _add_vector_scores(
        self, query: str, scope: str, scores: dict[str, _ScoreEntry]
    ) -> None:
        try:
            query_embedding = await self._embeddings.embed_query(query)
        except EmbeddingError as e:
            logger.warning(f"[Search] Vector search failed, falling back to keyword-only: {e}")
            return

        for s in self._scopes(scope):
            for fragment in self._storage.chunks_with_embeddings(s):
                similarity = cosine_similarity(query_embedding, fragment.embedding or [])
                entry = scores.setdefault(fragment.id, _ScoreEntry(fragment))
                entry.vector_score = similarity
                entry.has_vector = True

    @staticmethod
    def _merge(scores: dict[str, _ScoreEntry], config: MemoryConfig) -> list[SearchResult]:
        merged: list[SearchResult] = []
        for entry in scores.values():
            if entry.has_vector and entry.has_keyword:
                final = (
                    config.vector_weight * entry.vector_score
                    + config.keyword_weight * entry.keyword_score
                )
                source = MatchSource.HYBRID
            elif entry.has_vector:
                final = entry.vector_score
                source = MatchSource.VECTOR
            else:
                final = entry.keyword_score
                source = MatchSource.KEYWORD

            if final < config.min_score:
                continue
            merged.append(SearchResult(fragment=entry.fragment, score=final, source=source))
        return merged

"""
记忆管理器: 记忆系统的对外入口

保存: 原始消息落库 → 分块 → hash 去重 → embed (带缓存, 失败则不带向量) → 写入分块
检索: 混合检索 (向量 + 关键词 + 时间衰减 + MMR), 按 scope 隔离, 知识库全局可见
知识库: 文档增删改 + 重新索引
诊断: status()

子组件:
- storage: MemoryStorage (SQLite + FTS5)
- embeddings: EmbeddingService (provider + 缓存)
- search_engine: HybridSearch
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ..core.errors import EmbeddingError, StoreError
from .chunker import chunk_text
from .embeddings import EmbeddingProvider, EmbeddingService, resolve_embedding_provider
from .hashing import hash_text
from .search import HybridSearch
from .storage import MemoryStorage
from .types import (
    DEFAULT_MEMORY_CONFIG,
    KNOWLEDGE_SCOPE,
    Fragment,
    FragmentSource,
    KnowledgeDoc,
    MemoryConfig,
    MemoryOutcome,
    MemoryStatus,
    RawMessage,
    SearchResult,
    to_epoch_ms,
)

logger = logging.getLogger(__name__)

MAX_CHARS_PER_SNIPPET = 700
MAX_PROMPT_CHARS = 4000
PROMPT_HEADER = "## Relevant memories and knowledge:"


class MemoryManager:
    """记忆管理器"""

    def __init__(
        self,
        storage: MemoryStorage,
        provider: EmbeddingProvider | None = None,
        config: MemoryConfig = DEFAULT_MEMORY_CONFIG,
        *,
        cache_max_entries: int = 10000,
        cache_max_age_days: float = 0,
    ) -> None:
        self.storage = storage
        self.config = config
        self.embeddings = EmbeddingService(
            provider,
            storage,
            cache_max_entries=cache_max_entries,
            cache_max_age_days=cache_max_age_days,
        )
        self.search_engine = HybridSearch(storage, self.embeddings)

    @classmethod
    def from_settings(cls, settings: Any) -> MemoryManager:
        """按配置创建存储与 provider (provider 在此处选定, 之后不再变更)"""
        storage = MemoryStorage(settings.db_full_path)
        provider = resolve_embedding_provider(settings)
        return cls(
            storage,
            provider,
            settings.memory_config(),
            cache_max_entries=settings.embedding_cache_max_entries,
            cache_max_age_days=settings.embedding_cache_max_age_days,
        )

    # ==================== Save ====================

    async def save(
        self,
        scope: str,
        role: str,
        text: str,
        source: FragmentSource | str | None = None,
    ) -> int:
        """
        保存一条消息并索引进记忆

        Returns:
            新写入的分块数 (重复内容返回 0)
        """
        self.storage.insert_raw_message(RawMessage(scope_id=scope, role=role, content=text))

        if source is None:
            source = FragmentSource.from_role(role)
        elif isinstance(source, str):
            source = FragmentSource(source)

        # 知识库分块统一放在全局 scope 下, 对所有查询可见
        target_scope = KNOWLEDGE_SCOPE if source is FragmentSource.KNOWLEDGE else scope
        return await self._index_text(target_scope, text, source)

    def load_history(self, scope: str, limit: int = 20) -> list[RawMessage]:
        """最近的原始对话 (按时间正序)"""
        return self.storage.load_raw_messages(scope, limit)

    async def _index_text(
        self,
        scope: str,
        text: str,
        source: FragmentSource,
        doc_id: str | None = None,
    ) -> int:
        chunks = chunk_text(text, self.config.chunk_tokens, self.config.chunk_overlap)
        if not chunks:
            return 0

        pending: list[tuple[str, str]] = []
        seen: set[str] = set()
        for chunk in chunks:
            content_hash = hash_text(chunk.text)
            if content_hash in seen:
                continue
            seen.add(content_hash)
            existing = self.storage.find_fragment_id(scope, content_hash)
            if existing is None:
                pending.append((chunk.text, content_hash))
            elif doc_id:
                # 其它文档已写入相同分块: 共用, 只登记归属
                self.storage.link_fragment_to_doc(doc_id, existing)

        if not pending:
            return 0

        vectors = await self._try_embed([t for t, _ in pending])

        now = datetime.now()
        inserted = 0
        for i, (chunk_text_, content_hash) in enumerate(pending):
            fragment = Fragment(
                id=self._fragment_id(scope, content_hash, now, doc_id),
                scope_id=scope,
                text=chunk_text_,
                content_hash=content_hash,
                embedding=vectors[i] if vectors else None,
                source=source,
                created_at=now,
                doc_id=doc_id,
            )
            if self.storage.insert_fragment(fragment):
                inserted += 1
            elif doc_id:
                existing = self.storage.find_fragment_id(scope, content_hash)
                if existing is not None:
                    self.storage.link_fragment_to_doc(doc_id, existing)

        logger.debug(f"[Memory] Indexed {inserted}/{len(chunks)} chunks into scope={scope}")
        return inserted

    async def _try_embed(self, texts: list[str]) -> list[list[float]] | None:
        if not self.embeddings.available:
            return None
        try:
            return await self.embeddings.embed_texts(texts)
        except EmbeddingError as e:
            logger.warning(f"[Memory] Embedding failed, saving without vectors: {e}")
            return None

    @staticmethod
    def _fragment_id(scope: str, content_hash: str, now: datetime, doc_id: str | None) -> str:
        prefix = f"kb:{doc_id}" if doc_id else scope
        return f"{prefix}:{content_hash[:12]}:{to_epoch_ms(now)}"

    # ==================== Search ====================

    async def search(
        self,
        query: str,
        scope: str,
        config: MemoryConfig | None = None,
        **overrides: Any,
    ) -> list[SearchResult]:
        """混合检索; overrides 可单独覆盖 max_results / min_score / mmr_lambda 等参数"""
        cfg = (config or self.config).with_overrides(**overrides)
        return await self.search_engine.search(query, scope, cfg)

    async def build_context(self, query: str, scope: str, **overrides: Any) -> MemoryOutcome:
        """检索并格式化为 prompt 片段; 存储故障以 MemoryOutcome.failure 返回而不是抛出"""
        try:
            results = await self.search(query, scope, **overrides)
        except StoreError as e:
            logger.error(f"[Memory] Search failed: {e}")
            return MemoryOutcome.failure(str(e))
        return MemoryOutcome.success(results, self.format_for_prompt(results))

    def get_fragment(self, fragment_id: str, scope: str | None = None) -> Fragment | None:
        """按 id 读取分块; 给定 scope 时, 其它 scope 的非知识分块视为不存在"""
        fragment = self.storage.get_fragment(fragment_id)
        if fragment is None or scope is None:
            return fragment
        if fragment.scope_id != scope and not fragment.is_knowledge:
            return None
        return fragment

    @staticmethod
    def format_for_prompt(
        results: list[SearchResult],
        max_chars_per_snippet: int = MAX_CHARS_PER_SNIPPET,
        max_chars: int = MAX_PROMPT_CHARS,
    ) -> str:
        """把检索结果渲染为注入 system prompt 的摘要, 总长度不超过 max_chars"""
        if not results:
            return ""

        output = PROMPT_HEADER
        for i, r in enumerate(results, start=1):
            text = r.text
            if len(text) > max_chars_per_snippet:
                text = text[:max_chars_per_snippet] + "..."
            tag = "KB" if r.fragment.is_knowledge else "Memory"
            item = f"\n\n[{tag} {i}] (score: {r.score:.2f}, {r.source.value})\n{text}"

            if len(output) + len(item) > max_chars:
                remaining = max_chars - len(output)
                if i == 1 and remaining > 3:
                    output += item[:remaining - 3] + "..."
                break
            output += item

        return output

    # ==================== Knowledge Base ====================

    async def add_knowledge_doc(
        self,
        title: str,
        content: str,
        category: str = "general",
        doc_id: str | None = None,
    ) -> KnowledgeDoc:
        doc = KnowledgeDoc(title=title, content=content, category=category)
        if doc_id:
            doc.id = doc_id
        self.storage.insert_knowledge_doc(doc)
        doc.chunk_count = await self.index_knowledge_doc(doc.id, content)
        logger.info(f"[Knowledge] Added doc {doc.id} ({doc.chunk_count} chunks)")
        return doc

    async def update_knowledge_doc(
        self,
        doc_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
        category: str | None = None,
    ) -> KnowledgeDoc | None:
        if not self.storage.update_knowledge_doc(
            doc_id, title=title, content=content, category=category
        ):
            return None
        if content is not None:
            await self.index_knowledge_doc(doc_id, content)
        return self.storage.get_knowledge_doc(doc_id)

    async def index_knowledge_doc(self, doc_id: str, content: str) -> int:
        """
        删除文档旧分块后重新切分、embed、写入

        返回文档关联的分块数, 包含与其它文档共用的分块。
        """
        self.storage.delete_fragments_by_doc(doc_id)
        await self._index_text(
            KNOWLEDGE_SCOPE, content, FragmentSource.KNOWLEDGE, doc_id=doc_id
        )
        count = len(self.storage.doc_fragment_ids(doc_id))
        self.storage.update_knowledge_doc_chunk_count(doc_id, count)
        return count

    async def reindex_knowledge_doc(self, doc_id: str) -> int | None:
        doc = self.storage.get_knowledge_doc(doc_id)
        if doc is None:
            return None
        return await self.index_knowledge_doc(doc_id, doc.content)

    def delete_knowledge_doc(self, doc_id: str) -> bool:
        removed = self.storage.delete_fragments_by_doc(doc_id)
        ok = self.storage.delete_knowledge_doc(doc_id)
        if ok:
            logger.info(f"[Knowledge] Deleted doc {doc_id} ({removed} chunks)")
        return ok

    def get_knowledge_doc(self, doc_id: str) -> KnowledgeDoc | None:
        return self.storage.get_knowledge_doc(doc_id)

    def list_knowledge_docs(self, category: str | None = None) -> list[KnowledgeDoc]:
        return self.storage.list_knowledge_docs(category)

    # ==================== Maintenance ====================

    async def reembed_missing(self, limit: int = 100) -> int:
        """
        为 embedding 为空的分块补算向量 (provider 曾经失败时留下的)

        只在显式调用时运行; 返回补写的分块数。
        """
        if not self.embeddings.available:
            return 0

        fragments = self.storage.fragments_missing_embedding(limit)
        if not fragments:
            return 0

        try:
            vectors = await self.embeddings.embed_texts([f.text for f in fragments])
        except EmbeddingError as e:
            logger.warning(f"[Memory] Re-embedding failed: {e}")
            return 0

        updated = sum(
            1 for f, vec in zip(fragments, vectors)
            if self.storage.set_fragment_embedding(f.id, vec)
        )
        logger.info(f"[Memory] Re-embedded {updated} fragments")
        return updated

    def status(self) -> MemoryStatus:
        return MemoryStatus(
            provider_id=self.embeddings.provider_id,
            model=self.embeddings.model,
            search_mode="hybrid" if self.embeddings.available else "keyword-only",
            fragment_count=self.storage.count_fragments(),
            cache_count=self.storage.count_cached_embeddings(),
            knowledge_doc_count=self.storage.count_knowledge_docs(),
        )

    def close(self) -> None:
        self.storage.close()

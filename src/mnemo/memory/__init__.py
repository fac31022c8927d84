"""
mnemo 记忆系统

架构:
- MemoryStorage: SQLite (分块 + FTS5 + embedding 缓存 + 原始消息 + 知识库)
- EmbeddingService: 可插拔 provider (Ollama / Gemini / OpenAI 兼容) + 缓存
- HybridSearch: 向量 + 关键词 → 时间衰减 → MMR
- MemoryManager: 保存 / 检索 / prompt 格式化 / 诊断
"""

from .chunker import TextChunk, chunk_text
from .embeddings import (
    EmbeddingProvider,
    EmbeddingService,
    GeminiEmbeddingProvider,
    OllamaEmbeddingProvider,
    OpenAICompatibleEmbeddingProvider,
    cosine_similarity,
    resolve_embedding_provider,
)
from .hashing import hash_text
from .manager import MemoryManager
from .mmr import apply_mmr
from .query_expansion import build_fts_query, extract_keywords
from .search import HybridSearch
from .storage import MemoryStorage
from .temporal_decay import apply_temporal_decay, compute_decay
from .types import (
    DEFAULT_MEMORY_CONFIG,
    KNOWLEDGE_SCOPE,
    DecayConfig,
    Fragment,
    FragmentSource,
    KnowledgeDoc,
    MatchSource,
    MemoryConfig,
    MemoryOutcome,
    MemoryStatus,
    MMRConfig,
    RawMessage,
    SearchResult,
)

__all__ = [
    "MemoryManager",
    "MemoryStorage",
    "HybridSearch",
    # Embeddings
    "EmbeddingProvider",
    "EmbeddingService",
    "OllamaEmbeddingProvider",
    "GeminiEmbeddingProvider",
    "OpenAICompatibleEmbeddingProvider",
    "resolve_embedding_provider",
    "cosine_similarity",
    # Algorithms
    "TextChunk",
    "chunk_text",
    "hash_text",
    "extract_keywords",
    "build_fts_query",
    "compute_decay",
    "apply_temporal_decay",
    "apply_mmr",
    # Types
    "KNOWLEDGE_SCOPE",
    "DEFAULT_MEMORY_CONFIG",
    "Fragment",
    "FragmentSource",
    "MatchSource",
    "RawMessage",
    "KnowledgeDoc",
    "SearchResult",
    "MemoryStatus",
    "MemoryOutcome",
    "MemoryConfig",
    "MMRConfig",
    "DecayConfig",
]

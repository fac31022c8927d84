"""
记忆类型定义

- Fragment: 不可变的文本分块 (对话轮次或知识库文档切分而来)
- RawMessage: 原始对话消息, 用于短上下文窗口
- KnowledgeDoc: 知识库文档, 展开为 source=knowledge 的 Fragment
- SearchResult / MemoryStatus / MemoryConfig: 检索结果、诊断信息与检索参数
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

# 全局知识库 scope, 对所有查询可见
KNOWLEDGE_SCOPE = "__kb__"


class FragmentSource(Enum):
    """分块来源"""

    USER = "user"
    ASSISTANT = "assistant"
    KNOWLEDGE = "knowledge"

    @classmethod
    def from_role(cls, role: str) -> FragmentSource:
        return cls.ASSISTANT if role == "assistant" else cls.USER


class MatchSource(Enum):
    """检索命中方式"""

    VECTOR = "vector"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


def _short_uuid() -> str:
    return str(uuid.uuid4())[:8]


def to_epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def from_epoch_ms(ms: int | float) -> datetime:
    return datetime.fromtimestamp(ms / 1000)


# ---------------------------------------------------------------------------
# Fragment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Fragment:
    """不可变文本分块: 写入后只会插入或删除, 不会修改"""

    id: str
    scope_id: str
    text: str
    content_hash: str
    embedding: list[float] | None = None
    source: FragmentSource = FragmentSource.USER
    created_at: datetime = field(default_factory=datetime.now)
    doc_id: str | None = None

    @property
    def is_knowledge(self) -> bool:
        return self.source is FragmentSource.KNOWLEDGE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope_id": self.scope_id,
            "text": self.text,
            "content_hash": self.content_hash,
            "has_embedding": self.embedding is not None,
            "source": self.source.value,
            "created_at": self.created_at.isoformat(),
            "doc_id": self.doc_id,
        }


# ---------------------------------------------------------------------------
# RawMessage / KnowledgeDoc
# ---------------------------------------------------------------------------


@dataclass
class RawMessage:
    """原始对话消息 (逐字保存)"""

    scope_id: str
    role: str
    content: str
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "scope_id": self.scope_id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class KnowledgeDoc:
    """知识库文档"""

    id: str = field(default_factory=_short_uuid)
    title: str = ""
    content: str = ""
    category: str = "general"
    chunk_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "category": self.category,
            "chunk_count": self.chunk_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@dataclass
class SearchResult:
    """检索结果: source 表示命中方式 (vector / keyword / hybrid)"""

    fragment: Fragment
    score: float
    source: MatchSource

    @property
    def text(self) -> str:
        return self.fragment.text

    @property
    def created_at(self) -> datetime:
        return self.fragment.created_at

    @property
    def origin(self) -> FragmentSource:
        return self.fragment.source

    def to_dict(self) -> dict:
        return {
            "id": self.fragment.id,
            "text": self.text,
            "score": round(self.score, 4),
            "source": self.source.value,
            "origin": self.origin.value,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class MemoryStatus:
    """记忆系统诊断信息"""

    provider_id: str
    model: str
    search_mode: str  # "hybrid" | "keyword-only"
    fragment_count: int
    cache_count: int
    knowledge_doc_count: int = 0

    def to_dict(self) -> dict:
        return {
            "provider_id": self.provider_id,
            "model": self.model,
            "search_mode": self.search_mode,
            "fragment_count": self.fragment_count,
            "cache_count": self.cache_count,
            "knowledge_doc_count": self.knowledge_doc_count,
        }


@dataclass
class MemoryOutcome:
    """引擎边界的结果/错误类型, 取代序列化字符串约定"""

    ok: bool
    results: list[SearchResult] = field(default_factory=list)
    context: str = ""
    error: str | None = None

    @classmethod
    def success(cls, results: list[SearchResult], context: str = "") -> MemoryOutcome:
        return cls(ok=True, results=results, context=context)

    @classmethod
    def failure(cls, error: str) -> MemoryOutcome:
        return cls(ok=False, error=error)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MMRConfig:
    enabled: bool = True
    lambda_: float = 0.7  # 0.7 = 70% 相关性, 30% 多样性


@dataclass(frozen=True)
class DecayConfig:
    enabled: bool = True
    half_life_days: float = 30


@dataclass(frozen=True)
class MemoryConfig:
    """检索与分块参数, 每项都可以按调用单独覆盖"""

    chunk_tokens: int = 256
    chunk_overlap: int = 32

    max_results: int = 6
    min_score: float = 0.35
    vector_weight: float = 0.5
    keyword_weight: float = 0.5

    mmr: MMRConfig = field(default_factory=MMRConfig)
    decay: DecayConfig = field(default_factory=DecayConfig)

    def with_overrides(self, **overrides: Any) -> MemoryConfig:
        """
        返回覆盖部分字段后的新配置

        支持扁平键: mmr_enabled / mmr_lambda / decay_enabled / decay_half_life_days,
        值为 None 的键会被忽略。
        """
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if not overrides:
            return self

        mmr = self.mmr
        if "mmr_enabled" in overrides:
            mmr = replace(mmr, enabled=bool(overrides.pop("mmr_enabled")))
        if "mmr_lambda" in overrides:
            mmr = replace(mmr, lambda_=float(overrides.pop("mmr_lambda")))

        decay = self.decay
        if "decay_enabled" in overrides:
            decay = replace(decay, enabled=bool(overrides.pop("decay_enabled")))
        if "decay_half_life_days" in overrides:
            decay = replace(decay, half_life_days=float(overrides.pop("decay_half_life_days")))

        overrides.setdefault("mmr", mmr)
        overrides.setdefault("decay", decay)
        return replace(self, **overrides)


DEFAULT_MEMORY_CONFIG = MemoryConfig()

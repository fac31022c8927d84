"""Shared fixtures: 临时存储 + 不走网络的 embedding provider."""

import hashlib
import math

import pytest

from mnemo.core.errors import EmbeddingError
from mnemo.memory.manager import MemoryManager
from mnemo.memory.storage import MemoryStorage

FAKE_DIMS = 64


def bag_of_words_vector(text: str, dims: int = FAKE_DIMS) -> list[float]:
    """确定性的词袋向量: 共享词越多, 余弦相似度越高"""
    vec = [0.0] * dims
    for token in text.lower().split():
        token = token.strip(".,!?;:\"'()")
        if not token:
            continue
        idx = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % dims
        vec[idx] += 1.0
    norm = math.sqrt(sum(v * v for v in vec))
    return [v / norm for v in vec] if norm else vec


class FakeEmbeddingProvider:
    """记录调用次数的本地 provider"""

    def __init__(self, model: str = "fake-embed", provider_id: str = "fake"):
        self._model = model
        self._id = provider_id
        self.query_calls: list[str] = []
        self.batch_calls: list[list[str]] = []

    @property
    def id(self) -> str:
        return self._id

    @property
    def model(self) -> str:
        return self._model

    async def embed_query(self, text: str) -> list[float]:
        self.query_calls.append(text)
        return bag_of_words_vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls.append(list(texts))
        return [bag_of_words_vector(t) for t in texts]


class FailingEmbeddingProvider:
    """每次调用都失败, 模拟 provider 宕机"""

    id = "broken"
    model = "broken-model"

    def __init__(self):
        self.calls = 0

    async def embed_query(self, text: str) -> list[float]:
        self.calls += 1
        raise EmbeddingError(self.id, "connection refused")

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        raise EmbeddingError(self.id, "connection refused")


@pytest.fixture
def storage(tmp_path):
    s = MemoryStorage(tmp_path / "memory.sqlite")
    yield s
    s.close()


@pytest.fixture
def fake_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def failing_provider():
    return FailingEmbeddingProvider()


@pytest.fixture
def keyword_manager(storage):
    """没有 embedding provider 的管理器 (纯关键词模式)"""
    return MemoryManager(storage)


@pytest.fixture
def hybrid_manager(storage, fake_provider):
    return MemoryManager(storage, fake_provider)

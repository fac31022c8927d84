"""
Embedding Provider 抽象层

三种可插拔的 provider (启动时按优先级选定一次, 进程内不再切换):
- OllamaEmbeddingProvider: 本地 Ollama 服务 (免费)
- GeminiEmbeddingProvider: Gemini embedding API
- OpenAICompatibleEmbeddingProvider: OpenAI / DashScope 兼容 /embeddings 接口

EmbeddingService 在 provider 之上加一层 SQLite 缓存:
hash(text) 命中直接返回, 未命中才调用 provider 并写回缓存 (区分查询/文档的 provider 两者分开缓存)。

用法:
    provider = resolve_embedding_provider(settings)
    service = EmbeddingService(provider, storage)
    vec = await service.embed_query("用户喜欢什么")
"""

from __future__ import annotations

import logging
import math
from typing import Any, Protocol, runtime_checkable

import httpx

from ..core.errors import ConfigurationError, EmbeddingError
from .hashing import hash_text
from .storage import MemoryStorage

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


# =========================================================================
# Abstract Protocol
# =========================================================================


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Embedding provider 抽象接口"""

    @property
    def id(self) -> str: ...

    @property
    def model(self) -> str: ...

    async def embed_query(self, text: str) -> list[float]:
        """查询文本 → 向量"""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """批量文档文本 → 向量, 顺序与输入一致"""
        ...


def _cache_key(provider: EmbeddingProvider, text: str, *, query: bool = False) -> str:
    """
    缓存键: 文本 hash

    查询与文档向量不同的 provider (asymmetric=True, 如 Gemini 的 RETRIEVAL_QUERY /
    RETRIEVAL_DOCUMENT) 给查询向量单独的键, 两者互不复用。
    """
    key = hash_text(text)
    if query and getattr(provider, "asymmetric", False):
        return f"{key}:query"
    return key


def normalize_vector(vec: list[float]) -> list[float]:
    """L2 归一化; 零向量原样返回"""
    magnitude = math.sqrt(sum(v * v for v in vec))
    if magnitude < 1e-10:
        return list(vec)
    return [v / magnitude for v in vec]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a * norm_b < 1e-10:
        return 0.0
    return dot / (norm_a * norm_b)


class _HTTPEmbeddingProvider:
    """HTTP provider 公共部分: 带超时的 httpx.AsyncClient 与错误包装"""

    provider_id = ""
    asymmetric = False

    def __init__(
        self,
        model: str,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def id(self) -> str:
        return self.provider_id

    @property
    def model(self) -> str:
        return self._model

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload, headers=self._headers())
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as e:
            body = e.response.text[:200]
            raise EmbeddingError(self.id, f"HTTP {e.response.status_code}: {body}") from e
        except httpx.HTTPError as e:
            raise EmbeddingError(self.id, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise EmbeddingError(self.id, f"invalid JSON response: {e}") from e

    def _parse_error(self, e: Exception) -> EmbeddingError:
        return EmbeddingError(self.id, f"unexpected response shape: {e}")


# =========================================================================
# Ollama (local)
# =========================================================================


class OllamaEmbeddingProvider(_HTTPEmbeddingProvider):
    """本地 Ollama /api/embed (无批量接口, 逐条请求)"""

    provider_id = "ollama"

    async def embed_query(self, text: str) -> list[float]:
        data = await self._post("/api/embed", {"model": self._model, "input": text})
        try:
            return normalize_vector(data["embeddings"][0])
        except (KeyError, IndexError, TypeError) as e:
            raise self._parse_error(e) from e

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        results = []
        for text in texts:
            results.append(await self.embed_query(text))
        return results


# =========================================================================
# Gemini (cloud)
# =========================================================================


class GeminiEmbeddingProvider(_HTTPEmbeddingProvider):
    """Gemini embedContent / batchEmbedContents"""

    provider_id = "gemini"
    asymmetric = True  # 查询与文档使用不同 taskType

    def __init__(self, api_key: str, model: str = "gemini-embedding-001", **kwargs: Any) -> None:
        kwargs.setdefault("base_url", "https://generativelanguage.googleapis.com/v1beta")
        super().__init__(model=model, **kwargs)
        self._api_key = api_key

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "x-goog-api-key": self._api_key}

    def _request(self, text: str, task_type: str) -> dict[str, Any]:
        return {
            "model": f"models/{self._model}",
            "content": {"parts": [{"text": text}]},
            "taskType": task_type,
        }

    async def embed_query(self, text: str) -> list[float]:
        data = await self._post(
            f"/models/{self._model}:embedContent",
            self._request(text, "RETRIEVAL_QUERY"),
        )
        try:
            return normalize_vector(data["embedding"]["values"])
        except (KeyError, TypeError) as e:
            raise self._parse_error(e) from e

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        data = await self._post(
            f"/models/{self._model}:batchEmbedContents",
            {"requests": [self._request(t, "RETRIEVAL_DOCUMENT") for t in texts]},
        )
        try:
            return [normalize_vector(e["values"]) for e in data["embeddings"]]
        except (KeyError, TypeError) as e:
            raise self._parse_error(e) from e


# =========================================================================
# OpenAI-compatible (cloud)
# =========================================================================


class OpenAICompatibleEmbeddingProvider(_HTTPEmbeddingProvider):
    """
    OpenAI 兼容 /embeddings 接口

    支持 OpenAI (text-embedding-3-small) 和 DashScope (text-embedding-v3)。
    """

    BASE_URLS = {
        "openai": "https://api.openai.com/v1",
        "dashscope": "https://dashscope.aliyuncs.com/compatible-mode/v1",
    }
    DEFAULT_MODELS = {
        "openai": "text-embedding-3-small",
        "dashscope": "text-embedding-v3",
    }

    def __init__(
        self,
        api_key: str,
        provider: str = "openai",
        model: str = "",
        dimensions: int = 0,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("base_url", self.BASE_URLS.get(provider, self.BASE_URLS["openai"]))
        super().__init__(model=model or self.DEFAULT_MODELS.get(provider, "text-embedding-3-small"), **kwargs)
        self.provider_id = provider
        self._api_key = api_key
        self._dimensions = dimensions

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def embed_query(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        payload: dict[str, Any] = {
            "model": self._model,
            "input": texts,
            "encoding_format": "float",
        }
        if self._dimensions:
            payload["dimensions"] = self._dimensions
        data = await self._post("/embeddings", payload)
        try:
            items = sorted(data["data"], key=lambda d: d.get("index", 0))
            return [normalize_vector(item["embedding"]) for item in items]
        except (KeyError, TypeError) as e:
            raise self._parse_error(e) from e


# =========================================================================
# Factory
# =========================================================================


def resolve_embedding_provider(config: Any) -> EmbeddingProvider | None:
    """
    按固定优先级选择 provider: Ollama (本地) → Gemini → OpenAI 兼容 → None (纯关键词)

    config 为 mnemo.config.Settings 或具有相同属性的对象。
    """
    timeout = getattr(config, "embedding_timeout_seconds", DEFAULT_TIMEOUT)

    if getattr(config, "ollama_embed_model", ""):
        logger.info(f"[Embedding] Using Ollama ({config.ollama_embed_model})")
        return OllamaEmbeddingProvider(
            model=config.ollama_embed_model,
            base_url=config.ollama_base_url,
            timeout=timeout,
        )

    if getattr(config, "gemini_api_key", ""):
        logger.info(f"[Embedding] Using Gemini ({config.gemini_embed_model})")
        return GeminiEmbeddingProvider(
            api_key=config.gemini_api_key,
            model=config.gemini_embed_model,
            base_url=config.gemini_base_url,
            timeout=timeout,
        )

    if getattr(config, "embedding_api_key", ""):
        provider = config.embedding_api_provider or "openai"
        if provider not in OpenAICompatibleEmbeddingProvider.BASE_URLS:
            supported = ", ".join(OpenAICompatibleEmbeddingProvider.BASE_URLS)
            raise ConfigurationError(
                f"Unknown EMBEDDING_API_PROVIDER {provider!r} (supported: {supported})"
            )
        logger.info(f"[Embedding] Using {provider} embedding API")
        return OpenAICompatibleEmbeddingProvider(
            api_key=config.embedding_api_key,
            provider=provider,
            model=config.embedding_api_model,
            dimensions=config.embedding_dimensions,
            timeout=timeout,
        )

    logger.info("[Embedding] No embedding provider configured, using keyword search only")
    return None


# =========================================================================
# Cached service
# =========================================================================


class EmbeddingService:
    """cache-first 的 embedding 调用入口"""

    def __init__(
        self,
        provider: EmbeddingProvider | None,
        storage: MemoryStorage,
        *,
        cache_max_entries: int = 10000,
        cache_max_age_days: float = 0,
    ) -> None:
        self._provider = provider
        self._storage = storage
        self._cache_max_entries = cache_max_entries
        self._cache_max_age_days = cache_max_age_days

    @property
    def available(self) -> bool:
        return self._provider is not None

    @property
    def provider_id(self) -> str:
        return self._provider.id if self._provider else "none"

    @property
    def model(self) -> str:
        return self._provider.model if self._provider else ""

    def _require_provider(self) -> EmbeddingProvider:
        if self._provider is None:
            raise EmbeddingError("none", "no embedding provider configured")
        return self._provider

    async def embed_query(self, text: str) -> list[float]:
        provider = self._require_provider()
        key = _cache_key(provider, text, query=True)

        cached = self._storage.get_cached_embedding(key, provider.model)
        if cached is not None:
            return cached

        embedding = await provider.embed_query(text)
        self._storage.save_cached_embedding(key, embedding, provider.model)
        self._storage.prune_embedding_cache(self._cache_max_entries, self._cache_max_age_days)
        return embedding

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """批量 embed: 先查缓存, 只把未命中的文本交给 provider"""
        provider = self._require_provider()

        results: list[list[float] | None] = [None] * len(texts)
        missing: list[int] = []
        for i, text in enumerate(texts):
            cached = self._storage.get_cached_embedding(_cache_key(provider, text), provider.model)
            if cached is not None:
                results[i] = cached
            else:
                missing.append(i)

        if missing:
            vectors = await provider.embed_batch([texts[i] for i in missing])
            if len(vectors) != len(missing):
                raise EmbeddingError(
                    provider.id, f"expected {len(missing)} vectors, got {len(vectors)}"
                )
            for i, vec in zip(missing, vectors):
                results[i] = vec
                self._storage.save_cached_embedding(_cache_key(provider, texts[i]), vec, provider.model)

            self._storage.prune_embedding_cache(self._cache_max_entries, self._cache_max_age_days)

        return [r for r in results if r is not None]

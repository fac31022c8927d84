"""L1 Unit Tests: 记忆类型, 检索配置覆盖与 Settings."""

from datetime import datetime

from mnemo.config import Settings
from mnemo.core.errors import EmbeddingError, MnemoError, StoreError
from mnemo.memory.hashing import hash_text
from mnemo.memory.types import (
    DEFAULT_MEMORY_CONFIG,
    Fragment,
    FragmentSource,
    MatchSource,
    MemoryConfig,
    MemoryOutcome,
    SearchResult,
    from_epoch_ms,
    to_epoch_ms,
)


class TestFragmentSource:
    def test_from_role(self):
        assert FragmentSource.from_role("assistant") is FragmentSource.ASSISTANT
        assert FragmentSource.from_role("user") is FragmentSource.USER
        assert FragmentSource.from_role("system") is FragmentSource.USER


class TestFragment:
    def test_to_dict_hides_vector(self):
        f = Fragment(id="f1", scope_id="u1", text="hi", content_hash="h", embedding=[0.1])
        d = f.to_dict()
        assert d["has_embedding"] is True
        assert "embedding" not in d
        assert d["source"] == "user"

    def test_is_knowledge(self):
        f = Fragment(id="f1", scope_id="__kb__", text="x", content_hash="h",
                     source=FragmentSource.KNOWLEDGE)
        assert f.is_knowledge

    def test_search_result_dict(self):
        f = Fragment(id="f1", scope_id="u1", text="hello", content_hash="h")
        r = SearchResult(fragment=f, score=0.123456, source=MatchSource.HYBRID)
        d = r.to_dict()
        assert d["score"] == 0.1235
        assert d["source"] == "hybrid"
        assert d["origin"] == "user"


class TestEpochConversion:
    def test_round_trip_ms(self):
        dt = datetime(2026, 3, 4, 5, 6, 7, 500000)
        assert from_epoch_ms(to_epoch_ms(dt)) == dt


class TestHashing:
    def test_whitespace_insensitive_edges(self):
        assert hash_text("  hello \n") == hash_text("hello")
        assert hash_text("hello") != hash_text("Hello")
        assert len(hash_text("x")) == 64


class TestMemoryConfig:
    def test_defaults(self):
        cfg = DEFAULT_MEMORY_CONFIG
        assert (cfg.chunk_tokens, cfg.chunk_overlap) == (256, 32)
        assert cfg.max_results == 6
        assert cfg.min_score == 0.35
        assert (cfg.vector_weight, cfg.keyword_weight) == (0.5, 0.5)
        assert cfg.mmr.enabled and cfg.mmr.lambda_ == 0.7
        assert cfg.decay.enabled and cfg.decay.half_life_days == 30

    def test_overrides_ignore_none(self):
        assert DEFAULT_MEMORY_CONFIG.with_overrides(max_results=None) is DEFAULT_MEMORY_CONFIG

    def test_flat_overrides(self):
        cfg = DEFAULT_MEMORY_CONFIG.with_overrides(
            max_results=3, mmr_enabled=False, mmr_lambda=0.2, decay_half_life_days=7,
        )
        assert cfg.max_results == 3
        assert cfg.mmr.enabled is False
        assert cfg.mmr.lambda_ == 0.2
        assert cfg.decay.half_life_days == 7
        assert cfg.decay.enabled is True
        # 原配置不变
        assert DEFAULT_MEMORY_CONFIG.max_results == 6

    def test_custom_base(self):
        base = MemoryConfig(min_score=0.0)
        assert base.with_overrides(vector_weight=0.7).min_score == 0.0


class TestMemoryOutcome:
    def test_success_and_failure(self):
        ok = MemoryOutcome.success([], "ctx")
        assert ok.ok and ok.context == "ctx" and ok.error is None
        bad = MemoryOutcome.failure("disk full")
        assert not bad.ok and bad.error == "disk full" and bad.results == []


class TestErrors:
    def test_hierarchy(self):
        assert issubclass(EmbeddingError, MnemoError)
        assert issubclass(StoreError, MnemoError)

    def test_embedding_error_message(self):
        e = EmbeddingError("gemini", "HTTP 401")
        assert str(e) == "Embedding failed (gemini): HTTP 401"
        assert e.provider == "gemini"


class TestSettings:
    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OLLAMA_EMBED_MODEL", "nomic-embed-text")
        monkeypatch.setenv("MEMORY_MAX_RESULTS", "9")
        monkeypatch.setenv("DATA_DIR", str(tmp_path))

        s = Settings(_env_file=None)

        assert s.ollama_embed_model == "nomic-embed-text"
        assert s.db_full_path == tmp_path / "memory.sqlite"
        cfg = s.memory_config()
        assert cfg.max_results == 9
        assert cfg.mmr.lambda_ == 0.7

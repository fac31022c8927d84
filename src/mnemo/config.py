"""
mnemo 配置模块

所有配置项均可通过环境变量或 .env 文件覆盖 (pydantic-settings)。
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

from .memory.types import DecayConfig, MemoryConfig, MMRConfig


class Settings(BaseSettings):
    """应用配置"""

    # 路径配置
    data_dir: Path = Field(default=Path("data"), description="数据目录")
    database_name: str = Field(default="memory.sqlite", description="SQLite 数据库文件名")

    # 日志
    log_level: str = Field(default="INFO", description="日志级别")
    log_dir: Path | None = Field(default=None, description="日志目录 (为空则只输出到控制台)")

    # === Embedding Provider ===
    # 优先级: Ollama (本地免费) → Gemini → OpenAI 兼容 API → 纯关键词
    ollama_base_url: str = Field(default="http://localhost:11434", description="Ollama 服务地址")
    ollama_embed_model: str = Field(default="", description="Ollama embedding 模型 (为空则不启用)")

    gemini_api_key: str = Field(default="", description="Gemini API Key")
    gemini_embed_model: str = Field(default="gemini-embedding-001", description="Gemini embedding 模型")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API Base URL",
    )

    embedding_api_provider: str = Field(default="openai", description="openai | dashscope")
    embedding_api_key: str = Field(default="", description="OpenAI 兼容 embedding API Key")
    embedding_api_model: str = Field(default="", description="OpenAI 兼容 embedding 模型")
    embedding_dimensions: int = Field(default=0, description="输出维度 (0 = 模型默认)")

    embedding_timeout_seconds: float = Field(default=30.0, description="单次 embedding 请求超时")
    embedding_cache_max_entries: int = Field(default=10000, description="embedding 缓存最大条数")
    embedding_cache_max_age_days: float = Field(
        default=0, description="embedding 缓存最长保留天数 (0 = 不按时间淘汰)"
    )

    # === 记忆检索默认值 ===
    memory_chunk_tokens: int = Field(default=256, description="每个分块的 token 预算")
    memory_chunk_overlap: int = Field(default=32, description="分块重叠 token 数")
    memory_max_results: int = Field(default=6, description="检索返回条数")
    memory_min_score: float = Field(default=0.35, description="最低得分阈值")
    memory_vector_weight: float = Field(default=0.5, description="向量得分权重")
    memory_keyword_weight: float = Field(default=0.5, description="关键词得分权重")
    memory_mmr_enabled: bool = Field(default=True, description="是否启用 MMR 重排")
    memory_mmr_lambda: float = Field(default=0.7, description="MMR 相关性/多样性平衡")
    memory_decay_enabled: bool = Field(default=True, description="是否启用时间衰减")
    memory_decay_half_life_days: float = Field(default=30, description="时间衰减半衰期 (天)")

    # === HTTP API ===
    api_host: str = Field(default="127.0.0.1", description="API 监听地址")
    api_port: int = Field(default=18900, description="API 端口")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def db_full_path(self) -> Path:
        """数据库完整路径"""
        return self.data_dir / self.database_name

    def memory_config(self) -> MemoryConfig:
        """由配置项构建默认的检索配置"""
        return MemoryConfig(
            chunk_tokens=self.memory_chunk_tokens,
            chunk_overlap=self.memory_chunk_overlap,
            max_results=self.memory_max_results,
            min_score=self.memory_min_score,
            vector_weight=self.memory_vector_weight,
            keyword_weight=self.memory_keyword_weight,
            mmr=MMRConfig(enabled=self.memory_mmr_enabled, lambda_=self.memory_mmr_lambda),
            decay=DecayConfig(
                enabled=self.memory_decay_enabled,
                half_life_days=self.memory_decay_half_life_days,
            ),
        )


# 全局配置实例
settings = Settings()

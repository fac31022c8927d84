"""
核心异常类
"""


class MnemoError(Exception):
    """mnemo 所有异常的基类"""


class ConfigurationError(MnemoError):
    """配置错误 (例如未知的 embedding provider), 启动时抛出"""


class EmbeddingError(MnemoError):
    """Embedding provider 调用失败。

    网络错误、认证失败、响应格式异常都会包装成此异常，
    调用方据此把当前操作降级为纯关键词模式。

    Attributes:
        provider: provider 标识 ("ollama" / "gemini" / "openai" ...)
        reason: 失败原因
    """

    def __init__(self, provider: str = "", reason: str = ""):
        self.provider = provider
        self.reason = reason
        super().__init__(f"Embedding failed ({provider}): {reason}")


class StoreError(MnemoError):
    """存储层 I/O 失败, 对当前 save/search 调用是致命的"""

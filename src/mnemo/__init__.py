"""
mnemo - 对话 Agent 的混合记忆检索引擎

向量相似度 + 关键词匹配 + 时间衰减 + MMR 多样性重排。
"""


def _resolve_version() -> str:
    """
    解析版本号。
    优先级：
      1. pyproject.toml（editable 安装时始终最新）
      2. importlib.metadata（正式 pip install 后可用）
    """
    from pathlib import Path

    pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
    if pyproject_path.exists():
        try:
            import tomllib
            with open(pyproject_path, "rb") as f:
                return tomllib.load(f)["project"]["version"]
        except (OSError, KeyError, ValueError):
            pass

    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("mnemo-memory")
    except PackageNotFoundError:
        return "0.0.0-dev"


__version__ = _resolve_version()

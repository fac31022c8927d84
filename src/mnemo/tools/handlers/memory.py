"""
记忆工具处理器

处理记忆相关的工具调用：
- memory_search: 混合检索
- memory_get: 读取单个分块
- memory_save: 保存信息

返回 ToolOutcome (成功/失败 + 数据), 只在交给模型时才渲染成文本。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ...core.errors import MnemoError
from ...memory.manager import MemoryManager

logger = logging.getLogger(__name__)


@dataclass
class ToolOutcome:
    """工具调用结果"""

    ok: bool
    content: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def success(cls, content: str, **data: Any) -> ToolOutcome:
        return cls(ok=True, content=content, data=data)

    @classmethod
    def failure(cls, error: str) -> ToolOutcome:
        return cls(ok=False, error=error)

    def to_text(self) -> str:
        if self.ok:
            return self.content
        return f"❌ {self.error}"


class MemoryHandler:
    """
    记忆工具处理器

    每个实例绑定一个 scope (通常是当前用户/会话)。
    """

    TOOLS = [
        "memory_search",
        "memory_get",
        "memory_save",
    ]

    def __init__(self, manager: MemoryManager, scope: str):
        self.manager = manager
        self.scope = scope

    async def handle(self, tool_name: str, params: dict[str, Any]) -> ToolOutcome:
        """处理工具调用"""
        try:
            if tool_name == "memory_search":
                return await self._search(params)
            elif tool_name == "memory_get":
                return self._get(params)
            elif tool_name == "memory_save":
                return await self._save(params)
            else:
                return ToolOutcome.failure(f"Unknown memory tool: {tool_name}")
        except MnemoError as e:
            logger.error(f"[MemoryTool] {tool_name} failed: {e}")
            return ToolOutcome.failure(f"{tool_name} failed: {e}")

    async def _search(self, params: dict) -> ToolOutcome:
        query = (params.get("query") or "").strip()
        if not query:
            return ToolOutcome.failure("query is required")

        results = await self.manager.search(
            query,
            self.scope,
            max_results=params.get("max_results"),
            min_score=params.get("min_score"),
        )
        if not results:
            return ToolOutcome.success(f"未找到与 '{query}' 相关的记忆", results=[])

        lines = [f"找到 {len(results)} 条相关记忆:\n"]
        for r in results:
            tag = "KB" if r.fragment.is_knowledge else r.origin.value
            snippet = r.text if len(r.text) <= 300 else r.text[:300] + "..."
            lines.append(f"- [{r.fragment.id}] ({tag}, {r.source.value}, {r.score:.2f}) {snippet}")

        return ToolOutcome.success(
            "\n".join(lines),
            results=[r.to_dict() for r in results],
        )

    def _get(self, params: dict) -> ToolOutcome:
        fragment_id = (params.get("id") or "").strip()
        if not fragment_id:
            return ToolOutcome.failure("id is required")

        fragment = self.manager.get_fragment(fragment_id, self.scope)
        if fragment is None:
            return ToolOutcome.failure(f"Memory not found: {fragment_id}")

        return ToolOutcome.success(fragment.text, fragment=fragment.to_dict())

    async def _save(self, params: dict) -> ToolOutcome:
        content = (params.get("content") or "").strip()
        if not content:
            return ToolOutcome.failure("content is required")

        role = params.get("role") or "user"
        added = await self.manager.save(self.scope, role, content)
        if added == 0:
            return ToolOutcome.success("这条信息已经记住了", added=0)
        return ToolOutcome.success(f"✅ 已记住 ({added} 个片段)", added=added)

"""
Memory 工具定义

供 Agent 调用的记忆工具：
- memory_search: 搜索相关记忆与知识库
- memory_get: 按 ID 读取单个记忆分块
- memory_save: 主动记录一条信息
"""

MEMORY_TOOLS = [
    {
        "name": "memory_search",
        "category": "Memory",
        "description": "Search long-term memory and the knowledge base for information relevant to a query. Use BEFORE answering questions about the user (name, preferences, past conversations) or about topics covered by the knowledge base. Never say \"I don't know\" without searching first.",
        "detail": """搜索长期记忆与知识库。

**适用场景**：
- 用户问到自己的信息（名字、偏好、之前聊过的内容）
- 用户提到"之前/上次"
- 问题可能在知识库中有答案

**返回**：按相关度排序的记忆片段，含 ID、得分和命中方式（vector / keyword / hybrid）""",
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "搜索内容"},
                "max_results": {"type": "integer", "description": "最多返回条数", "default": 6},
                "min_score": {"type": "number", "description": "最低得分（0-1）"},
            },
            "required": ["query"],
        },
    },
    {
        "name": "memory_get",
        "category": "Memory",
        "description": "Read the full text of a single memory fragment by its ID (IDs come from memory_search results).",
        "detail": """按 ID 读取记忆分块全文。

memory_search 的摘要被截断时，用它查看完整内容。""",
        "input_schema": {
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "记忆分块 ID"},
            },
            "required": ["id"],
        },
    },
    {
        "name": "memory_save",
        "category": "Memory",
        "description": "Save a piece of information to long-term memory for the current conversation scope. Identical text is stored only once.",
        "detail": """记录一条信息到长期记忆。

相同内容在同一 scope 内只会保存一次。""",
        "input_schema": {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "要记住的内容"},
                "role": {
                    "type": "string",
                    "enum": ["user", "assistant"],
                    "description": "内容来自谁",
                    "default": "user",
                },
            },
            "required": ["content"],
        },
    },
]

"""
mnemo 命令行入口

子命令:
- serve: 启动 HTTP API
- save: 保存一条消息
- search: 混合检索 (JSON 或 prompt 格式输出)
- status: 诊断信息
- ingest: 把文本文件导入知识库
- reembed: 为缺失 embedding 的分块补算向量
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .config import Settings, settings
from .core.errors import ConfigurationError
from .logging_setup import setup_logging
from .memory.manager import MemoryManager

logger = logging.getLogger(__name__)


def _json_print(obj: Any) -> None:
    sys.stdout.write(json.dumps(obj, ensure_ascii=False, indent=2))
    sys.stdout.write("\n")


async def _serve(manager: MemoryManager, cfg: Settings) -> None:
    from .api.server import start_api_server

    task = await start_api_server(manager, host=cfg.api_host, port=cfg.api_port)
    try:
        await task
    finally:
        manager.close()


async def _run(args: argparse.Namespace, manager: MemoryManager) -> None:
    if args.cmd == "save":
        added = await manager.save(args.scope, args.role, args.text, args.source)
        _json_print({"ok": True, "added": added})

    elif args.cmd == "search":
        results = await manager.search(
            args.query,
            args.scope,
            max_results=args.limit,
            min_score=args.min_score,
        )
        if args.prompt:
            sys.stdout.write(manager.format_for_prompt(results) + "\n")
        else:
            _json_print([r.to_dict() for r in results])

    elif args.cmd == "status":
        _json_print(manager.status().to_dict())

    elif args.cmd == "ingest":
        path = Path(args.file)
        content = path.read_text(encoding="utf-8")
        doc = await manager.add_knowledge_doc(
            args.title or path.stem, content, args.category, doc_id=args.id
        )
        _json_print({"ok": True, "id": doc.id, "chunk_count": doc.chunk_count})

    elif args.cmd == "reembed":
        updated = await manager.reembed_missing(args.limit)
        _json_print({"ok": True, "updated": updated})


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)

    p = argparse.ArgumentParser(prog="mnemo")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("serve", help="启动 HTTP API")

    ps = sub.add_parser("save", help="保存一条消息")
    ps.add_argument("--scope", required=True, help="用户/会话 scope")
    ps.add_argument("--role", default="user", help="user | assistant")
    ps.add_argument("--source", default=None, choices=["user", "assistant", "knowledge"])
    ps.add_argument("text")

    pq = sub.add_parser("search", help="混合检索")
    pq.add_argument("--scope", required=True, help="用户/会话 scope")
    pq.add_argument("--limit", type=int, default=None, help="最多返回条数")
    pq.add_argument("--min-score", type=float, default=None, help="最低得分")
    pq.add_argument("--prompt", action="store_true", help="输出 prompt 注入格式")
    pq.add_argument("query")

    sub.add_parser("status", help="诊断信息（JSON）")

    pi = sub.add_parser("ingest", help="导入知识库文档")
    pi.add_argument("file", help="UTF-8 文本文件")
    pi.add_argument("--title", default="", help="标题（默认文件名）")
    pi.add_argument("--category", default="general")
    pi.add_argument("--id", default=None, help="文档 ID（默认随机）")

    pr = sub.add_parser("reembed", help="为缺失 embedding 的分块补算向量")
    pr.add_argument("--limit", type=int, default=100)

    args = p.parse_args(argv)

    setup_logging(settings.log_level, settings.log_dir)
    try:
        manager = MemoryManager.from_settings(settings)
    except ConfigurationError as e:
        p.error(str(e))

    if args.cmd == "serve":
        asyncio.run(_serve(manager, settings))
        return

    try:
        asyncio.run(_run(args, manager))
    finally:
        manager.close()

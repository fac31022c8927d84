"""
FastAPI HTTP API server for mnemo.

提供：
- Health check
- Memory save / search / status / history
- Knowledge base CRUD + reindex

默认端口：18900
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..memory.manager import MemoryManager
from .routes import health, knowledge, memory

logger = logging.getLogger(__name__)

API_HOST = "127.0.0.1"
API_PORT = 18900


def create_app(manager: MemoryManager | None = None) -> FastAPI:
    """Create the FastAPI application with all routes mounted."""

    from .. import __version__

    app = FastAPI(
        title="mnemo API",
        description="Hybrid memory / retrieval engine",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.memory_manager = manager

    app.include_router(health.router)
    app.include_router(memory.router)
    app.include_router(knowledge.router)

    return app


async def start_api_server(
    manager: MemoryManager,
    host: str = API_HOST,
    port: int = API_PORT,
) -> asyncio.Task:
    """
    Start the HTTP API server as a background asyncio task.

    Returns the server task for later cancellation.
    """
    import uvicorn

    app = create_app(manager)

    config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
        log_config=None,  # 不让 uvicorn 用 dictConfig 覆盖根日志器
    )
    server = uvicorn.Server(config)

    async def _run():
        try:
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server shutting down")
        except Exception as e:
            logger.error(f"API server error: {e}", exc_info=True)

    task = asyncio.create_task(_run())
    logger.info(f"HTTP API server starting on http://{host}:{port}")
    return task

"""
SQLite 存储层

表结构:
- fragments: 文本分块 + embedding (BLOB) + hash
- fragments_fts: FTS5 全文索引, 与 fragments 在同一事务内写入/删除
- raw_messages: 原始对话消息
- knowledge_docs: 知识库文档
- fragment_docs: 知识分块 ↔ 文档 (多对多); 分块在最后一个文档移除时才删除
- embedding_cache: hash → embedding, 与 scope 无关

迁移只做加法 (新增表/列), 保证旧版本写入的数据仍可读取。
"""

from __future__ import annotations

import logging
import sqlite3
import struct
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path

from ..core.errors import StoreError
from .query_expansion import segment_for_index
from .types import (
    Fragment,
    FragmentSource,
    KnowledgeDoc,
    RawMessage,
    from_epoch_ms,
    to_epoch_ms,
)

logger = logging.getLogger(__name__)

_FLOAT_SIZE = struct.calcsize("d")

_FRAGMENT_COLUMNS = "f.id, f.scope_id, f.text, f.hash, f.embedding, f.dims, f.source, f.created_at, f.doc_id"


def floats_to_bytes(floats: list[float]) -> bytes:
    return struct.pack(f"{len(floats)}d", *floats)


def bytes_to_floats(data: bytes, dims: int | None = None) -> list[float] | None:
    """解码 embedding; 长度与维度不符时视为损坏, 返回 None"""
    if not data or len(data) % _FLOAT_SIZE:
        return None
    n = len(data) // _FLOAT_SIZE
    if dims is not None and dims != n:
        return None
    return list(struct.unpack(f"{n}d", data))


class MemoryStorage:
    """单连接 SQLite 存储, 所有读写经同一把锁串行化"""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._init_schema()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open memory database {self.db_path}: {e}") from e

        logger.info(f"[Memory] Storage opened: {self.db_path}")

    # ======================================================================
    # Schema
    # ======================================================================

    def _init_schema(self) -> None:
        with self._conn:
            self._conn.executescript("""
                CREATE TABLE IF NOT EXISTS fragments (
                    id TEXT PRIMARY KEY,
                    scope_id TEXT NOT NULL,
                    text TEXT NOT NULL,
                    hash TEXT NOT NULL,
                    embedding BLOB,
                    created_at INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_fragments_scope ON fragments(scope_id);
                CREATE INDEX IF NOT EXISTS idx_fragments_created ON fragments(created_at);
                CREATE INDEX IF NOT EXISTS idx_fragments_scope_hash ON fragments(scope_id, hash);

                CREATE VIRTUAL TABLE IF NOT EXISTS fragments_fts
                    USING fts5(id UNINDEXED, body);

                CREATE TABLE IF NOT EXISTS raw_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    scope_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_raw_messages_scope ON raw_messages(scope_id);

                CREATE TABLE IF NOT EXISTS knowledge_docs (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL DEFAULT '',
                    content TEXT NOT NULL DEFAULT '',
                    category TEXT NOT NULL DEFAULT 'general',
                    chunk_count INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS fragment_docs (
                    doc_id TEXT NOT NULL,
                    fragment_id TEXT NOT NULL,
                    PRIMARY KEY (doc_id, fragment_id)
                );

                CREATE INDEX IF NOT EXISTS idx_fragment_docs_fragment
                    ON fragment_docs(fragment_id);

                CREATE TABLE IF NOT EXISTS embedding_cache (
                    hash TEXT PRIMARY KEY,
                    embedding BLOB NOT NULL,
                    dims INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_embedding_cache_updated
                    ON embedding_cache(updated_at);
            """)

        # 后续版本新增的列
        self._ensure_column("fragments", "source", "TEXT DEFAULT 'user'")
        self._ensure_column("fragments", "dims", "INTEGER")
        self._ensure_column("fragments", "doc_id", "TEXT")
        self._ensure_column("embedding_cache", "model", "TEXT DEFAULT ''")

        with self._conn:
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_fragments_doc ON fragments(doc_id)"
            )
            # 旧库只有 fragments.doc_id, 补齐归属关系
            self._conn.execute(
                """INSERT OR IGNORE INTO fragment_docs (doc_id, fragment_id)
                   SELECT doc_id, id FROM fragments WHERE doc_id IS NOT NULL"""
            )

    def _ensure_column(self, table: str, column: str, definition: str) -> None:
        cols = {row["name"] for row in self._conn.execute(f"PRAGMA table_info({table})")}
        if column not in cols:
            with self._conn:
                self._conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
            logger.info(f"[Memory] Migration: added {column} to {table}")

    @contextmanager
    def _tx(self, op: str) -> Iterator[sqlite3.Connection]:
        """加锁事务; sqlite 错误统一包装为 StoreError"""
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                raise StoreError(f"{op} failed: {e}") from e

    # ======================================================================
    # Fragments
    # ======================================================================

    def insert_fragment(self, fragment: Fragment) -> bool:
        """插入分块; 同 scope 下已存在相同 hash 时跳过并返回 False"""
        blob = floats_to_bytes(fragment.embedding) if fragment.embedding else None
        dims = len(fragment.embedding) if fragment.embedding else None

        with self._tx("insert_fragment") as conn:
            cur = conn.execute(
                """INSERT OR IGNORE INTO fragments
                       (id, scope_id, text, hash, embedding, dims, source, created_at, doc_id)
                   SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?
                   WHERE NOT EXISTS (
                       SELECT 1 FROM fragments WHERE scope_id = ? AND hash = ?
                   )""",
                (
                    fragment.id, fragment.scope_id, fragment.text, fragment.content_hash,
                    blob, dims, fragment.source.value, to_epoch_ms(fragment.created_at),
                    fragment.doc_id,
                    fragment.scope_id, fragment.content_hash,
                ),
            )
            if cur.rowcount == 0:
                return False
            conn.execute(
                "INSERT INTO fragments_fts (id, body) VALUES (?, ?)",
                (fragment.id, segment_for_index(fragment.text)),
            )
            if fragment.doc_id:
                conn.execute(
                    "INSERT OR IGNORE INTO fragment_docs (doc_id, fragment_id) VALUES (?, ?)",
                    (fragment.doc_id, fragment.id),
                )
        return True

    def insert_fragments(self, fragments: list[Fragment]) -> int:
        return sum(1 for f in fragments if self.insert_fragment(f))

    def find_fragment_id(self, scope_id: str, content_hash: str) -> str | None:
        """scope 内相同 hash 的分块 id"""
        with self._tx("find_fragment_id") as conn:
            row = conn.execute(
                "SELECT id FROM fragments WHERE scope_id = ? AND hash = ? LIMIT 1",
                (scope_id, content_hash),
            ).fetchone()
        return row["id"] if row else None

    def exists_by_hash(self, scope_id: str, content_hash: str) -> bool:
        return self.find_fragment_id(scope_id, content_hash) is not None

    def link_fragment_to_doc(self, doc_id: str, fragment_id: str) -> None:
        """登记文档对已有分块的引用 (多个文档包含同一段文本时共用一个分块)"""
        with self._tx("link_fragment_to_doc") as conn:
            conn.execute(
                "INSERT OR IGNORE INTO fragment_docs (doc_id, fragment_id) VALUES (?, ?)",
                (doc_id, fragment_id),
            )

    def doc_fragment_ids(self, doc_id: str) -> list[str]:
        with self._tx("doc_fragment_ids") as conn:
            rows = conn.execute(
                "SELECT fragment_id FROM fragment_docs WHERE doc_id = ? ORDER BY rowid",
                (doc_id,),
            ).fetchall()
        return [r["fragment_id"] for r in rows]

    def get_fragment(self, fragment_id: str) -> Fragment | None:
        with self._tx("get_fragment") as conn:
            row = conn.execute(
                f"SELECT {_FRAGMENT_COLUMNS} FROM fragments f WHERE f.id = ?",
                (fragment_id,),
            ).fetchone()
        return self._row_to_fragment(row) if row else None

    def chunks_with_embeddings(self, scope_id: str) -> list[Fragment]:
        """scope 内所有带 embedding 的分块 (向量检索候选)"""
        with self._tx("chunks_with_embeddings") as conn:
            rows = conn.execute(
                f"""SELECT {_FRAGMENT_COLUMNS} FROM fragments f
                    WHERE f.scope_id = ? AND f.embedding IS NOT NULL""",
                (scope_id,),
            ).fetchall()
        return [self._row_to_fragment(r) for r in rows]

    def keyword_search(
        self,
        scope_id: str,
        fts_query: str,
        limit: int,
    ) -> list[tuple[Fragment, float]]:
        """FTS5 BM25 检索, score = 1 / (1 + |rank|)"""
        if not fts_query:
            return []

        match = segment_for_index(fts_query)
        with self._lock:
            try:
                rows = self._conn.execute(
                    f"""SELECT {_FRAGMENT_COLUMNS}, bm25(fragments_fts) AS rank
                        FROM fragments_fts
                        JOIN fragments f ON f.id = fragments_fts.id
                        WHERE fragments_fts MATCH ? AND f.scope_id = ?
                        ORDER BY rank LIMIT ?""",
                    (match, scope_id, limit),
                ).fetchall()
            except sqlite3.OperationalError as e:
                msg = str(e).lower()
                if "fts5" in msg or "syntax" in msg or "unterminated" in msg:
                    logger.debug(f"[Memory] Unusable FTS query {fts_query!r}: {e}")
                    return []
                raise StoreError(f"keyword_search failed: {e}") from e
            except sqlite3.Error as e:
                raise StoreError(f"keyword_search failed: {e}") from e

        return [
            (self._row_to_fragment(r), 1.0 / (1.0 + abs(r["rank"] or 0.0)))
            for r in rows
        ]

    def delete_fragment(self, fragment_id: str) -> bool:
        with self._tx("delete_fragment") as conn:
            cur = conn.execute("DELETE FROM fragments WHERE id = ?", (fragment_id,))
            conn.execute("DELETE FROM fragments_fts WHERE id = ?", (fragment_id,))
            conn.execute("DELETE FROM fragment_docs WHERE fragment_id = ?", (fragment_id,))
        return cur.rowcount > 0

    def delete_fragments_by_doc(self, doc_id: str) -> int:
        """
        解除文档与分块的关联, 删除不再被任何文档引用的分块

        仍被其它文档引用的分块保留, doc_id 改指向剩余的文档之一。
        不属于任何文档的分块 (通过 save 写入的知识) 不受影响。
        返回实际删除的分块数。
        """
        with self._tx("delete_fragments_by_doc") as conn:
            conn.execute("DELETE FROM fragment_docs WHERE doc_id = ?", (doc_id,))
            orphans = [
                r["id"] for r in conn.execute(
                    """SELECT f.id FROM fragments f
                       WHERE f.doc_id IS NOT NULL AND NOT EXISTS (
                           SELECT 1 FROM fragment_docs l WHERE l.fragment_id = f.id
                       )"""
                )
            ]
            conn.executemany("DELETE FROM fragments_fts WHERE id = ?", [(i,) for i in orphans])
            conn.executemany("DELETE FROM fragments WHERE id = ?", [(i,) for i in orphans])
            conn.execute(
                """UPDATE fragments SET doc_id = (
                       SELECT l.doc_id FROM fragment_docs l
                       WHERE l.fragment_id = fragments.id ORDER BY l.rowid LIMIT 1
                   ) WHERE doc_id = ?""",
                (doc_id,),
            )
        return len(orphans)

    def fragments_missing_embedding(self, limit: int = 100) -> list[Fragment]:
        with self._tx("fragments_missing_embedding") as conn:
            rows = conn.execute(
                f"""SELECT {_FRAGMENT_COLUMNS} FROM fragments f
                    WHERE f.embedding IS NULL ORDER BY f.created_at LIMIT ?""",
                (limit,),
            ).fetchall()
        return [self._row_to_fragment(r) for r in rows]

    def set_fragment_embedding(self, fragment_id: str, embedding: list[float]) -> bool:
        """补写缺失的 embedding; 已有 embedding 的分块不会被覆盖"""
        with self._tx("set_fragment_embedding") as conn:
            cur = conn.execute(
                """UPDATE fragments SET embedding = ?, dims = ?
                   WHERE id = ? AND embedding IS NULL""",
                (floats_to_bytes(embedding), len(embedding), fragment_id),
            )
        return cur.rowcount > 0

    def count_fragments(self, scope_id: str | None = None) -> int:
        with self._tx("count_fragments") as conn:
            if scope_id is None:
                row = conn.execute("SELECT COUNT(*) FROM fragments").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM fragments WHERE scope_id = ?", (scope_id,)
                ).fetchone()
        return row[0]

    def rebuild_fts_index(self) -> None:
        """从 fragments 重新生成全文索引"""
        with self._tx("rebuild_fts_index") as conn:
            conn.execute("DELETE FROM fragments_fts")
            rows = conn.execute("SELECT id, text FROM fragments").fetchall()
            conn.executemany(
                "INSERT INTO fragments_fts (id, body) VALUES (?, ?)",
                [(r["id"], segment_for_index(r["text"])) for r in rows],
            )
        logger.info(f"[Memory] FTS index rebuilt ({len(rows)} fragments)")

    @staticmethod
    def _row_to_fragment(row: sqlite3.Row) -> Fragment:
        embedding = None
        if row["embedding"] is not None:
            embedding = bytes_to_floats(row["embedding"], row["dims"])
        try:
            source = FragmentSource(row["source"] or "user")
        except ValueError:
            source = FragmentSource.USER
        return Fragment(
            id=row["id"],
            scope_id=row["scope_id"],
            text=row["text"],
            content_hash=row["hash"],
            embedding=embedding,
            source=source,
            created_at=from_epoch_ms(row["created_at"]),
            doc_id=row["doc_id"],
        )

    # ======================================================================
    # Raw Messages
    # ======================================================================

    def insert_raw_message(self, message: RawMessage) -> None:
        with self._tx("insert_raw_message") as conn:
            conn.execute(
                """INSERT INTO raw_messages (scope_id, role, content, created_at)
                   VALUES (?, ?, ?, ?)""",
                (message.scope_id, message.role, message.content, to_epoch_ms(message.created_at)),
            )

    def load_raw_messages(self, scope_id: str, limit: int = 20) -> list[RawMessage]:
        """最近 limit 条消息, 按时间正序返回"""
        with self._tx("load_raw_messages") as conn:
            rows = conn.execute(
                """SELECT scope_id, role, content, created_at FROM raw_messages
                   WHERE scope_id = ? ORDER BY created_at DESC, id DESC LIMIT ?""",
                (scope_id, limit),
            ).fetchall()
        return [
            RawMessage(
                scope_id=r["scope_id"],
                role=r["role"],
                content=r["content"],
                created_at=from_epoch_ms(r["created_at"]),
            )
            for r in reversed(rows)
        ]

    # ======================================================================
    # Knowledge Docs
    # ======================================================================

    def insert_knowledge_doc(self, doc: KnowledgeDoc) -> None:
        with self._tx("insert_knowledge_doc") as conn:
            conn.execute(
                """INSERT INTO knowledge_docs
                       (id, title, content, category, chunk_count, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    doc.id, doc.title, doc.content, doc.category, doc.chunk_count,
                    to_epoch_ms(doc.created_at), to_epoch_ms(doc.updated_at),
                ),
            )

    def update_knowledge_doc(
        self,
        doc_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
        category: str | None = None,
    ) -> bool:
        updates: dict[str, object] = {}
        if title is not None:
            updates["title"] = title
        if content is not None:
            updates["content"] = content
        if category is not None:
            updates["category"] = category
        updates["updated_at"] = to_epoch_ms(datetime.now())

        assignments = ", ".join(f"{k} = ?" for k in updates)
        with self._tx("update_knowledge_doc") as conn:
            cur = conn.execute(
                f"UPDATE knowledge_docs SET {assignments} WHERE id = ?",
                (*updates.values(), doc_id),
            )
        return cur.rowcount > 0

    def update_knowledge_doc_chunk_count(self, doc_id: str, chunk_count: int) -> None:
        with self._tx("update_knowledge_doc_chunk_count") as conn:
            conn.execute(
                "UPDATE knowledge_docs SET chunk_count = ? WHERE id = ?",
                (chunk_count, doc_id),
            )

    def get_knowledge_doc(self, doc_id: str) -> KnowledgeDoc | None:
        with self._tx("get_knowledge_doc") as conn:
            row = conn.execute("SELECT * FROM knowledge_docs WHERE id = ?", (doc_id,)).fetchone()
        return self._row_to_doc(row) if row else None

    def list_knowledge_docs(self, category: str | None = None) -> list[KnowledgeDoc]:
        with self._tx("list_knowledge_docs") as conn:
            if category:
                rows = conn.execute(
                    "SELECT * FROM knowledge_docs WHERE category = ? ORDER BY updated_at DESC",
                    (category,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM knowledge_docs ORDER BY updated_at DESC"
                ).fetchall()
        return [self._row_to_doc(r) for r in rows]

    def delete_knowledge_doc(self, doc_id: str) -> bool:
        with self._tx("delete_knowledge_doc") as conn:
            cur = conn.execute("DELETE FROM knowledge_docs WHERE id = ?", (doc_id,))
        return cur.rowcount > 0

    def count_knowledge_docs(self) -> int:
        with self._tx("count_knowledge_docs") as conn:
            return conn.execute("SELECT COUNT(*) FROM knowledge_docs").fetchone()[0]

    @staticmethod
    def _row_to_doc(row: sqlite3.Row) -> KnowledgeDoc:
        return KnowledgeDoc(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            category=row["category"],
            chunk_count=row["chunk_count"],
            created_at=from_epoch_ms(row["created_at"]),
            updated_at=from_epoch_ms(row["updated_at"]),
        )

    # ======================================================================
    # Embedding Cache
    # ======================================================================

    def get_cached_embedding(self, content_hash: str, model: str | None = None) -> list[float] | None:
        """
        读取缓存的 embedding

        条目损坏 (长度与维度不符) 或由其它模型生成时视为未命中,
        调用方重新计算后覆盖即可。
        """
        with self._tx("get_cached_embedding") as conn:
            row = conn.execute(
                "SELECT embedding, dims, model FROM embedding_cache WHERE hash = ?",
                (content_hash,),
            ).fetchone()
        if row is None:
            return None
        if model is not None and (row["model"] or "") != model:
            return None
        vector = bytes_to_floats(row["embedding"], row["dims"])
        if vector is None:
            logger.warning(f"[Embedding] Corrupt cache entry {content_hash[:12]}, treating as miss")
        return vector

    def save_cached_embedding(self, content_hash: str, embedding: list[float], model: str = "") -> None:
        with self._tx("save_cached_embedding") as conn:
            conn.execute(
                """INSERT OR REPLACE INTO embedding_cache (hash, embedding, dims, model, updated_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    content_hash, floats_to_bytes(embedding), len(embedding), model,
                    to_epoch_ms(datetime.now()),
                ),
            )

    def prune_embedding_cache(self, max_entries: int = 10000, max_age_days: float = 0) -> int:
        """按条数 / 年龄淘汰, 最早更新的先删; 返回删除条数"""
        deleted = 0
        with self._tx("prune_embedding_cache") as conn:
            if max_age_days > 0:
                cutoff = to_epoch_ms(datetime.now() - timedelta(days=max_age_days))
                cur = conn.execute("DELETE FROM embedding_cache WHERE updated_at < ?", (cutoff,))
                deleted += cur.rowcount

            if max_entries > 0:
                count = conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]
                if count > max_entries:
                    cur = conn.execute(
                        """DELETE FROM embedding_cache WHERE hash IN (
                               SELECT hash FROM embedding_cache ORDER BY updated_at ASC LIMIT ?
                           )""",
                        (count - max_entries,),
                    )
                    deleted += cur.rowcount

        if deleted:
            logger.debug(f"[Embedding] Pruned {deleted} cache entries")
        return deleted

    def count_cached_embeddings(self) -> int:
        with self._tx("count_cached_embeddings") as conn:
            return conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]

    # ======================================================================
    # Utilities
    # ======================================================================

    def close(self) -> None:
        with self._lock:
            self._conn.close()

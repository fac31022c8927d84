"""
文本分块

按行累积, 以 4 字符/token 估算预算:
- max_chars = max(32, tokens_per_chunk * 4)
- overlap_chars = overlap_tokens * 4
- 超出预算时输出当前分块, 下一块以上一块末尾 overlap_chars 个字符开头
- 单行超长不再切分, 整行作为一个超大分块
"""

from __future__ import annotations

from dataclasses import dataclass

CHARS_PER_TOKEN = 4
MIN_CHUNK_CHARS = 32


@dataclass(frozen=True)
class TextChunk:
    text: str
    start_line: int
    end_line: int


def chunk_text(
    text: str,
    tokens_per_chunk: int = 256,
    overlap_tokens: int = 32,
) -> list[TextChunk]:
    """把文本切成有序的重叠分块, 对相同输入结果稳定"""
    if not text or not text.strip():
        return []

    max_chars = max(MIN_CHUNK_CHARS, tokens_per_chunk * CHARS_PER_TOKEN)
    overlap_chars = max(0, overlap_tokens * CHARS_PER_TOKEN)

    chunks: list[TextChunk] = []
    buf: list[str] = []
    buf_len = 0
    start_line = 1
    end_line = 1

    for line_no, line in enumerate(text.split("\n"), start=1):
        added = len(line) + (1 if buf else 0)

        if buf and buf_len + added > max_chars:
            body = "\n".join(buf)
            if body.strip():
                chunks.append(TextChunk(body, start_line, end_line))

            tail = body[-overlap_chars:] if overlap_chars > 0 and body.strip() else ""
            if tail:
                offset = len(body) - len(tail)
                start_line = start_line + body.count("\n", 0, offset)
                buf = [tail, line]
                buf_len = len(tail) + 1 + len(line)
            else:
                start_line = line_no
                buf = [line]
                buf_len = len(line)
        else:
            if not buf:
                start_line = line_no
            buf.append(line)
            buf_len += added

        end_line = line_no

    body = "\n".join(buf)
    if body.strip():
        chunks.append(TextChunk(body, start_line, end_line))

    return chunks

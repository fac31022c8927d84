"""L1 Unit Tests: 文本分块 (预算、重叠、行号)."""

from mnemo.memory.chunker import TextChunk, chunk_text


def _lines(n: int, width: int = 29) -> str:
    return "\n".join(f"line {i:03d} ".ljust(width, "x") for i in range(1, n + 1))


class TestChunkTextBasics:
    def test_empty_input(self):
        assert chunk_text("") == []

    def test_whitespace_only(self):
        assert chunk_text("   \n\n  \t") == []

    def test_short_text_single_chunk(self):
        chunks = chunk_text("hello\nworld")
        assert chunks == [TextChunk("hello\nworld", 1, 2)]

    def test_deterministic(self):
        text = _lines(80)
        assert chunk_text(text, 64, 8) == chunk_text(text, 64, 8)

    def test_oversized_line_is_kept_whole(self):
        line = "x" * 1000
        chunks = chunk_text(line, tokens_per_chunk=64, overlap_tokens=8)
        assert len(chunks) == 1
        assert chunks[0].text == line

    def test_minimum_budget(self):
        # tokens_per_chunk=1 仍然使用 32 字符下限
        chunks = chunk_text("abcdefghij\n" * 10, tokens_per_chunk=1, overlap_tokens=0)
        assert all(len(c.text) <= 32 for c in chunks)
        assert len(chunks) > 1


class TestChunkOverlap:
    def test_1500_char_document(self):
        text = _lines(50)
        assert len(text) == 1499

        chunks = chunk_text(text, tokens_per_chunk=64, overlap_tokens=8)

        assert len(chunks) > 1
        for chunk in chunks:
            assert len(chunk.text) <= 256
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.text.startswith(prev.text[-32:])

    def test_line_ranges(self):
        chunks = chunk_text(_lines(50), tokens_per_chunk=64, overlap_tokens=8)

        # 8 行 * 29 + 7 个换行 = 239 字符, 第 9 行放不下
        assert (chunks[0].start_line, chunks[0].end_line) == (1, 8)
        # 重叠的 32 字符从第 7 行末尾开始
        assert chunks[1].start_line == 7
        assert chunks[1].end_line == 15
        assert chunks[-1].end_line == 50

    def test_every_line_is_covered(self):
        text = _lines(50)
        chunks = chunk_text(text, tokens_per_chunk=64, overlap_tokens=8)
        joined = "\n".join(c.text for c in chunks)
        for line in text.split("\n"):
            assert line in joined

    def test_no_overlap(self):
        text = _lines(50)
        chunks = chunk_text(text, tokens_per_chunk=64, overlap_tokens=0)
        assert "\n".join(c.text for c in chunks) == text

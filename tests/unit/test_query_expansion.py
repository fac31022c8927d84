"""L1 Unit Tests: 查询扩展 (关键词提取 + FTS5 查询构造)."""

from mnemo.memory.query_expansion import (
    build_fts_query,
    extract_keywords,
    is_cjk,
    segment_for_index,
)


class TestLatinKeywords:
    def test_stopwords_and_short_tokens_dropped(self):
        assert extract_keywords("What is the weather like in Tokyo today?") == [
            "weather", "like", "tokyo", "today",
        ]

    def test_numeric_tokens_dropped(self):
        assert extract_keywords("error 404 in build 2024") == ["error", "build"]

    def test_underscore_split(self):
        assert extract_keywords("deploy_pipeline") == ["deploy", "pipeline"]

    def test_lowercase_and_dedup(self):
        assert extract_keywords("Python python PYTHON") == ["python"]

    def test_all_stopwords_yield_nothing(self):
        assert extract_keywords("what is the") == []

    def test_empty(self):
        assert extract_keywords("") == []
        assert extract_keywords("   ") == []


class TestCJKKeywords:
    def test_chinese_unigrams_bigrams_and_word(self):
        assert extract_keywords("用户喜欢") == [
            "用", "户", "喜", "欢", "用户", "户喜", "喜欢", "用户喜欢",
        ]

    def test_stopword_characters_dropped(self):
        kws = extract_keywords("我喜欢")
        assert "我" not in kws
        assert "喜" in kws
        assert "我喜" in kws

    def test_stopword_word_dropped(self):
        assert extract_keywords("这个") == []

    def test_mixed_script_token(self):
        kws = extract_keywords("Python编程")
        assert "python" in kws
        assert "编程" in kws

    def test_japanese_particles(self):
        kws = extract_keywords("東京の天気")
        assert "の" not in kws
        assert "東京" in kws
        assert "天気" in kws

    def test_thai_word(self):
        kws = extract_keywords("ภาษาไทย")
        assert "ภาษาไทย" in kws
        assert "ภ" in kws

    def test_is_cjk(self):
        assert is_cjk("用户")
        assert is_cjk("ภาษา")
        assert not is_cjk("user")
        assert not is_cjk("用户a")


class TestBuildFtsQuery:
    def test_or_joined_and_quoted(self):
        assert build_fts_query(["weather", "tokyo"]) == '"weather" OR "tokyo"'

    def test_inner_quotes_escaped(self):
        assert build_fts_query(['say "hi"']) == '"say ""hi"""'

    def test_empty_keywords(self):
        assert build_fts_query([]) == ""
        assert build_fts_query(["", "  "]) == ""


class TestSegmentForIndex:
    def test_cjk_chars_spaced(self):
        assert segment_for_index("用户").split() == ["用", "户"]

    def test_latin_untouched(self):
        assert segment_for_index("hello world") == "hello world"

    def test_mixed(self):
        assert segment_for_index("喜欢Python").split() == ["喜", "欢", "Python"]

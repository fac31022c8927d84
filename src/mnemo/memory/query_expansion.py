"""
查询扩展: 自由文本 → 关键词集合 → FTS5 查询

- 拉丁文字: 小写, 丢弃 <3 字符 / 纯数字 / 停用词
- 中日韩 / 泰文 (词间无空格): 单字 + 相邻二字组合 (均去掉停用词), 整词长度 >1 且非停用词时也保留
- 索引侧用 segment_for_index 把这些字符按空格切开, 使短语查询能匹配字符 n-gram
"""

from __future__ import annotations

import re

# CJK 统一汉字 + 扩展 A + 兼容汉字, 平假名/片假名, 韩文音节, 泰文
_CJK_RANGES = (
    "\u3040-\u309f"
    "\u30a0-\u30ff"
    "\u3400-\u4dbf"
    "\u4e00-\u9fff"
    "\uac00-\ud7af"
    "\uf900-\ufaff"
    "\u0e00-\u0e7f"
)

_TOKEN_RE = re.compile(rf"[\w{_CJK_RANGES}]+")
_SCRIPT_RUN_RE = re.compile(rf"[{_CJK_RANGES}]+|[^{_CJK_RANGES}]+")
_CJK_CHAR_RE = re.compile(rf"([{_CJK_RANGES}])")
_CJK_RUN_RE = re.compile(rf"^[{_CJK_RANGES}]+$")

MIN_LATIN_LENGTH = 3

STOPWORDS_EN = frozenset({
    "a", "about", "above", "after", "again", "all", "also", "and", "any", "are",
    "because", "been", "before", "being", "below", "between", "both", "but",
    "can", "could", "did", "does", "doing", "down", "during", "each", "few",
    "for", "from", "further", "had", "has", "have", "having", "her", "here",
    "hers", "him", "his", "how", "into", "its", "itself", "just", "more",
    "most", "much", "myself", "nor", "not", "now", "off", "once", "only",
    "other", "our", "ours", "out", "over", "own", "same", "she", "should",
    "some", "such", "than", "that", "the", "their", "theirs", "them", "then",
    "there", "these", "they", "this", "those", "through", "too", "under",
    "until", "very", "was", "were", "what", "when", "where", "which", "while",
    "who", "whom", "why", "will", "with", "would", "you", "your", "yours",
    "yourself", "please", "tell", "know", "remember", "said", "say",
})

STOPWORDS_CJK = frozenset({
    # 中文
    "的", "了", "是", "在", "我", "有", "和", "就", "不", "也", "很", "都",
    "吗", "呢", "吧", "啊", "呀", "嗯", "哦", "这", "那", "个", "们", "你",
    "他", "她", "它", "么", "什么", "怎么", "我们", "你们", "他们", "一个",
    "没有", "可以", "还是", "就是", "这个", "那个", "我的", "你的",
    # 日文
    "の", "は", "が", "を", "に", "で", "と", "も", "へ", "や", "か", "ね",
    "よ", "です", "ます",
    # 韩文
    "은", "는", "이", "가", "을", "를", "에", "의", "도",
    # 泰文: 声调符号 / 元音符号 / 重复符号单独出现无意义
    "่", "้", "๊", "๋", "์", "ั", "ิ", "ี", "ึ", "ื", "ุ", "ู", "็", "ำ",
    "ะ", "า", "ๆ", "ฯ",
    "ที่", "และ", "ของ", "ใน", "เป็น", "มี", "ได้", "ไม่", "ก็", "จะ",
    "ว่า", "ให้", "แล้ว", "คือ", "นะ", "ครับ", "ค่ะ", "คะ", "อะไร",
})


def is_cjk(text: str) -> bool:
    """整段文本都属于 CJK / 泰文字符块"""
    return bool(_CJK_RUN_RE.match(text))


def extract_keywords(query: str) -> list[str]:
    """把查询拆成去重后的关键词列表 (保持首次出现的顺序)"""
    if not query:
        return []

    keywords: dict[str, None] = {}

    for token in _TOKEN_RE.findall(query):
        for run in _SCRIPT_RUN_RE.findall(token):
            if is_cjk(run):
                _expand_cjk(run, keywords)
            else:
                _add_latin(run, keywords)

    return list(keywords)


def _add_latin(token: str, keywords: dict[str, None]) -> None:
    for part in token.split("_"):
        word = part.lower()
        if len(word) < MIN_LATIN_LENGTH:
            continue
        if word.isdigit():
            continue
        if word in STOPWORDS_EN:
            continue
        keywords.setdefault(word, None)


def _expand_cjk(word: str, keywords: dict[str, None]) -> None:
    for ch in word:
        if ch not in STOPWORDS_CJK:
            keywords.setdefault(ch, None)
    for i in range(len(word) - 1):
        bigram = word[i:i + 2]
        if bigram not in STOPWORDS_CJK:
            keywords.setdefault(bigram, None)
    if len(word) > 1 and word not in STOPWORDS_CJK:
        keywords.setdefault(word, None)


def build_fts_query(keywords: list[str]) -> str:
    """每个关键词单独加引号后 OR 连接; 空集合返回空串, 由调用方决定回退策略"""
    terms = []
    for kw in keywords:
        kw = kw.strip()
        if not kw:
            continue
        escaped = kw.replace('"', '""')
        terms.append(f'"{escaped}"')
    return " OR ".join(terms)


def segment_for_index(text: str) -> str:
    """在 CJK / 泰文字符两侧插入空格, 使 FTS5 unicode61 分词按单字切分"""
    return _CJK_CHAR_RE.sub(r" \1 ", text)

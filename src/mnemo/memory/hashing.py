"""内容哈希: 去重与 embedding 缓存共用同一个 key"""

import hashlib


def hash_text(text: str) -> str:
    """SHA256(trim(text)) 十六进制摘要"""
    return hashlib.sha256(text.strip().encode("utf-8")).hexdigest()

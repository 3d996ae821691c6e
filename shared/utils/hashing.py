"""稳定哈希工具（指标缓存 key、数据指纹）。"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def sha256_bytes(payload: bytes) -> str:
    h = hashlib.sha256()
    h.update(payload)
    return h.hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    return sha256_bytes(text.encode(encoding))


def canonical_json(obj: Any) -> str:
    """把 dict/list 结构序列化为规范 JSON（key 排序、无多余空白）。"""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)


def structural_hash(obj: Any) -> str:
    """
    结构化哈希：同一结构（与 key 顺序无关）总是得到同一个 hash。

    用于替代“直接拿 JSON 字符串当 key”的做法，key 长度固定且不受字段顺序影响。
    """
    return sha256_text(canonical_json(obj))

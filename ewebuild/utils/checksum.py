"""SHA-256 校验工具"""

from __future__ import annotations

import hashlib
from pathlib import Path

CHUNK_SIZE = 64 * 1024


def file_sha256(path: str | Path) -> str:
    """计算文件 SHA-256，返回小写十六进制"""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def checksum_matches(actual: str, expected: str) -> bool:
    """十六进制摘要比较（大小写不敏感，其余逐字节一致）"""
    return actual.lower() == expected.lower()

"""远程源拉取缓存

职责:
- 以 (url, 期望校验和) 为缓存键保存已校验的远程文件
- 缓存命中时重新校验内容，被篡改或损坏的条目直接丢弃
- 每个缓存键一把锁：并发读者共享结果，同一键同时最多一个写者

缓存布局:
  <root>/<url 摘要前 16 位>/<sha256>/<文件名>
缓存中只存放校验通过的文件；下载先落到同目录临时文件，校验后再原子替换。
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ewebuild.utils.checksum import checksum_matches, file_sha256

logger = logging.getLogger(__name__)


class FetchCache:
    """按内容固定的远程文件缓存，可被多个流水线共享"""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @staticmethod
    def _url_key(url: str) -> str:
        return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]

    def _entry_dir(self, url: str, checksum: str) -> Path:
        return self.root / self._url_key(url) / checksum.lower()

    def path_for(self, url: str, checksum: str, file_name: str) -> Path:
        return self._entry_dir(url, checksum) / file_name

    @contextmanager
    def lock(self, url: str, checksum: str) -> Iterator[None]:
        """获取缓存键的独占锁，避免同一文件被重复下载"""
        key = (url, checksum.lower())
        with self._locks_guard:
            lk = self._locks.setdefault(key, threading.Lock())
        with lk:
            yield

    def lookup(self, url: str, checksum: str, file_name: str) -> Path | None:
        """命中且内容校验通过时返回路径，否则返回 None（损坏条目会被删除）"""
        path = self.path_for(url, checksum, file_name)
        if not path.is_file():
            return None
        if checksum_matches(file_sha256(path), checksum):
            return path
        logger.warning("缓存条目校验失败，已丢弃: %s", path)
        path.unlink(missing_ok=True)
        return None

    def temp_path(self, url: str, checksum: str, file_name: str) -> Path:
        """为下载分配同目录临时文件（保证后续 rename 为原子操作）"""
        entry_dir = self._entry_dir(url, checksum)
        entry_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(entry_dir), prefix=f".{file_name}.", suffix=".part")
        os.close(fd)
        return Path(tmp)

    def store(self, url: str, checksum: str, file_name: str, verified: Path) -> Path:
        """将已校验的临时文件放入缓存"""
        dest = self.path_for(url, checksum, file_name)
        os.replace(verified, dest)
        logger.debug("已缓存: %s", dest)
        return dest

    def list_entries(self) -> list[dict[str, object]]:
        """列出缓存中的文件"""
        if not self.root.exists():
            return []
        entries = []
        for path in sorted(self.root.glob("*/*/*")):
            if path.is_file() and not path.name.endswith(".part"):
                entries.append({
                    "file": path.name,
                    "sha256": path.parent.name,
                    "size": path.stat().st_size,
                    "path": str(path),
                })
        return entries

    def clean(self) -> int:
        """清空缓存，返回删除的文件数"""
        count = len(self.list_entries())
        if self.root.exists():
            shutil.rmtree(self.root)
        logger.info("缓存已清空: %s (%d 个文件)", self.root, count)
        return count

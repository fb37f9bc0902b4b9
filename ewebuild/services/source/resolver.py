"""源解析器

将 SourceSpec 声明的源条目解析为已校验的本地文件。

策略（按声明顺序汇报结果，拉取本身并行）:
  1. 本地条目：相对规格目录定位，计算校验和
  2. 远程条目：先查缓存 (url, sha256)，命中即跳过网络；未命中则下载到临时文件
  3. 校验和必须完全一致，任何不一致对整个源都是致命错误，不做降级

任一条目失败时取消其余在途下载，并以声明顺序中第一个失败条目的错误上报。
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from ewebuild.core.exceptions import SourceFetchError, ValidationError
from ewebuild.core.models import SourceEntry, SourceSpec
from ewebuild.services.source.cache import FetchCache
from ewebuild.services.source.fetcher import Downloader, DownloadError, UrlDownloader
from ewebuild.utils.cancel import CancelToken
from ewebuild.utils.checksum import checksum_matches, file_sha256

logger = logging.getLogger(__name__)


class SourceResolver:
    """源条目解析 + 校验"""

    def __init__(
        self,
        cache: FetchCache,
        downloader: Downloader | None = None,
        *,
        max_workers: int = 5,
        timeout: float = 60,
    ) -> None:
        self.cache = cache
        self.downloader = downloader or UrlDownloader()
        self.max_workers = max(1, max_workers)
        self.timeout = timeout

    def resolve(
        self, spec: SourceSpec, cancel: CancelToken | None = None,
    ) -> dict[SourceEntry, Path]:
        """解析全部源条目，返回 {条目: 已校验的本地路径}（保持声明顺序）"""
        token = (cancel or CancelToken()).child()
        resolved: dict[SourceEntry, Path] = {}
        if not spec.sources:
            return resolved

        workers = min(self.max_workers, len(spec.sources))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"fetch-{spec.name}") as pool:
            futures: list[tuple[SourceEntry, Future[Path]]] = [
                (entry, pool.submit(self._resolve_one, spec, entry, token))
                for entry in spec.sources
            ]
            try:
                for entry, future in futures:
                    resolved[entry] = future.result()
            except BaseException:
                token.cancel()
                for _, f in futures:
                    f.cancel()
                raise

        logger.info("源已就绪: %s (%d 个条目)", spec.name, len(resolved))
        return resolved

    def _resolve_one(
        self, spec: SourceSpec, entry: SourceEntry, token: CancelToken,
    ) -> Path:
        token.raise_if_cancelled(str(entry))
        if entry.is_remote:
            return self._fetch_remote(entry, token)
        return self._locate_local(spec, entry)

    def _locate_local(self, spec: SourceSpec, entry: SourceEntry) -> Path:
        path = spec.spec_dir / entry.origin
        if not path.is_file():
            raise SourceFetchError(entry, SourceFetchError.NOT_FOUND, f"本地文件不存在: {path}")
        self._verify(entry, path)
        logger.info("  本地源校验通过: %s", entry.origin)
        return path

    def _fetch_remote(self, entry: SourceEntry, token: CancelToken) -> Path:
        url, checksum = entry.origin, entry.sha256
        file_name = entry.file_name or entry.rename
        with self.cache.lock(url, checksum):
            hit = self.cache.lookup(url, checksum, file_name)
            if hit is not None:
                logger.info("  缓存命中: %s", file_name)
                return hit

            tmp = self.cache.temp_path(url, checksum, file_name)
            try:
                try:
                    self.downloader.download(url, tmp, timeout=self.timeout, cancel=token)
                except DownloadError as e:
                    raise SourceFetchError(entry, e.cause, str(e)) from e
                except (ValidationError, OSError) as e:
                    raise SourceFetchError(entry, SourceFetchError.NETWORK, str(e)) from e
                self._verify(entry, tmp)
                return self.cache.store(url, checksum, file_name, tmp)
            finally:
                # 仅在失败时残留；成功路径已被 rename 走
                tmp.unlink(missing_ok=True)

    @staticmethod
    def _verify(entry: SourceEntry, path: Path) -> None:
        actual = file_sha256(path)
        if not checksum_matches(actual, entry.sha256):
            raise SourceFetchError(
                entry, SourceFetchError.CHECKSUM_MISMATCH,
                f"校验和不匹配: 期望 {entry.sha256}, 实际 {actual}",
            )

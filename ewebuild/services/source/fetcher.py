"""远程文件下载器

通过 Downloader 协议抽象网络传输，测试时注入内存实现即可，无需 patch urllib。
下载器只负责把字节写到指定路径，校验由 SourceResolver 完成。
"""

from __future__ import annotations

import logging
import urllib.error
import urllib.request
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from ewebuild import __version__
from ewebuild.core.exceptions import SourceFetchError
from ewebuild.utils.net import validate_url_scheme

if TYPE_CHECKING:
    from ewebuild.utils.cancel import CancelToken

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class DownloadError(OSError):
    """下载失败，cause 为 network 或 not-found"""

    def __init__(self, cause: str, message: str) -> None:
        super().__init__(message)
        self.cause = cause


class Downloader(Protocol):
    """下载器协议"""

    def download(
        self, url: str, dest: Path, *,
        timeout: float, cancel: CancelToken | None = None,
    ) -> None:
        """下载 url 到 dest（覆盖写入），失败抛 DownloadError"""
        ...


class UrlDownloader:
    """基于 urllib 的默认下载器，分块读取并在块间检查取消信号"""

    def download(
        self, url: str, dest: Path, *,
        timeout: float, cancel: CancelToken | None = None,
    ) -> None:
        validate_url_scheme(url, context="source download")
        req = urllib.request.Request(url, headers={"User-Agent": f"ewebuild/{__version__}"})
        logger.info("  下载: %s", url)
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp, open(dest, "wb") as f:  # nosec B310
                while True:
                    if cancel is not None:
                        cancel.raise_if_cancelled(url)
                    chunk = resp.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    f.write(chunk)
        except urllib.error.HTTPError as e:
            cause = SourceFetchError.NOT_FOUND if e.code in (404, 410) else SourceFetchError.NETWORK
            raise DownloadError(cause, f"HTTP {e.code}: {url}") from e
        except (urllib.error.URLError, TimeoutError, ConnectionError) as e:
            raise DownloadError(SourceFetchError.NETWORK, f"{url}: {e}") from e
        logger.info("  已下载: %s", dest.name)

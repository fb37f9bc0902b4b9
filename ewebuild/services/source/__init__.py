"""源获取模块

拆分说明:
- cache.py: 按 (url, sha256) 固定内容的拉取缓存
- fetcher.py: 远程下载器
- resolver.py: 源条目解析与校验
"""

from ewebuild.services.source.cache import FetchCache
from ewebuild.services.source.fetcher import Downloader, DownloadError, UrlDownloader
from ewebuild.services.source.resolver import SourceResolver

__all__ = ["FetchCache", "Downloader", "DownloadError", "UrlDownloader", "SourceResolver"]

"""网络工具 — URL 校验与文件名推导"""

from __future__ import annotations

import posixpath
from urllib.parse import unquote, urlparse

from ewebuild.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def url_file_name(url: str) -> str:
    """取 URL 路径的最后一段作为文件名，无文件名时返回空串"""
    path = unquote(urlparse(url).path)
    if not path or path.endswith("/"):
        return ""
    return posixpath.basename(path)

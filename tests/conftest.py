"""测试共享 fixture — 假下载器 + 归档工厂 + 隔离配置

所有测试都不访问网络：远程源通过 FakeDownloader 从内存返回字节，
配置中的缓存 / 工作 / 输出目录全部位于 tmp_path 之下。
"""

from __future__ import annotations

import hashlib
import io
import tarfile
from pathlib import Path
from typing import Callable

import pytest

import ewebuild.core.config as cfgmod
from ewebuild.core.exceptions import SourceFetchError
from ewebuild.services.container import ServiceContainer, reset_container
from ewebuild.services.source.fetcher import DownloadError


class FakeDownloader:
    """内存下载器：url -> 字节；未登记的 url 视为 not-found"""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.calls: list[str] = []
        self.offline = False

    def add(self, url: str, content: bytes) -> str:
        self.files[url] = content
        return hashlib.sha256(content).hexdigest()

    def download(self, url, dest, *, timeout, cancel=None) -> None:
        self.calls.append(url)
        if cancel is not None:
            cancel.raise_if_cancelled(url)
        if self.offline:
            raise DownloadError(SourceFetchError.NETWORK, f"offline: {url}")
        if url not in self.files:
            raise DownloadError(SourceFetchError.NOT_FOUND, f"HTTP 404: {url}")
        Path(dest).write_bytes(self.files[url])


@pytest.fixture
def sha256_hex() -> Callable[[bytes], str]:
    return lambda data: hashlib.sha256(data).hexdigest()


@pytest.fixture
def make_tar_gz() -> Callable[[dict[str, str]], bytes]:
    """构造 tar.gz 字节：{成员路径: 文本内容}，以 .sh 结尾的成员带可执行位"""

    def _make(files: dict[str, str]) -> bytes:
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tf:
            for name, text in sorted(files.items()):
                data = text.encode("utf-8")
                info = tarfile.TarInfo(name)
                info.size = len(data)
                info.mode = 0o755 if name.endswith(".sh") else 0o644
                tf.addfile(info, io.BytesIO(data))
        return buf.getvalue()

    return _make


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def cfg(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> cfgmod.Config:
    """独立的配置和数据目录"""
    config = cfgmod.Config(
        cache_dir=str(tmp_path / "cache"),
        work_dir=str(tmp_path / "work"),
        output_dir=str(tmp_path / "out"),
        env_allowlist=["PATH"],
        target_arch="x86_64",
        step_timeout=60,
        compress_level=0,
    )
    monkeypatch.setattr(cfgmod, "_current", config)
    reset_container()
    yield config
    reset_container()


@pytest.fixture
def container(cfg: cfgmod.Config, downloader: FakeDownloader) -> ServiceContainer:
    return ServiceContainer(config=cfg, downloader=downloader)

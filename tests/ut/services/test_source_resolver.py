"""源解析器测试（拉取、缓存、校验）"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from ewebuild.core.exceptions import PipelineCancelled, SourceFetchError
from ewebuild.core.spec_loader import load_spec
from ewebuild.services.source.cache import FetchCache
from ewebuild.services.source.resolver import SourceResolver
from ewebuild.utils.cancel import CancelToken


def _spec(sources: list[dict], spec_dir: Path | str = "."):
    return load_spec(
        {"name": "demo", "version": "1.0", "license": "MIT", "source": sources},
        spec_dir=spec_dir,
    )


@pytest.fixture
def resolver(tmp_path: Path, downloader) -> SourceResolver:
    return SourceResolver(FetchCache(tmp_path / "cache"), downloader, max_workers=5)


class TestResolveRemote:
    def test_downloads_and_verifies(self, resolver, downloader) -> None:
        sha = downloader.add("https://x.org/a.tar.gz", b"AAA")
        spec = _spec([{"url": "https://x.org/a.tar.gz", "sha256sum": sha}])

        resolved = resolver.resolve(spec)
        path = resolved[spec.sources[0]]
        assert path.read_bytes() == b"AAA"
        assert downloader.calls == ["https://x.org/a.tar.gz"]

    def test_cache_hit_skips_network(self, resolver, downloader) -> None:
        sha = downloader.add("https://x.org/a.tar.gz", b"AAA")
        spec = _spec([{"url": "https://x.org/a.tar.gz", "sha256sum": sha}])
        first = resolver.resolve(spec)[spec.sources[0]]

        downloader.offline = True
        second = resolver.resolve(spec)[spec.sources[0]]
        assert second == first
        assert second.read_bytes() == b"AAA"
        assert len(downloader.calls) == 1

    def test_idempotent_content(self, tmp_path: Path, downloader) -> None:
        sha = downloader.add("https://x.org/a.bin", b"\x00\x01payload")
        spec = _spec([{"url": "https://x.org/a.bin", "sha256sum": sha}])
        contents = [
            SourceResolver(FetchCache(tmp_path / f"cache{i}"), downloader).resolve(spec)[spec.sources[0]].read_bytes()
            for i in range(3)
        ]
        assert contents == [b"\x00\x01payload"] * 3

    def test_single_bit_flip_is_mismatch(self, resolver, downloader, sha256_hex) -> None:
        good = b"release tarball contents"
        flipped = bytes([good[0] ^ 0x01]) + good[1:]
        downloader.add("https://x.org/a.bin", flipped)
        spec = _spec([{"url": "https://x.org/a.bin", "sha256sum": sha256_hex(good)}])

        with pytest.raises(SourceFetchError) as exc:
            resolver.resolve(spec)
        assert exc.value.cause == SourceFetchError.CHECKSUM_MISMATCH
        assert exc.value.entry == spec.sources[0]
        # 校验失败的文件不进入缓存
        assert resolver.cache.list_entries() == []

    def test_not_found(self, resolver) -> None:
        spec = _spec([{"url": "https://x.org/missing.tar.gz", "sha256sum": "a" * 64}])
        with pytest.raises(SourceFetchError) as exc:
            resolver.resolve(spec)
        assert exc.value.cause == SourceFetchError.NOT_FOUND

    def test_network_failure(self, resolver, downloader) -> None:
        downloader.offline = True
        spec = _spec([{"url": "https://x.org/a.tar.gz", "sha256sum": "a" * 64}])
        with pytest.raises(SourceFetchError) as exc:
            resolver.resolve(spec)
        assert exc.value.cause == SourceFetchError.NETWORK

    def test_first_failure_in_declared_order(self, resolver, downloader) -> None:
        good = downloader.add("https://x.org/good.bin", b"good")
        downloader.add("https://x.org/bad.bin", b"bad")
        spec = _spec([
            {"url": "https://x.org/good.bin", "sha256sum": good},
            {"url": "https://x.org/bad.bin", "sha256sum": "f" * 64},
        ])
        with pytest.raises(SourceFetchError) as exc:
            resolver.resolve(spec)
        assert exc.value.entry.index == 1
        assert "source[1]" in str(exc.value)

    def test_parent_cancel(self, resolver, downloader) -> None:
        sha = downloader.add("https://x.org/a.bin", b"a")
        spec = _spec([{"url": "https://x.org/a.bin", "sha256sum": sha}])
        token = CancelToken()
        token.cancel()
        with pytest.raises(PipelineCancelled):
            resolver.resolve(spec, token)
        assert downloader.calls == []

    def test_concurrent_resolvers_share_download(self, tmp_path: Path, downloader) -> None:
        sha = downloader.add("https://x.org/a.bin", b"shared")
        spec = _spec([{"url": "https://x.org/a.bin", "sha256sum": sha}])
        resolver = SourceResolver(FetchCache(tmp_path / "cache"), downloader)

        errors: list[BaseException] = []

        def _run() -> None:
            try:
                resolver.resolve(spec)
            except BaseException as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=_run) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
        assert downloader.calls == ["https://x.org/a.bin"]


class TestResolveLocal:
    def test_relative_to_spec_dir(self, tmp_path: Path, resolver, sha256_hex) -> None:
        (tmp_path / "fix.patch").write_bytes(b"--- a\n+++ b\n")
        spec = _spec([{"path": "fix.patch", "sha256sum": sha256_hex(b"--- a\n+++ b\n")}], tmp_path)
        resolved = resolver.resolve(spec)
        assert resolved[spec.sources[0]] == tmp_path.resolve() / "fix.patch"

    def test_local_mismatch(self, tmp_path: Path, resolver) -> None:
        (tmp_path / "fix.patch").write_bytes(b"changed")
        spec = _spec([{"path": "fix.patch", "sha256sum": "0" * 64}], tmp_path)
        with pytest.raises(SourceFetchError) as exc:
            resolver.resolve(spec)
        assert exc.value.cause == SourceFetchError.CHECKSUM_MISMATCH

    def test_local_missing(self, tmp_path: Path, resolver) -> None:
        spec = _spec([{"path": "nope.patch", "sha256sum": "0" * 64}], tmp_path)
        with pytest.raises(SourceFetchError) as exc:
            resolver.resolve(spec)
        assert exc.value.cause == SourceFetchError.NOT_FOUND

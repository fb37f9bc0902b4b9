"""端到端场景测试：cronie 单包、llvm 多包共享目录、错误校验和"""

from __future__ import annotations

import tarfile
from pathlib import Path

import pytest
import yaml

from ewebuild.core.catalog import Catalog
from ewebuild.core.exceptions import PackageStepError, SourceFetchError
from ewebuild.core.spec_loader import load_spec
from ewebuild.services.orchestrator import Stage

CRONIE_URL = "https://github.com/cronie-crond/cronie/releases/download/cronie-{{ version }}/cronie-{{ version }}.tar.gz"


def _cronie(sha: str, tmp_path: Path) -> dict:
    (tmp_path / "deny").write_text("", encoding="utf-8")
    return {
        "name": "cronie",
        "version": "1.7.0",
        "revision": "1",
        "description": "Daemon that runs specified programs at scheduled times and related tools",
        "architecture": "any",
        "homepage": "https://github.com/cronie-crond/cronie/",
        "license": ["Apache-2.0", "custom:CC0"],
        "depends": ["pam", "bash", "run-parts"],
        "optional_depends": [
            {"name": "smtp-server", "description": "send job output via email"},
            {"name": "smtp-forwarder", "description": "forward job output to email server"},
        ],
        "source": [
            {"url": CRONIE_URL, "sha256sum": sha},
            {"path": "deny", "sha256sum": "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"},
        ],
        "build": "cd cronie-{{ version }}\nsh ./configure.sh\nmkdir -p ../output/bin\ncp crond ../output/bin/crond",
        "check": "test -x output/bin/crond",
        "pack": 'install -Dm755 output/bin/crond "$PKGDIR/usr/bin/crond"\ninstall -Dm644 deny "$PKGDIR/etc/cron.deny"',
    }


@pytest.fixture
def cronie_tarball(downloader, make_tar_gz) -> str:
    content = make_tar_gz({
        "configure.sh": "printf '#!/bin/sh\\necho crond\\n' > crond\nchmod +x crond\n",
    })
    url = "https://github.com/cronie-crond/cronie/releases/download/cronie-1.7.0/cronie-1.7.0.tar.gz"
    return downloader.add(url, content)


class TestCronie:
    def test_single_package(self, container, cfg, tmp_path: Path, cronie_tarball: str) -> None:
        spec = load_spec(_cronie(cronie_tarball, tmp_path), spec_dir=tmp_path)
        result = container.pipeline.run(spec)

        assert result.success, result.error
        [artifact] = result.packages
        assert artifact.archive_path.name == "cronie_1.7.0-1.tar.xz"
        with tarfile.open(artifact.archive_path) as tf:
            names = tf.getnames()
        assert "usr/bin/crond" in names
        assert "etc/cron.deny" in names

        manifest = yaml.safe_load(artifact.manifest_path.read_text(encoding="utf-8"))
        assert manifest["depends"] == ["pam", "bash", "run-parts"]
        assert manifest["optional_depends"] == [
            {"name": "smtp-server", "description": "send job output via email"},
            {"name": "smtp-forwarder", "description": "forward job output to email server"},
        ]
        assert manifest["license"] == ["Apache-2.0", "custom:CC0"]
        assert manifest["version"] == "1.7.0-1"

    def test_second_run_hits_cache(self, container, downloader, tmp_path: Path, cronie_tarball: str) -> None:
        spec = load_spec(_cronie(cronie_tarball, tmp_path), spec_dir=tmp_path)
        assert container.pipeline.run(spec).success
        downloader.offline = True
        assert container.pipeline.run(spec).success
        assert len(downloader.calls) == 1


def _llvm(libs_pack: str) -> dict:
    return {
        "name": "llvm",
        "version": "17.0.6",
        "license": "Apache-2.0 WITH LLVM-exception",
        "description": "Compiler infrastructure",
        "source": [{"url": "https://x.org/llvm-{{ version }}.src.tar.xz", "sha256sum": "", "extract": False}],
        "build": "mkdir -p out/bin out/lib\necho clang > out/bin/clang\necho so > out/lib/libLLVM.so\necho so > out/lib/libLTO.so",
        "packages": [
            {
                "name": "llvm",
                "pack": 'mkdir -p "$PKGDIR/usr/bin" "$SHARED_DIR/libs"\n'
                        'cp out/bin/clang "$PKGDIR/usr/bin/"\n'
                        'mv out/lib/*.so "$SHARED_DIR/libs/"',
            },
            {
                "name": "llvm-libs",
                "description": "LLVM runtime libraries",
                "pack": libs_pack,
            },
        ],
    }


class TestLlvm:
    @pytest.fixture
    def llvm_sha(self, downloader) -> str:
        return downloader.add("https://x.org/llvm-17.0.6.src.tar.xz", b"llvm source")

    def _load(self, llvm_sha: str, libs_pack: str):
        data = _llvm(libs_pack)
        data["source"][0]["sha256sum"] = llvm_sha
        return load_spec(data)

    def test_libs_see_shared_files(self, container, llvm_sha: str) -> None:
        spec = self._load(llvm_sha, 'mkdir -p "$PKGDIR/usr/lib"\nmv "$SHARED_DIR"/libs/*.so "$PKGDIR/usr/lib/"')
        result = container.pipeline.run(spec)

        assert result.success, result.error
        llvm, libs = result.packages
        assert (llvm.package, libs.package) == ("llvm", "llvm-libs")
        with tarfile.open(llvm.archive_path) as tf:
            assert not any(n.endswith(".so") for n in tf.getnames())
        with tarfile.open(libs.archive_path) as tf:
            assert {"usr/lib/libLLVM.so", "usr/lib/libLTO.so"} <= set(tf.getnames())
        assert libs.manifest["description"] == "LLVM runtime libraries"

    def test_missing_shared_files_fail_loudly(self, container, llvm_sha: str) -> None:
        # 模拟顺序错误：libs 期望的文件不在共享目录中
        spec = self._load(llvm_sha, 'mkdir -p "$PKGDIR/usr/lib"\nmv "$SHARED_DIR"/missing/*.so "$PKGDIR/usr/lib/"')
        result = container.pipeline.run(spec)

        assert result.failed_stage == Stage.PACKAGING
        assert isinstance(result.error, PackageStepError)
        assert result.error.package == "llvm-libs"
        [emitted] = result.packages
        assert emitted.package == "llvm"
        assert emitted.provisional


class TestWrongChecksum:
    def test_fails_in_resolving_without_building(self, container, downloader, tmp_path: Path) -> None:
        good = downloader.add("https://x.org/a-1.0.tar.gz", b"a")
        downloader.add("https://x.org/a-extra.bin", b"tampered")
        marker = tmp_path / "build-ran"
        spec = load_spec({
            "name": "a", "version": "1.0", "license": "MIT",
            "source": [
                {"url": "https://x.org/a-1.0.tar.gz", "sha256sum": good, "extract": False},
                {"url": "https://x.org/a-extra.bin", "sha256sum": "0" * 64},
            ],
            "build": f"touch {marker}",
        })
        result = container.pipeline.run(spec)

        assert result.stage == Stage.FAILED
        assert result.failed_stage == Stage.RESOLVING
        assert isinstance(result.error, SourceFetchError)
        assert result.error.cause == SourceFetchError.CHECKSUM_MISMATCH
        assert result.error.entry.index == 1
        assert not marker.exists()
        assert result.packages == []


class TestCatalog:
    def test_catalog_run(self, container, downloader, tmp_path: Path, cronie_tarball: str) -> None:
        llvm_sha = downloader.add("https://x.org/llvm-17.0.6.src.tar.xz", b"llvm source")
        llvm = _llvm('mkdir -p "$PKGDIR/usr/lib"\nmv "$SHARED_DIR"/libs/*.so "$PKGDIR/usr/lib/"')
        llvm["source"][0]["sha256sum"] = llvm_sha
        catalog = Catalog([
            load_spec(_cronie(cronie_tarball, tmp_path), spec_dir=tmp_path),
            load_spec(llvm),
        ])
        report = container.runner.run(catalog)
        assert report.succeeded == ["cronie", "llvm"]
        assert report.summary()["total"] == 2

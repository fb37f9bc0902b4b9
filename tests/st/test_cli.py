"""命令行接口测试（click CliRunner）"""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from ewebuild import __version__
from ewebuild.cli import main
from ewebuild.services.container import reset_container
from ewebuild.utils.logger import reset_logging

SCRIPT = b"#!/bin/sh\necho hello\n"


@pytest.fixture(autouse=True)
def _isolate():
    reset_container()
    yield
    reset_logging()
    reset_container()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    p = tmp_path / "ewebuild.config.yml"
    p.write_text(yaml.safe_dump({
        "cache_dir": str(tmp_path / "cache"),
        "work_dir": str(tmp_path / "work"),
        "output_dir": str(tmp_path / "out"),
        "env_allowlist": ["PATH"],
        "compress_level": 0,
    }), encoding="utf-8")
    return p


def _write_spec(root: Path, name: str = "hello", build: str = "true", sha: str | None = None) -> Path:
    d = root / name
    d.mkdir()
    (d / "hello.sh").write_bytes(SCRIPT)
    (d / "ewebuild.yml").write_text(yaml.safe_dump({
        "name": name,
        "version": "1.0",
        "license": "MIT",
        "depends": ["sh"],
        "source": [{"path": "hello.sh", "sha256sum": sha or hashlib.sha256(SCRIPT).hexdigest()}],
        "build": build,
        "pack": 'install -Dm755 hello.sh "$PKGDIR/usr/bin/{{ version }}/hello"',
    }), encoding="utf-8")
    return d


class TestBuild:
    def test_success(self, tmp_path: Path, config_file: Path) -> None:
        spec_dir = _write_spec(tmp_path)
        result = CliRunner().invoke(main, ["build", str(spec_dir), "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "[OK]" in result.output
        assert (tmp_path / "out" / "hello_1.0.tar.xz").exists()

    def test_output_override(self, tmp_path: Path, config_file: Path) -> None:
        spec_dir = _write_spec(tmp_path)
        out = tmp_path / "elsewhere"
        result = CliRunner().invoke(main, ["build", str(spec_dir), "-c", str(config_file), "-o", str(out)])
        assert result.exit_code == 0, result.output
        assert (out / "hello_1.0.manifest.yml").exists()

    def test_failure_exit_code(self, tmp_path: Path, config_file: Path) -> None:
        spec_dir = _write_spec(tmp_path, build="echo compile error; exit 2")
        result = CliRunner().invoke(main, ["build", str(spec_dir), "-c", str(config_file)])
        assert result.exit_code == 1
        assert "[FAIL]" in result.output
        assert "compile error" in result.output

    def test_invalid_spec_aborts_before_build(self, tmp_path: Path, config_file: Path) -> None:
        spec_dir = _write_spec(tmp_path, sha="xyz")
        result = CliRunner().invoke(main, ["build", str(spec_dir), "-c", str(config_file)])
        assert result.exit_code == 1
        assert "source[0].sha256sum" in result.output
        assert not (tmp_path / "work").exists()


class TestValidateShow:
    def test_validate(self, tmp_path: Path, config_file: Path) -> None:
        a = _write_spec(tmp_path, "hello")
        b = _write_spec(tmp_path, "world")
        result = CliRunner().invoke(main, ["validate", str(a), str(b), "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "2 个源" in result.output

    def test_bundled_example(self, config_file: Path) -> None:
        example = Path(__file__).resolve().parents[2] / "specs" / "hello"
        result = CliRunner().invoke(main, ["validate", str(example), "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "hello 1.0-1" in result.output

    def test_show(self, tmp_path: Path, config_file: Path) -> None:
        spec_dir = _write_spec(tmp_path)
        result = CliRunner().invoke(main, ["show", str(spec_dir), "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "- sh" in result.output
        assert "name: hello" in result.output


class TestMisc:
    @pytest.mark.parametrize("a, b, expected", [
        ("1.0", "1.1", "<"),
        ("1:0.1", "9.9", ">"),
        ("1.01", "1.1", "="),
    ])
    def test_vercmp(self, a: str, b: str, expected: str) -> None:
        result = CliRunner().invoke(main, ["vercmp", a, b])
        assert result.exit_code == 0
        assert result.output.strip().endswith(expected)

    def test_vercmp_invalid(self) -> None:
        result = CliRunner().invoke(main, ["vercmp", "1.0 beta", "1.0"])
        assert result.exit_code == 1

    def test_cache_list_empty(self, config_file: Path) -> None:
        result = CliRunner().invoke(main, ["cache", "list", "-c", str(config_file)])
        assert result.exit_code == 0
        assert "缓存为空" in result.output

    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        assert __version__ in result.output

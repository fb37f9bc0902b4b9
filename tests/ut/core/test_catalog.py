"""规格目录测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from ewebuild.core.catalog import Catalog
from ewebuild.core.exceptions import PolicyViolation
from ewebuild.core.spec_loader import load_spec

SHA = "c" * 64


def _load(name: str, packages: list[str] | None = None):
    data: dict = {
        "name": name, "version": "1.0", "license": "MIT",
        "source": [{"path": f"{name}.tar", "sha256sum": SHA}],
    }
    if packages:
        data["packages"] = [{"name": p} for p in packages]
    return load_spec(data)


class TestCatalog:
    def test_add_and_lookup(self) -> None:
        catalog = Catalog([_load("llvm", ["llvm", "llvm-libs"]), _load("cronie")])
        assert len(catalog) == 2
        assert [s.name for s in catalog] == ["llvm", "cronie"]
        assert catalog.owner_of("llvm-libs") == "llvm"
        assert catalog.get("cronie") is not None
        assert catalog.get("nope") is None

    def test_package_name_collision_across_sources(self) -> None:
        catalog = Catalog([_load("llvm", ["llvm", "llvm-libs"])])
        with pytest.raises(PolicyViolation, match="llvm-libs"):
            catalog.add(_load("llvm-libs"))
        assert len(catalog) == 1

    def test_duplicate_source_name(self) -> None:
        catalog = Catalog([_load("cronie")])
        with pytest.raises(PolicyViolation, match="源名称重复"):
            catalog.add(_load("cronie"))

    def test_from_files(self, tmp_path: Path) -> None:
        for name in ("a", "b"):
            d = tmp_path / name
            d.mkdir()
            (d / "ewebuild.yml").write_text(
                f"name: {name}\nversion: '1'\nlicense: MIT\n"
                f"source:\n  - path: {name}.txt\n    sha256sum: {SHA}\n",
                encoding="utf-8",
            )
        catalog = Catalog.from_files([tmp_path / "a", tmp_path / "b"])
        assert [s.name for s in catalog] == ["a", "b"]

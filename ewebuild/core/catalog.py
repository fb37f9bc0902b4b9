"""规格目录 — 一组待构建的 SourceSpec

包名在整个目录内唯一（不仅是单个源内），冲突在任何构建开始之前以
PolicyViolation 报告。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from ewebuild.core.exceptions import PolicyViolation
from ewebuild.core.models import SourceSpec
from ewebuild.core.spec_loader import load_spec_file

logger = logging.getLogger(__name__)


class Catalog:
    """按加入顺序保存 SourceSpec，并维护全目录的包名索引"""

    def __init__(self, specs: Iterable[SourceSpec] = ()) -> None:
        self._specs: dict[str, SourceSpec] = {}
        self._package_owner: dict[str, str] = {}
        for spec in specs:
            self.add(spec)

    @classmethod
    def from_files(
        cls, paths: Iterable[str | Path], *, target_arch: str | None = None,
    ) -> Catalog:
        """加载多个规格文件；任一文件解析失败或冲突即整体失败"""
        return cls(load_spec_file(p, target_arch=target_arch) for p in paths)

    def add(self, spec: SourceSpec) -> None:
        if spec.name in self._specs:
            raise PolicyViolation(f"源名称重复: {spec.name}")
        for pkg in spec.packages:
            owner = self._package_owner.get(pkg.name)
            if owner is not None:
                raise PolicyViolation(
                    f"包名冲突: {pkg.name} 同时由 {owner} 与 {spec.name} 产出"
                )
        self._specs[spec.name] = spec
        for pkg in spec.packages:
            self._package_owner[pkg.name] = spec.name
        logger.debug("目录加入源: %s -> %s", spec.name, spec.package_names)

    def get(self, name: str) -> SourceSpec | None:
        return self._specs.get(name)

    def owner_of(self, package: str) -> str | None:
        """返回产出该包的源名称"""
        return self._package_owner.get(package)

    def __iter__(self) -> Iterator[SourceSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

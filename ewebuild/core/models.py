"""核心数据模型

构建规格（SourceSpec / PackageSpec）及其组成部分集中定义。
加载完成后的规格对象不可变：dataclass(frozen=True) + tuple 字段。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ewebuild.core.steps import Step

# 规格文件默认名
DEFAULT_SPEC_FILE = "ewebuild.yml"


# =========================================================================
# 源条目 / 依赖
# =========================================================================


@dataclass(frozen=True)
class SourceEntry:
    """单个源条目 — origin + SHA-256 校验和

    kind:
      - url: 远程文件，先进入拉取缓存，校验通过后才交给构建步骤
      - path: 本地文件，相对规格文件所在目录
    """

    index: int
    kind: str                 # url | path
    origin: str               # 插值后的 URL 或相对路径
    sha256: str               # 小写十六进制
    rename: str = ""          # 暂存到工作目录时使用的名字
    extract: bool = True      # 归档文件是否解压

    @property
    def is_remote(self) -> bool:
        return self.kind == "url"

    @property
    def file_name(self) -> str:
        """源文件本身的文件名（不受 rename 影响）"""
        if self.is_remote:
            from ewebuild.utils.net import url_file_name
            return url_file_name(self.origin)
        return Path(self.origin).name

    def __str__(self) -> str:
        return f"source[{self.index}] {self.origin}"


@dataclass(frozen=True)
class OptionalDepend:
    """可选依赖：名称 + 人类可读的原因说明，不强制"""

    name: str
    description: str = ""

    def to_dict(self) -> dict[str, str]:
        d = {"name": self.name}
        if self.description:
            d["description"] = self.description
        return d


# =========================================================================
# 包 / 源规格
# =========================================================================


@dataclass(frozen=True)
class PackageSpec:
    """由 SourceSpec 派生的单个可安装包定义"""

    name: str
    source_name: str
    version: str
    description: str
    architecture: tuple[str, ...]
    license: tuple[str, ...]
    homepage: str = ""
    depends: tuple[str, ...] = ()
    optional_depends: tuple[OptionalDepend, ...] = ()
    provides: tuple[str, ...] = ()
    conflicts: tuple[str, ...] = ()
    pack: Step | None = None

    @property
    def artifact_stem(self) -> str:
        return f"{self.name}_{self.version}"

    @property
    def uses_shared_dir(self) -> bool:
        return self.pack is not None and self.pack.uses_shared_dir

    def manifest(self, **extra: Any) -> dict[str, Any]:
        """生成包清单（与 PackageSpec 元数据一一对应）"""
        data: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "architecture": list(self.architecture),
            "license": list(self.license),
        }
        if self.homepage:
            data["homepage"] = self.homepage
        data["depends"] = list(self.depends)
        data["optional_depends"] = [d.to_dict() for d in self.optional_depends]
        if self.provides:
            data["provides"] = list(self.provides)
        if self.conflicts:
            data["conflicts"] = list(self.conflicts)
        data["source"] = self.source_name
        data.update(extra)
        return data


@dataclass(frozen=True)
class SourceSpec:
    """一个可构建单元：元数据、源条目、生命周期步骤与派生包"""

    name: str
    version: str              # 完整版本号 [epoch:]upstream[-revision]
    upstream_version: str
    revision: str
    architecture: tuple[str, ...]
    description: str
    license: tuple[str, ...]
    spec_dir: Path
    homepage: str = ""
    depends: tuple[str, ...] = ()
    build_depends: tuple[str, ...] = ()
    optional_depends: tuple[OptionalDepend, ...] = ()
    provides: tuple[str, ...] = ()
    conflicts: tuple[str, ...] = ()
    sources: tuple[SourceEntry, ...] = ()
    prepare: Step | None = None
    build: Step | None = None
    check: Step | None = None
    packages: tuple[PackageSpec, ...] = ()
    variables: MappingProxyType = field(
        default_factory=lambda: MappingProxyType({}),
    )

    @property
    def package_names(self) -> list[str]:
        return [p.name for p in self.packages]

    def summary(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "architecture": list(self.architecture),
            "sources": [s.origin for s in self.sources],
            "packages": self.package_names,
        }


# =========================================================================
# 步骤执行上下文 / 阶段产物
# =========================================================================


@dataclass
class StepContext:
    """传给每个步骤的上下文

    src_dir 为构建输出目录（源文件暂存于此，prepare/build 在此执行），
    shared_dir 为源级共享目录，pkg_dir 仅打包步骤可用。
    """

    step: str
    source: str
    work_dir: Path
    src_dir: Path
    shared_dir: Path
    env: dict[str, str]
    pkg_dir: Path | None = None
    package: str = ""
    variables: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    cancel: Any = None        # CancelToken


@dataclass
class BuildOutcome:
    """构建阶段产物句柄"""

    src_dir: Path
    shared_dir: Path
    warnings: list[str] = field(default_factory=list)
    logs: dict[str, str] = field(default_factory=dict)    # step -> 捕获输出


@dataclass
class PackageArtifact:
    """单个包的产物：归档 + 清单"""

    package: str
    version: str
    archive_path: Path
    manifest_path: Path
    manifest: dict[str, Any] = field(default_factory=dict)
    provisional: bool = False

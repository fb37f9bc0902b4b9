"""构建规格加载器

将 YAML 文件或内存映射解析为不可变的 SourceSpec（附带 PackageSpec）。

加载过程完全无副作用：不访问网络、不读写工作目录，所有不变量在此处
一次性校验（fail fast）。错误统一以 SpecParseError(field_path) 或
PolicyViolation 抛出，field_path 形如 `source[1].sha256sum`。

模板插值在加载期完成，可用变量:
  version       upstream 版本号（不含 epoch / revision）
  revision      修订号（可能为空）
  architecture  目标架构
  以及 variables 段按声明顺序定义的局部变量（可引用前面的变量）
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Any

import yaml

from ewebuild.core.exceptions import PolicyViolation, SpecParseError, ValidationError
from ewebuild.core.models import (
    DEFAULT_SPEC_FILE,
    OptionalDepend,
    PackageSpec,
    SourceEntry,
    SourceSpec,
)
from ewebuild.core.steps import Step, make_step
from ewebuild.core.template import BUILTIN_VARIABLES, TemplateError, render
from ewebuild.core.version import PackageVersion, VersionError
from ewebuild.utils.archive import staged_name
from ewebuild.utils.net import url_file_name, validate_url_scheme
from ewebuild.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

_SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_SOURCE_KEYS = frozenset((
    "variables", "name", "version", "revision", "architecture", "description",
    "homepage", "license", "depends", "build_depends", "optional_depends",
    "provides", "conflicts", "source", "prepare", "build", "check", "pack",
    "packages",
))
_PACKAGE_KEYS = frozenset((
    "name", "description", "version", "architecture", "homepage", "depends",
    "optional_depends", "provides", "conflicts", "pack",
))
_ENTRY_KEYS = frozenset(("url", "path", "sha256sum", "rename", "extract"))


# =========================================================================
# 字段校验工具
# =========================================================================


def is_valid_name(name: str) -> bool:
    """包名 / 依赖名：字母数字与 '-'"""
    return bool(name) and all(c.isalnum() or c == "-" for c in name)


def _check_keys(data: Mapping[str, Any], allowed: frozenset[str], path: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        prefix = f"{path}." if path else ""
        raise SpecParseError(f"{prefix}{unknown[0]}", "未知字段")


def _as_mapping(value: Any, path: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise SpecParseError(path, f"应为映射，实际为 {type(value).__name__}")
    return value


def _opt_str(data: Mapping[str, Any], key: str, path: str, default: str = "") -> str:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise SpecParseError(path, f"应为字符串，实际为 {type(value).__name__}")
    return str(value)


def _req_str(data: Mapping[str, Any], key: str, path: str) -> str:
    value = _opt_str(data, key, path)
    if not value:
        raise SpecParseError(path, "必填字段缺失")
    return value


def _str_list(value: Any, path: str) -> tuple[str, ...]:
    """字符串或字符串列表 → tuple"""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)):
        raise SpecParseError(path, "应为字符串或字符串列表")
    items: list[str] = []
    for i, item in enumerate(value):
        if not isinstance(item, str) or not item:
            raise SpecParseError(f"{path}[{i}]", "应为非空字符串")
        items.append(item)
    return tuple(items)


def _name_list(value: Any, path: str) -> tuple[str, ...]:
    names = _str_list(value, path)
    for i, name in enumerate(names):
        if not is_valid_name(name):
            raise SpecParseError(f"{path}[{i}]", f"名称包含非法字符: {name!r}")
    if len(set(names)) != len(names):
        raise SpecParseError(path, "存在重复名称")
    return names


def _optional_depends(value: Any, path: str) -> tuple[OptionalDepend, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise SpecParseError(path, "应为列表")
    deps: list[OptionalDepend] = []
    for i, item in enumerate(value):
        item_path = f"{path}[{i}]"
        if isinstance(item, str):
            name, desc = item, ""
        else:
            m = _as_mapping(item, item_path)
            _check_keys(m, frozenset(("name", "description")), item_path)
            name = _req_str(m, "name", f"{item_path}.name")
            desc = _opt_str(m, "description", f"{item_path}.description")
        if not is_valid_name(name):
            raise SpecParseError(f"{item_path}.name", f"名称包含非法字符: {name!r}")
        deps.append(OptionalDepend(name=name, description=desc))
    if len({d.name for d in deps}) != len(deps):
        raise SpecParseError(path, "存在重复名称")
    return tuple(deps)


def _architecture(value: Any, path: str) -> tuple[str, ...]:
    archs = _str_list(value, path)
    if not archs:
        raise SpecParseError(path, "至少需要一个架构")
    if "all" in archs and len(set(archs)) > 1:
        raise SpecParseError(path, "`all` 不能与其他架构同时声明")
    if "any" in archs:
        return ("any",)
    return tuple(dict.fromkeys(archs))


def _version(value: str, revision: str, path: str) -> PackageVersion:
    try:
        pv = PackageVersion.parse(value)
    except VersionError as e:
        raise SpecParseError(path, str(e)) from e
    if revision:
        if pv.revision:
            raise SpecParseError(path, "version 已包含 revision，不能再单独声明 revision")
        try:
            pv = PackageVersion.parse(f"{pv}-{revision}")
        except VersionError as e:
            raise SpecParseError("revision", str(e)) from e
    return pv


def _render(text: str, variables: Mapping[str, str], path: str) -> str:
    try:
        return render(text, variables)
    except TemplateError as e:
        raise SpecParseError(path, str(e)) from e


def _step(value: Any, variables: Mapping[str, str], path: str) -> Step | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = _render(value, variables, path)
        if not value.strip():
            return None
    try:
        return make_step(value)
    except TypeError as e:
        raise SpecParseError(path, str(e)) from e


# =========================================================================
# 分段解析
# =========================================================================


def _variables(
    raw: Any, builtins: dict[str, str],
) -> dict[str, str]:
    """按声明顺序渲染局部变量，后声明的变量可引用前面的变量"""
    variables = dict(builtins)
    if raw is None:
        return variables
    m = _as_mapping(raw, "variables")
    for key, value in m.items():
        path = f"variables.{key}"
        if not isinstance(key, str) or not _IDENT_RE.match(key):
            raise SpecParseError(path, "变量名必须是标识符")
        if key in BUILTIN_VARIABLES:
            raise SpecParseError(path, "不能覆盖内置变量")
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise SpecParseError(path, "变量值应为字符串")
        variables[key] = _render(str(value), variables, path)
    return variables


def _source_entry(
    index: int, raw: Any, variables: Mapping[str, str],
) -> SourceEntry:
    path = f"source[{index}]"
    m = _as_mapping(raw, path)
    _check_keys(m, _ENTRY_KEYS, path)

    has_url, has_path = "url" in m, "path" in m
    if has_url == has_path:
        raise SpecParseError(path, "必须且只能声明 url 或 path 之一")
    kind = "url" if has_url else "path"
    origin = _render(_req_str(m, kind, f"{path}.{kind}"), variables, f"{path}.{kind}")

    checksum = _opt_str(m, "sha256sum", f"{path}.sha256sum")
    if not checksum:
        # 不存在免校验条目：本地文件同样必须固定内容
        raise PolicyViolation(f"{path}.sha256sum: 源条目缺少校验和 ({origin})")
    if not _SHA256_RE.match(checksum):
        raise SpecParseError(f"{path}.sha256sum", "应为 64 位十六进制 SHA-256")

    rename = _render(_opt_str(m, "rename", f"{path}.rename"), variables, f"{path}.rename")
    if rename and (rename in (".", "..") or "/" in rename):
        raise SpecParseError(f"{path}.rename", f"非法文件名: {rename!r}")

    extract = m.get("extract", True)
    if not isinstance(extract, bool):
        raise SpecParseError(f"{path}.extract", "应为布尔值")

    if kind == "url":
        try:
            validate_url_scheme(origin, context=path)
        except ValidationError as e:
            raise SpecParseError(f"{path}.url", str(e)) from e
        if not url_file_name(origin) and not rename:
            raise SpecParseError(f"{path}.url", "URL 中无文件名，需要声明 rename")
    else:
        p = PurePosixPath(origin)
        if p.is_absolute() or ".." in p.parts:
            raise SpecParseError(f"{path}.path", "本地路径必须位于规格目录内（相对路径，不含 ..）")

    return SourceEntry(
        index=index, kind=kind, origin=origin, sha256=checksum.lower(),
        rename=rename, extract=extract,
    )


def _sources(raw: Any, variables: Mapping[str, str]) -> tuple[SourceEntry, ...]:
    if raw is None:
        raw = []
    if not isinstance(raw, (list, tuple)):
        raise SpecParseError("source", "应为列表")
    if not raw:
        raise PolicyViolation("source: 至少需要一个带校验和的源条目")
    entries = tuple(_source_entry(i, item, variables) for i, item in enumerate(raw))

    # 暂存名冲突会导致工作目录中互相覆盖
    seen: dict[str, int] = {}
    for e in entries:
        target = staged_name(e.file_name, rename=e.rename, extract=e.extract)
        if target in seen:
            raise SpecParseError(
                f"source[{e.index}]",
                f"暂存名 {target!r} 与 source[{seen[target]}] 冲突，请使用 rename",
            )
        seen[target] = e.index
    return entries


def _package(
    index: int, raw: Any, base: dict[str, Any], variables: Mapping[str, str],
    source_name: str,
) -> PackageSpec:
    path = f"packages[{index}]"
    m = _as_mapping(raw, path)
    _check_keys(m, _PACKAGE_KEYS, path)

    name = _opt_str(m, "name", f"{path}.name")
    if not name:
        if index > 0:
            raise SpecParseError(f"{path}.name", "多包规格中第一个之后的包必须显式命名")
        name = source_name
    if not is_valid_name(name):
        raise SpecParseError(f"{path}.name", f"包名包含非法字符: {name!r}")

    version = base["version"]
    if m.get("version") is not None:
        version = str(_version(_req_str(m, "version", f"{path}.version"), "", f"{path}.version"))

    architecture = base["architecture"]
    if "architecture" in m:
        architecture = _architecture(m["architecture"], f"{path}.architecture")

    def _inherit(key: str, parse: Any) -> Any:
        return parse(m[key], f"{path}.{key}") if key in m else base[key]

    # 依赖列表与源级合并：包自身的在前，源级的追加在后，按名称去重
    depends = tuple(dict.fromkeys(_inherit("depends", _name_list) + base["depends"]))
    optional: dict[str, OptionalDepend] = {}
    for dep in _inherit("optional_depends", _optional_depends) + base["optional_depends"]:
        optional.setdefault(dep.name, dep)

    return PackageSpec(
        name=name,
        source_name=source_name,
        version=version,
        description=_render(
            _opt_str(m, "description", f"{path}.description", base["description"]),
            variables, f"{path}.description",
        ),
        architecture=architecture,
        license=base["license"],
        homepage=_render(
            _opt_str(m, "homepage", f"{path}.homepage", base["homepage"]),
            variables, f"{path}.homepage",
        ),
        depends=depends,
        optional_depends=tuple(optional.values()),
        provides=_inherit("provides", _name_list),
        conflicts=_inherit("conflicts", _name_list),
        pack=_step(m.get("pack"), variables, f"{path}.pack"),
    )


# =========================================================================
# 入口
# =========================================================================


def load_spec(
    data: Mapping[str, Any], *,
    spec_dir: str | Path = ".",
    target_arch: str | None = None,
) -> SourceSpec:
    """解析构建规格

    参数:
        data: 规格映射（YAML 解析结果或以 Python 构造的字典，步骤可为可调用对象）
        spec_dir: 规格所在目录，本地源路径相对于此
        target_arch: 目标架构；提供时校验规格是否支持，并作为 architecture 模板变量

    异常:
        SpecParseError: 字段缺失、类型错误、格式错误
        PolicyViolation: 缺少校验和、包名重复、架构不支持
    """
    m = _as_mapping(data, "")
    _check_keys(m, _SOURCE_KEYS, "")

    name = _req_str(m, "name", "name")
    if not is_valid_name(name):
        raise SpecParseError("name", f"名称包含非法字符: {name!r}")
    revision = _opt_str(m, "revision", "revision")
    pv = _version(_req_str(m, "version", "version"), revision, "version")

    architecture = _architecture(m.get("architecture", "any"), "architecture")
    if target_arch and architecture[0] not in ("any", "all") and target_arch not in architecture:
        raise PolicyViolation(
            f"{name} 不支持目标架构 {target_arch} (声明: {', '.join(architecture)})"
        )
    if target_arch:
        arch_var = target_arch
    else:
        arch_var = architecture[0]

    variables = _variables(m.get("variables"), {
        "version": pv.upstream,
        "revision": pv.revision,
        "architecture": arch_var,
    })

    licenses = _str_list(m.get("license"), "license")
    if not licenses:
        raise SpecParseError("license", "至少需要一个许可证标识")

    base: dict[str, Any] = {
        "version": str(pv),
        "architecture": architecture,
        "description": _render(_opt_str(m, "description", "description"), variables, "description"),
        "homepage": _render(_opt_str(m, "homepage", "homepage"), variables, "homepage"),
        "license": licenses,
        "depends": _name_list(m.get("depends"), "depends"),
        "optional_depends": _optional_depends(m.get("optional_depends"), "optional_depends"),
        "provides": _name_list(m.get("provides"), "provides"),
        "conflicts": _name_list(m.get("conflicts"), "conflicts"),
    }

    sources = _sources(m.get("source"), variables)

    if "pack" in m and "packages" in m:
        raise SpecParseError("pack", "字段 pack 与 packages 冲突")
    raw_packages = m.get("packages")
    if raw_packages is None:
        raw_packages = [{"pack": m.get("pack")}]
    if not isinstance(raw_packages, (list, tuple)) or not raw_packages:
        raise SpecParseError("packages", "应为非空列表")
    packages = tuple(
        _package(i, raw, base, variables, name)
        for i, raw in enumerate(raw_packages)
    )
    seen: set[str] = set()
    for pkg in packages:
        if pkg.name in seen:
            raise PolicyViolation(f"{name}: 包名重复 {pkg.name}")
        seen.add(pkg.name)

    spec = SourceSpec(
        name=name,
        version=str(pv),
        upstream_version=pv.upstream,
        revision=pv.revision,
        architecture=architecture,
        description=base["description"],
        license=licenses,
        spec_dir=Path(spec_dir).resolve(),
        homepage=base["homepage"],
        depends=base["depends"],
        build_depends=_name_list(m.get("build_depends"), "build_depends"),
        optional_depends=base["optional_depends"],
        provides=base["provides"],
        conflicts=base["conflicts"],
        sources=sources,
        prepare=_step(m.get("prepare"), variables, "prepare"),
        build=_step(m.get("build"), variables, "build"),
        check=_step(m.get("check"), variables, "check"),
        packages=packages,
        variables=MappingProxyType(dict(variables)),
    )
    logger.debug("规格已加载: %s %s (%d 个包)", spec.name, spec.version, len(packages))
    return spec


def load_spec_file(path: str | Path, *, target_arch: str | None = None) -> SourceSpec:
    """从 YAML 文件加载构建规格，本地源相对于文件所在目录"""
    p = Path(path)
    if p.is_dir():
        p = p / DEFAULT_SPEC_FILE
    if not p.is_file():
        raise SpecParseError("", f"规格文件不存在: {p}")
    try:
        data = load_yaml(p)
    except (yaml.YAMLError, ValueError) as e:
        raise SpecParseError("", f"无法解析 {p}: {e}") from e
    return load_spec(data, spec_dir=p.parent, target_arch=target_arch)

"""集中配置管理

提供统一的配置入口，支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
import platform
from dataclasses import asdict, dataclass, field, fields

from ewebuild.core.exceptions import ConfigError
from ewebuild.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

CHECK_POLICIES = ("strict", "permissive")

DEFAULT_ENV_ALLOWLIST = ["PATH", "HOME", "LANG", "LC_ALL", "TERM", "TMPDIR", "USER"]


@dataclass
class Config:
    """框架全局配置"""

    # 目录
    cache_dir: str = "data/cache"        # 远程源缓存
    work_dir: str = "data/work"          # 每次流水线的工作根目录
    output_dir: str = "data/packages"    # 包产物输出目录

    # 并发
    max_workers: int = 4                 # 目录级并行流水线数
    fetch_workers: int = 5               # 单个源的并行拉取数

    # 执行
    check_policy: str = "strict"         # strict: check 失败中止打包; permissive: 仅记录警告
    keep_work_dirs: bool = False         # 成功后保留工作目录
    step_timeout: int = 3600             # 单个步骤超时（秒）
    download_timeout: int = 60           # 单次网络请求超时（秒）
    env_allowlist: list[str] = field(default_factory=lambda: list(DEFAULT_ENV_ALLOWLIST))
    build_dep_paths: dict[str, str] = field(default_factory=dict)  # 构建依赖名 -> 安装前缀
    target_arch: str = field(default_factory=platform.machine)

    # 产物
    compress_level: int = 6

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.check_policy not in CHECK_POLICIES:
            raise ConfigError(
                f"check_policy 无效: {self.check_policy}，可选: {', '.join(CHECK_POLICIES)}"
            )
        if self.max_workers < 1 or self.fetch_workers < 1:
            raise ConfigError("max_workers / fetch_workers 必须 >= 1")
        if not 0 <= self.compress_level <= 9:
            raise ConfigError(f"compress_level 必须在 0-9 之间: {self.compress_level}")

    @classmethod
    def from_file(cls, path: str = "configs/ewebuild.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件 {path} 无效: {e}") from e
        cfg.extra = extra
        logger.info("配置已加载: %s", path)
        return cfg

    @property
    def strict_check(self) -> bool:
        return self.check_policy == "strict"

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def set_config(cfg: Config) -> None:
    """替换全局配置（CLI 覆盖参数或测试使用）"""
    global _current  # noqa: PLW0603
    _current = cfg

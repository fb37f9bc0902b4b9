"""服务容器 — 统一依赖注入

所有服务通过容器获取，同一容器内的实例共享状态（拉取缓存的键锁等）。
CLI 应通过 get_container() 获取服务，而非直接 import 构造。

依赖关系图（→ 表示依赖）:
  resolver → cache, downloader
  pipeline → resolver, executor, emitter
  runner   → pipeline

用法:
    container = ServiceContainer(config=cfg)
    report = container.runner.run(catalog)

    # 测试中注入假下载器
    container = ServiceContainer(config=cfg, downloader=FakeDownloader())
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ewebuild.core.config import Config
    from ewebuild.services.build.executor import BuildExecutor
    from ewebuild.services.orchestrator.orchestrator import CatalogRunner, Pipeline
    from ewebuild.services.package.emitter import PackageEmitter
    from ewebuild.services.source.cache import FetchCache
    from ewebuild.services.source.fetcher import Downloader
    from ewebuild.services.source.resolver import SourceResolver
    from ewebuild.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器 — 每个实例持有一组共享的服务"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        downloader: Downloader | None = None,
        command_executor: CommandExecutor | None = None,
    ) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from ewebuild.core.config import get_config
            config = get_config()
        self._config = config
        self._downloader = downloader
        self._command_executor = command_executor

    @property
    def config(self) -> Config:
        return self._config

    @property
    def cache(self) -> FetchCache:
        if "cache" not in self._instances:
            from ewebuild.services.source.cache import FetchCache
            self._instances["cache"] = FetchCache(self._config.cache_dir)
        return self._instances["cache"]  # type: ignore[return-value]

    @property
    def resolver(self) -> SourceResolver:
        if "resolver" not in self._instances:
            from ewebuild.services.source.resolver import SourceResolver
            self._instances["resolver"] = SourceResolver(
                self.cache, self._downloader,
                max_workers=self._config.fetch_workers,
                timeout=self._config.download_timeout,
            )
        return self._instances["resolver"]  # type: ignore[return-value]

    @property
    def executor(self) -> BuildExecutor:
        if "executor" not in self._instances:
            from ewebuild.services.build.executor import BuildExecutor
            self._instances["executor"] = BuildExecutor(
                env_allowlist=self._config.env_allowlist,
                build_dep_paths=self._config.build_dep_paths,
                check_policy=self._config.check_policy,
                step_timeout=self._config.step_timeout or None,
                executor=self._command_executor,
            )
        return self._instances["executor"]  # type: ignore[return-value]

    @property
    def emitter(self) -> PackageEmitter:
        if "emitter" not in self._instances:
            from ewebuild.services.package.emitter import PackageEmitter
            self._instances["emitter"] = PackageEmitter(
                self._config.output_dir,
                compress_level=self._config.compress_level,
                step_timeout=self._config.step_timeout or None,
                max_workers=self._config.max_workers,
                executor=self._command_executor,
            )
        return self._instances["emitter"]  # type: ignore[return-value]

    @property
    def pipeline(self) -> Pipeline:
        if "pipeline" not in self._instances:
            from ewebuild.services.orchestrator.orchestrator import Pipeline
            self._instances["pipeline"] = Pipeline(
                self.resolver, self.executor, self.emitter,
                work_root=self._config.work_dir,
                keep_work_dirs=self._config.keep_work_dirs,
            )
        return self._instances["pipeline"]  # type: ignore[return-value]

    @property
    def runner(self) -> CatalogRunner:
        if "runner" not in self._instances:
            from ewebuild.services.orchestrator.orchestrator import CatalogRunner
            self._instances["runner"] = CatalogRunner(
                self.pipeline, max_workers=self._config.max_workers,
            )
        return self._instances["runner"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（CLI 覆盖配置后或测试使用）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None

"""ewebuild 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import os
from dataclasses import replace
from typing import Any

import click

from ewebuild import __version__
from ewebuild.core.config import Config, set_config
from ewebuild.core.exceptions import EweBuildError
from ewebuild.services.container import ServiceContainer, get_container, reset_container
from ewebuild.utils.logger import setup_logging

DEFAULT_CONFIG = "configs/ewebuild.yml"


def _load_config(path: str, **overrides: Any) -> Config:
    """加载配置文件并应用命令行覆盖（值为 None 的覆盖项忽略）"""
    try:
        cfg = Config.from_file(path)
        changes = {k: v for k, v in overrides.items() if v is not None}
        if changes:
            cfg = replace(cfg, **changes)
    except EweBuildError as e:
        raise click.ClickException(str(e)) from e
    set_config(cfg)
    reset_container()
    return cfg


def _svc() -> ServiceContainer:
    """获取全局服务容器的快捷方式"""
    return get_container()


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """ewebuild - 声明式构建规格解释与多包构建编排"""
    setup_logging(
        level=os.getenv("EWEBUILD_LOG_LEVEL", "INFO"),
        json_output=os.getenv("EWEBUILD_LOG_JSON", "") == "1",
    )


# 注册各领域子命令
from ewebuild.cli.cmd_build import register as _reg_build  # noqa: E402
from ewebuild.cli.cmd_cache import register as _reg_cache  # noqa: E402
from ewebuild.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_build(main)
_reg_cache(main)
_reg_misc(main)

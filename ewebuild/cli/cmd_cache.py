"""CLI — 拉取缓存管理"""

from __future__ import annotations

import click

from ewebuild.cli import DEFAULT_CONFIG, _load_config, _svc


def register(group: click.Group) -> None:
    group.add_command(cache_group)


@click.group(name="cache")
def cache_group() -> None:
    """远程源拉取缓存"""


@cache_group.command(name="list")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="配置文件路径")
def cache_list(config: str) -> None:
    """列出缓存中的文件"""
    _load_config(config)
    entries = _svc().cache.list_entries()
    if not entries:
        click.echo("缓存为空。")
        return
    for e in entries:
        click.echo(f"  {e['file']:40s} {str(e['sha256'])[:16]}  {e['size']:>12}")


@cache_group.command(name="clean")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="配置文件路径")
def cache_clean(config: str) -> None:
    """清空缓存"""
    _load_config(config)
    count = _svc().cache.clean()
    click.echo(f"已删除 {count} 个缓存文件")

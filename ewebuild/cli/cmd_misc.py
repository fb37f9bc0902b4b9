"""CLI — 杂项命令（版本比较）"""

from __future__ import annotations

import click

from ewebuild.core.version import PackageVersion, VersionError


def register(group: click.Group) -> None:
    group.add_command(vercmp)


@click.command()
@click.argument("a")
@click.argument("b")
def vercmp(a: str, b: str) -> None:
    """比较两个包版本号，输出 <、= 或 >"""
    try:
        result = PackageVersion.parse(a).compare(PackageVersion.parse(b))
    except VersionError as e:
        raise click.ClickException(str(e)) from e
    click.echo({-1: "<", 0: "=", 1: ">"}[result])

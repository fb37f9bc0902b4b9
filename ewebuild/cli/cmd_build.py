"""CLI — 构建相关命令（build, validate, show）"""

from __future__ import annotations

import click

from ewebuild.cli import DEFAULT_CONFIG, _load_config, _svc
from ewebuild.core.catalog import Catalog
from ewebuild.core.config import CHECK_POLICIES
from ewebuild.core.exceptions import EweBuildError, StepError
from ewebuild.core.spec_loader import load_spec_file
from ewebuild.utils.yaml_io import dump_yaml

# 失败时回显的步骤输出尾部行数
OUTPUT_TAIL_LINES = 20


def register(group: click.Group) -> None:
    group.add_command(build)
    group.add_command(validate)
    group.add_command(show)


def _load_catalog(specs: tuple[str, ...], target_arch: str) -> Catalog:
    try:
        return Catalog.from_files(specs, target_arch=target_arch)
    except EweBuildError as e:
        raise click.ClickException(str(e)) from e


# ---- 构建 ----

@click.command()
@click.argument("specs", nargs=-1, required=True)
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="配置文件路径")
@click.option("--output", "-o", default=None, help="包产物输出目录")
@click.option("--jobs", "-j", type=int, default=None, help="并行构建的源数量")
@click.option("--check-policy", type=click.Choice(CHECK_POLICIES), default=None, help="check 步骤失败策略")
@click.option("--keep-work", is_flag=True, help="成功后保留工作目录")
def build(
    specs: tuple[str, ...], config: str, output: str | None,
    jobs: int | None, check_policy: str | None, keep_work: bool,
) -> None:
    """构建一个或多个规格文件（或包含 ewebuild.yml 的目录）"""
    cfg = _load_config(
        config, output_dir=output, max_workers=jobs,
        check_policy=check_policy, keep_work_dirs=keep_work or None,
    )
    catalog = _load_catalog(specs, cfg.target_arch)
    report = _svc().runner.run(catalog)

    for name, result in report.results.items():
        if result.success:
            pkgs = ", ".join(a.archive_path.name for a in result.packages) or "(无包)"
            click.echo(f"  [OK]   {name} {result.version} -> {pkgs}")
            for w in result.warnings:
                click.echo(f"         警告: {w}")
            continue
        stage = result.failed_stage.value if result.failed_stage else "?"
        click.echo(f"  [FAIL] {name} {result.version} @ {stage}: {result.error}")
        if isinstance(result.error, StepError) and result.error.output:
            tail = result.error.output.rstrip().splitlines()[-OUTPUT_TAIL_LINES:]
            for line in tail:
                click.echo(f"         | {line}")
        for a in result.packages:
            click.echo(f"         provisional: {a.archive_path.name}")
        if result.work_dir is not None:
            click.echo(f"         工作目录: {result.work_dir}")

    click.echo(f"\n成功 {len(report.succeeded)} / 失败 {len(report.failed)}")
    if not report.success:
        click.get_current_context().exit(1)


# ---- 校验 ----

@click.command()
@click.argument("specs", nargs=-1, required=True)
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="配置文件路径")
def validate(specs: tuple[str, ...], config: str) -> None:
    """仅解析并校验规格（不拉取、不构建）"""
    cfg = _load_config(config)
    catalog = _load_catalog(specs, cfg.target_arch)
    for spec in catalog:
        click.echo(f"  {spec.name} {spec.version} -> {', '.join(spec.package_names)}")
    click.echo(f"规格有效: {len(catalog)} 个源")


# ---- 展示 ----

@click.command()
@click.argument("spec_path")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="配置文件路径")
def show(spec_path: str, config: str) -> None:
    """以 YAML 输出规格解析后的包清单"""
    cfg = _load_config(config)
    try:
        spec = load_spec_file(spec_path, target_arch=cfg.target_arch)
    except EweBuildError as e:
        raise click.ClickException(str(e)) from e
    click.echo(dump_yaml({
        "source": spec.summary(),
        "packages": [p.manifest() for p in spec.packages],
    }), nl=False)

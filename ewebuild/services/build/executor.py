"""构建执行器

职责:
- 源文件暂存（归档解压 / 普通文件复制）到构建输出目录
- 构建步骤环境装配（白名单环境变量 + 构建依赖路径）
- 顺序执行 prepare → build，任一失败即中止该源
- check 步骤按策略执行: strict 失败中止，permissive 仅记录警告
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from pathlib import Path
from typing import TYPE_CHECKING

from ewebuild.core.exceptions import BuildStepError
from ewebuild.core.models import BuildOutcome, SourceEntry, SourceSpec, StepContext
from ewebuild.core.steps import SHARED_DIR_VAR, StepOutcome
from ewebuild.utils.archive import ArchiveError, archive_kind, extract_archive, staged_name

if TYPE_CHECKING:
    from ewebuild.core.steps import Step
    from ewebuild.utils.cancel import CancelToken
    from ewebuild.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)

SRC_DIR_NAME = "src"
SHARED_DIR_NAME = "shared"


class BuildExecutor:
    """构建执行器"""

    def __init__(
        self,
        *,
        env_allowlist: list[str] | None = None,
        build_dep_paths: dict[str, str] | None = None,
        check_policy: str = "strict",
        step_timeout: float | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.env_allowlist = list(env_allowlist or [])
        self.build_dep_paths = dict(build_dep_paths or {})
        self.check_policy = check_policy
        self.step_timeout = step_timeout
        self.executor = executor

    # ---- 环境 ----

    def step_env(
        self, spec: SourceSpec, src_dir: Path, shared_dir: Path,
    ) -> dict[str, str]:
        """组装步骤环境：白名单变量 + 固定注入变量，不继承其余宿主环境"""
        env = {k: os.environ[k] for k in self.env_allowlist if k in os.environ}
        env.setdefault("PATH", os.defpath)

        dep_bins = [
            str(Path(self.build_dep_paths[dep]) / "bin")
            for dep in spec.build_depends if dep in self.build_dep_paths
        ]
        if dep_bins:
            env["PATH"] = os.pathsep.join([*dep_bins, env["PATH"]])

        env.update({
            "SRCDIR": str(src_dir),
            SHARED_DIR_VAR: str(shared_dir),
            "PKGNAME": spec.name,
            "VERSION": spec.version,
            "ARCH": spec.variables.get("architecture", ""),
        })
        return env

    # ---- 暂存 ----

    def stage_sources(
        self, spec: SourceSpec, resolved: dict[SourceEntry, Path], src_dir: Path,
    ) -> None:
        """按声明顺序将已校验的源文件放入 src_dir"""
        src_dir.mkdir(parents=True, exist_ok=True)
        for entry in spec.sources:
            path = resolved[entry]
            file_name = entry.file_name or entry.rename
            target = src_dir / staged_name(file_name, rename=entry.rename, extract=entry.extract)
            if entry.extract and archive_kind(file_name) is not None:
                logger.info("  解压: %s -> %s/", file_name, target.name)
                try:
                    extract_archive(path, target)
                except ArchiveError as e:
                    raise BuildStepError("prepare", None, f"源文件暂存失败: {e}") from e
            else:
                logger.info("  复制: %s -> %s", file_name, target.name)
                shutil.copy2(path, target)

    # ---- 步骤 ----

    def _run_step(
        self, spec: SourceSpec, step_name: str, step: Step,
        outcome: BuildOutcome, cancel: CancelToken | None,
    ) -> StepOutcome:
        ctx = StepContext(
            step=step_name, source=spec.name,
            work_dir=outcome.src_dir, src_dir=outcome.src_dir,
            shared_dir=outcome.shared_dir,
            env=self.step_env(spec, outcome.src_dir, outcome.shared_dir),
            variables=dict(spec.variables),
            timeout=self.step_timeout, cancel=cancel,
        )
        start = time.monotonic()
        result = step.run(ctx, self.executor)
        outcome.logs[step_name] = result.output
        duration = time.monotonic() - start
        extra = {"source": spec.name, "stage": step_name}
        if result.success:
            logger.info("  %s 完成 (%.1fs)", step_name, duration, extra=extra)
        else:
            logger.error(
                "  %s 失败 (exit=%d, %.1fs)", step_name, result.returncode, duration,
                extra=extra,
            )
        return result

    def build(
        self, spec: SourceSpec, resolved: dict[SourceEntry, Path], work_dir: Path,
        cancel: CancelToken | None = None,
    ) -> BuildOutcome:
        """暂存源文件并顺序执行 prepare / build"""
        outcome = BuildOutcome(
            src_dir=work_dir / SRC_DIR_NAME, shared_dir=work_dir / SHARED_DIR_NAME,
        )
        outcome.shared_dir.mkdir(parents=True, exist_ok=True)
        self.stage_sources(spec, resolved, outcome.src_dir)

        for step_name, step in (("prepare", spec.prepare), ("build", spec.build)):
            if step is None:
                continue
            result = self._run_step(spec, step_name, step, outcome, cancel)
            if not result.success:
                raise BuildStepError(step_name, result.returncode, result.output)
        return outcome

    def check(
        self, spec: SourceSpec, outcome: BuildOutcome,
        cancel: CancelToken | None = None,
    ) -> BuildOutcome:
        """执行 check 步骤；permissive 策略下失败只追加警告"""
        if spec.check is None:
            return outcome
        result = self._run_step(spec, "check", spec.check, outcome, cancel)
        if result.success:
            return outcome
        if self.check_policy == "strict":
            raise BuildStepError("check", result.returncode, result.output)
        warning = f"check 步骤失败（permissive 策略，继续打包）: {spec.name}"
        logger.warning(warning, extra={"source": spec.name, "stage": "check"})
        outcome.warnings.append(warning)
        return outcome

    def execute(
        self, spec: SourceSpec, resolved: dict[SourceEntry, Path], work_dir: Path,
        cancel: CancelToken | None = None,
    ) -> BuildOutcome:
        """build + check，返回构建输出目录句柄"""
        outcome = self.build(spec, resolved, work_dir, cancel)
        return self.check(spec, outcome, cancel)


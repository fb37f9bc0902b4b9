"""流水线步骤实现

步骤顺序：
1. resolve - 拉取并校验全部源条目
2. build - 暂存源文件，执行 prepare / build
3. check - 执行 check（按策略）
4. package - 按声明顺序产出包
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ewebuild.core.models import SourceSpec
    from ewebuild.services.build.executor import BuildExecutor
    from ewebuild.services.orchestrator.models import PipelineResult, RunContext
    from ewebuild.services.package.emitter import PackageEmitter
    from ewebuild.services.source.resolver import SourceResolver

logger = logging.getLogger(__name__)


class PipelineSteps:
    """流水线步骤集合"""

    def __init__(
        self, resolver: SourceResolver, executor: BuildExecutor, emitter: PackageEmitter,
    ) -> None:
        self.resolver = resolver
        self.executor = executor
        self.emitter = emitter

    def resolve(self, spec: SourceSpec, ctx: RunContext, result: PipelineResult) -> None:
        """步骤1: 拉取并校验源条目"""
        ctx.resolved = self.resolver.resolve(spec, ctx.cancel)
        result.steps.append({
            "step": "resolve", "status": "done", "sources": len(ctx.resolved),
        })
        logger.info("[Step 1] 源已校验: %s (%d 个)", spec.name, len(ctx.resolved))

    def build(self, spec: SourceSpec, ctx: RunContext, result: PipelineResult) -> None:
        """步骤2: 暂存源文件并执行 prepare / build"""
        ctx.outcome = self.executor.build(spec, ctx.resolved, ctx.work_dir, ctx.cancel)
        result.steps.append({
            "step": "build", "status": "done",
            "ran": [s for s in ("prepare", "build") if s in ctx.outcome.logs],
        })
        logger.info("[Step 2] 构建完成: %s", spec.name)

    def check(self, spec: SourceSpec, ctx: RunContext, result: PipelineResult) -> None:
        """步骤3: 执行 check"""
        outcome = ctx.build_outcome()
        if spec.check is None:
            result.steps.append({"step": "check", "status": "skipped"})
            return
        self.executor.check(spec, outcome, ctx.cancel)
        result.warnings.extend(outcome.warnings)
        status = "warning" if outcome.warnings else "done"
        result.steps.append({"step": "check", "status": status})
        logger.info("[Step 3] 检查完成: %s (%s)", spec.name, status)

    def package(self, spec: SourceSpec, ctx: RunContext, result: PipelineResult) -> None:
        """步骤4: 产出全部包；已产出的包随即记入结果"""
        outcome = ctx.build_outcome()
        base_env = self.executor.step_env(spec, outcome.src_dir, outcome.shared_dir)
        for artifact in self.emitter.emit_all(
            spec, outcome,
            base_env=base_env, staging_root=ctx.staging_root, cancel=ctx.cancel,
        ):
            result.packages.append(artifact)
        result.steps.append({
            "step": "package", "status": "done",
            "packages": [a.package for a in result.packages],
        })
        logger.info("[Step 4] 打包完成: %s -> %s", spec.name, [a.package for a in result.packages])

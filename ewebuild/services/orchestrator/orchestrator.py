"""流水线编排器

职责：
- Pipeline: 单个源的直线状态机 Parsed → Resolving → Building → Checking → Packaging → Done，
  任一阶段失败进入 Failed{stage, cause}
- 每次运行独占一个工作目录：取消时删除；成功后删除（keep_work_dirs 时保留）；失败时保留用于诊断
- 运行失败时，已产出的包标记为 provisional
- CatalogRunner: 在有界线程池中并发运行多个源，互不影响
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from ewebuild.core.exceptions import EweBuildError, ExecutionError, PipelineCancelled
from ewebuild.services.orchestrator.models import (
    CatalogReport,
    PipelineResult,
    RunContext,
    Stage,
)
from ewebuild.services.orchestrator.steps import PipelineSteps
from ewebuild.utils.cancel import CancelToken

if TYPE_CHECKING:
    from ewebuild.core.models import SourceSpec
    from ewebuild.services.build.executor import BuildExecutor
    from ewebuild.services.package.emitter import PackageEmitter
    from ewebuild.services.source.resolver import SourceResolver

logger = logging.getLogger(__name__)


class Pipeline:
    """单个源的流水线"""

    def __init__(
        self,
        resolver: SourceResolver,
        executor: BuildExecutor,
        emitter: PackageEmitter,
        *,
        work_root: str | Path,
        keep_work_dirs: bool = False,
    ) -> None:
        self.steps = PipelineSteps(resolver, executor, emitter)
        self.emitter = emitter
        self.work_root = Path(work_root)
        self.keep_work_dirs = keep_work_dirs

    def run(self, spec: SourceSpec, cancel: CancelToken | None = None) -> PipelineResult:
        """执行流水线；失败不抛异常，记录在返回结果中

        任何异常都只终止本源的流水线，不会传播到 CatalogRunner。
        """
        token = cancel.child() if cancel is not None else CancelToken()
        result = PipelineResult(source=spec.name, version=spec.version)

        stages = (
            (Stage.RESOLVING, self.steps.resolve),
            (Stage.BUILDING, self.steps.build),
            (Stage.CHECKING, self.steps.check),
            (Stage.PACKAGING, self.steps.package),
        )
        try:
            # 工作目录创建失败时停留在 PARSED 阶段
            self.work_root.mkdir(parents=True, exist_ok=True)
            work_dir = Path(tempfile.mkdtemp(prefix=f"{spec.name}-", dir=str(self.work_root)))
            result.work_dir = work_dir
            ctx = RunContext(work_dir=work_dir, cancel=token)
            logger.info("开始构建: %s %s (工作目录: %s)", spec.name, spec.version, work_dir)

            for stage, step in stages:
                token.raise_if_cancelled(spec.name)
                result.advance(stage)
                step(spec, ctx, result)
            result.advance(Stage.DONE)
        except PipelineCancelled as e:
            result.cancelled = True
            result.fail(e)
        except EweBuildError as e:
            result.fail(e)
        except Exception as e:  # noqa: BLE001
            logger.exception("流水线异常终止: %s", spec.name)
            result.fail(ExecutionError(f"{type(e).__name__}: {e}"))

        self._finish(result)
        return result

    def _finish(self, result: PipelineResult) -> None:
        if not result.success:
            for artifact in result.packages:
                try:
                    self.emitter.mark_provisional(artifact)
                except OSError as e:
                    result.warnings.append(f"无法标记 provisional: {artifact.package} ({e})")
                    logger.error("标记 provisional 失败: %s: %s", artifact.package, e)

        work_dir = result.work_dir
        if work_dir is None:
            return
        if result.cancelled:
            shutil.rmtree(work_dir, ignore_errors=True)
            result.work_dir = None
            logger.info("已取消，工作目录已删除: %s", work_dir)
        elif result.success:
            logger.info("构建成功: %s (%d 个包)", result.source, len(result.packages))
            if not self.keep_work_dirs:
                shutil.rmtree(work_dir, ignore_errors=True)
                result.work_dir = None
        else:
            logger.warning("工作目录保留用于诊断: %s", work_dir)


class CatalogRunner:
    """目录级并发执行器"""

    def __init__(self, pipeline: Pipeline, *, max_workers: int = 4) -> None:
        self.pipeline = pipeline
        self.max_workers = max(1, max_workers)

    def run(
        self, specs: Iterable[SourceSpec], cancel: CancelToken | None = None,
    ) -> CatalogReport:
        """并发运行全部源；一个源失败不影响其他源"""
        specs = list(specs)
        report = CatalogReport()
        if not specs:
            return report
        token = cancel or CancelToken()
        workers = min(self.max_workers, len(specs))
        logger.info("目录构建: %d 个源, 并发 %d", len(specs), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pipeline") as pool:
            futures = [pool.submit(self.pipeline.run, spec, token) for spec in specs]
            for spec, future in zip(specs, futures):
                report.results[spec.name] = future.result()
        logger.info(
            "目录构建结束: 成功 %d, 失败 %d",
            len(report.succeeded), len(report.failed),
        )
        return report

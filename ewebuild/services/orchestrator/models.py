"""编排器数据模型

数据类：
- Stage: 单个源流水线的阶段
- PipelineResult: 单个源的执行结果（阶段历史、失败原因、产物）
- RunContext: 单次运行的可变上下文（工作目录、取消令牌、阶段产物）
- CatalogReport: 目录级执行汇总
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ewebuild.core.exceptions import EweBuildError, ExecutionError
from ewebuild.core.models import BuildOutcome, PackageArtifact, SourceEntry
from ewebuild.utils.cancel import CancelToken

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """流水线阶段（直线推进，FAILED 为可从任一非终态进入的终态）"""

    PARSED = "parsed"
    RESOLVING = "resolving"
    BUILDING = "building"
    CHECKING = "checking"
    PACKAGING = "packaging"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (Stage.DONE, Stage.FAILED)


# 合法的前进顺序
STAGE_ORDER = (
    Stage.PARSED, Stage.RESOLVING, Stage.BUILDING,
    Stage.CHECKING, Stage.PACKAGING, Stage.DONE,
)


@dataclass
class RunContext:
    """单次运行上下文，工作目录对本次运行唯一"""

    work_dir: Path
    cancel: CancelToken = field(default_factory=CancelToken)
    resolved: dict[SourceEntry, Path] = field(default_factory=dict)
    outcome: BuildOutcome | None = None

    @property
    def staging_root(self) -> Path:
        return self.work_dir / "pkg"

    def build_outcome(self) -> BuildOutcome:
        """构建阶段产物；build 阶段未完成时调用属于编排错误"""
        if self.outcome is None:
            raise ExecutionError("构建产物缺失: build 阶段尚未完成")
        return self.outcome


@dataclass
class PipelineResult:
    """单个源的流水线结果"""

    source: str
    version: str = ""
    stage: Stage = Stage.PARSED
    history: list[Stage] = field(default_factory=lambda: [Stage.PARSED])
    failed_stage: Stage | None = None
    error: EweBuildError | None = None
    packages: list[PackageArtifact] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    steps: list[dict[str, Any]] = field(default_factory=list)
    work_dir: Path | None = None
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.stage == Stage.DONE

    def advance(self, stage: Stage) -> None:
        """推进到下一阶段；只允许按 STAGE_ORDER 前进一步"""
        if self.stage.terminal:
            raise RuntimeError(f"{self.source} 已处于终态 {self.stage.value}")
        expected = STAGE_ORDER[STAGE_ORDER.index(self.stage) + 1]
        if stage != expected:
            raise RuntimeError(
                f"{self.source} 阶段跳转非法: {self.stage.value} -> {stage.value}"
            )
        self.stage = stage
        self.history.append(stage)
        logger.info("[%s] -> %s", self.source, stage.value, extra={"source": self.source, "stage": stage.value})

    def fail(self, error: EweBuildError) -> None:
        """记录失败阶段与原因，进入 FAILED 终态"""
        if self.stage.terminal:
            raise RuntimeError(f"{self.source} 已处于终态 {self.stage.value}")
        self.failed_stage = self.stage
        self.error = error
        self.stage = Stage.FAILED
        self.history.append(Stage.FAILED)
        logger.error(
            "[%s] 失败于 %s: %s", self.source, self.failed_stage.value, error,
            extra={"source": self.source, "stage": self.failed_stage.value},
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "source": self.source,
            "version": self.version,
            "stage": self.stage.value,
            "history": [s.value for s in self.history],
            "packages": [
                {
                    "name": a.package, "version": a.version,
                    "archive": str(a.archive_path),
                    "provisional": a.provisional,
                }
                for a in self.packages
            ],
        }
        if self.warnings:
            d["warnings"] = list(self.warnings)
        if self.failed_stage is not None:
            d["failed_stage"] = self.failed_stage.value
        if self.error is not None:
            d["error"] = self.error.to_dict()
        if self.work_dir is not None:
            d["work_dir"] = str(self.work_dir)
        return d


@dataclass
class CatalogReport:
    """目录级执行汇总"""

    results: dict[str, PipelineResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[str]:
        return [name for name, r in self.results.items() if r.success]

    @property
    def failed(self) -> list[str]:
        return [name for name, r in self.results.items() if not r.success]

    @property
    def success(self) -> bool:
        return not self.failed

    def detail(self, name: str) -> dict[str, Any]:
        """单个源的完整记录；未知源抛 KeyError"""
        return self.results[name].to_dict()

    def summary(self) -> dict[str, Any]:
        return {
            "total": len(self.results),
            "succeeded": self.succeeded,
            "failed": {
                name: {
                    "stage": r.failed_stage.value if r.failed_stage else "",
                    "error": str(r.error) if r.error else "",
                }
                for name, r in self.results.items() if not r.success
            },
        }

"""流水线编排模块

- models.py: 阶段、运行上下文与结果模型
- steps.py: 四个流水线步骤
- orchestrator.py: 单源流水线与目录级并发执行
"""

from ewebuild.services.orchestrator.models import CatalogReport, PipelineResult, RunContext, Stage
from ewebuild.services.orchestrator.orchestrator import CatalogRunner, Pipeline
from ewebuild.services.orchestrator.steps import PipelineSteps

__all__ = [
    "CatalogReport",
    "CatalogRunner",
    "Pipeline",
    "PipelineResult",
    "PipelineSteps",
    "RunContext",
    "Stage",
]

"""步骤抽象

构建 / 打包步骤统一为一个能力：给定 StepContext，执行并返回成功与否。
两种实现:
  - ShellStep: 规格中声明的 shell 脚本，以 `sh -c "set -e\\n<script>"` 执行
  - CallbackStep: 以 Python 可调用对象声明的原生步骤；返回字符串时按 shell 脚本执行
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from ewebuild.core.exceptions import PipelineCancelled
from ewebuild.utils.shell import get_executor

if TYPE_CHECKING:
    from ewebuild.core.models import StepContext
    from ewebuild.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)

# 共享目录在步骤环境中的变量名；脚本中出现即视为读写共享目录
SHARED_DIR_VAR = "SHARED_DIR"


@dataclass
class StepOutcome:
    """步骤执行结果"""

    returncode: int
    output: str = ""
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class Step(ABC):
    """步骤基类"""

    kind: str = "step"

    @property
    @abstractmethod
    def uses_shared_dir(self) -> bool:
        """静态判断步骤是否引用共享目录（决定打包能否并行）"""

    @abstractmethod
    def run(
        self, ctx: StepContext, executor: CommandExecutor | None = None,
    ) -> StepOutcome:
        """在 ctx 描述的目录与环境中执行"""


class ShellStep(Step):
    """shell 脚本步骤"""

    kind = "shell"

    def __init__(self, script: str) -> None:
        self.script = script

    @property
    def uses_shared_dir(self) -> bool:
        return SHARED_DIR_VAR in self.script

    def run(
        self, ctx: StepContext, executor: CommandExecutor | None = None,
    ) -> StepOutcome:
        executor = executor or get_executor()
        logger.debug("执行 shell 步骤 %s/%s (cwd=%s)", ctx.source, ctx.step, ctx.work_dir)
        r = executor.execute(
            ["sh", "-c", f"set -e\n{self.script}"],
            cwd=str(ctx.work_dir), env=ctx.env,
            timeout=ctx.timeout, cancel=ctx.cancel,
        )
        output = r.output
        if r.timed_out:
            output += f"\n[ewebuild] 步骤超时 ({ctx.timeout}s)"
        return StepOutcome(returncode=r.returncode, output=output, timed_out=r.timed_out)

    def __repr__(self) -> str:
        return f"ShellStep({len(self.script)} chars)"


class CallbackStep(Step):
    """原生回调步骤

    回调签名: func(ctx: StepContext) -> None | str
    抛出异常即视为失败（退出码 1，异常信息作为捕获输出）。
    无法静态分析回调体，默认认为会访问共享目录；确定不访问时显式传 uses_shared_dir=False。
    """

    kind = "callback"

    def __init__(
        self, func: Callable[[StepContext], str | None], *,
        uses_shared_dir: bool = True,
    ) -> None:
        self.func = func
        self._uses_shared_dir = uses_shared_dir

    @property
    def uses_shared_dir(self) -> bool:
        return self._uses_shared_dir

    def run(
        self, ctx: StepContext, executor: CommandExecutor | None = None,
    ) -> StepOutcome:
        try:
            result = self.func(ctx)
        except PipelineCancelled:
            raise
        except Exception as e:  # noqa: BLE001
            logger.exception("回调步骤失败 %s/%s", ctx.source, ctx.step)
            return StepOutcome(returncode=1, output=f"{type(e).__name__}: {e}")
        if isinstance(result, str):
            return ShellStep(result).run(ctx, executor)
        return StepOutcome(returncode=0)

    def __repr__(self) -> str:
        return f"CallbackStep({getattr(self.func, '__name__', self.func)!r})"


def make_step(value: object) -> Step:
    """从规格字段值构造步骤：字符串 → ShellStep，可调用对象 → CallbackStep"""
    if isinstance(value, Step):
        return value
    if isinstance(value, str):
        return ShellStep(value)
    if callable(value):
        return CallbackStep(value)
    raise TypeError(f"步骤必须是 shell 字符串或可调用对象，实际: {type(value).__name__}")

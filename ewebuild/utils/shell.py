"""Shell 命令执行工具 — 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，方便测试替换和接入外部沙箱。
默认实现 LocalExecutor 为每条命令建立独立进程组，取消或超时时整组终止。
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ewebuild.utils.cancel import CancelToken

from ewebuild.core.exceptions import PipelineCancelled

logger = logging.getLogger(__name__)

# 轮询子进程状态的间隔（秒），决定取消信号的响应延迟
POLL_INTERVAL = 0.2

# SIGTERM 之后等待进程组退出的宽限期（秒）
TERMINATE_GRACE = 5.0


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦），output 为 stdout+stderr 合并输出"""

    returncode: int
    output: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议 — 抽象子进程调用

    实现此协议即可替换底层执行方式（本地进程、容器、fakeroot 等）。
    隔离保证由实现方负责，调用方只传入工作目录与环境变量。
    """

    def execute(
        self,
        args: list[str],
        *,
        cwd: str,
        env: dict[str, str],
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...


# =========================================================================
# 默认实现: 本地进程组执行器
# =========================================================================

def _kill_group(proc: subprocess.Popen[str]) -> None:
    """终止整个进程组：先 SIGTERM，宽限期后 SIGKILL"""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        proc.wait()


class LocalExecutor:
    """本地命令执行器（默认实现）"""

    def execute(
        self,
        args: list[str],
        *,
        cwd: str,
        env: dict[str, str],
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> CommandResult:
        proc = subprocess.Popen(
            args, cwd=cwd, env=env, text=True,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            start_new_session=True,
        )
        deadline = time.monotonic() + timeout if timeout else None
        chunks: list[str] = []
        while True:
            try:
                out, _ = proc.communicate(timeout=POLL_INTERVAL)
                chunks.append(out or "")
                break
            except subprocess.TimeoutExpired:
                # 重试 communicate 不会丢失已缓冲的输出
                pass
            if cancel is not None and cancel.cancelled:
                logger.warning("收到取消信号，终止进程组 pid=%d", proc.pid)
                _kill_group(proc)
                raise PipelineCancelled(f"命令被取消: {args[0]}")
            if deadline is not None and time.monotonic() > deadline:
                logger.error("命令超时 (%.0fs)，终止进程组 pid=%d", timeout, proc.pid)
                _kill_group(proc)
                out, _ = proc.communicate()
                chunks.append(out or "")
                return CommandResult(
                    returncode=proc.returncode, output="".join(chunks),
                    timed_out=True,
                )
        return CommandResult(returncode=proc.returncode, output="".join(chunks))


# =========================================================================
# 全局默认执行器（可替换）
# =========================================================================

_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """获取全局默认命令执行器"""
    return _default_executor


def set_executor(executor: CommandExecutor) -> None:
    """替换全局默认命令执行器（用于测试或外部沙箱）"""
    global _default_executor  # noqa: PLW0603
    _default_executor = executor

"""取消信号

CancelToken 可以挂接父令牌：父令牌取消时子令牌同样视为已取消。
流水线持有根令牌，源解析等子阶段派生子令牌，子阶段内部失败时只取消自己。
"""

from __future__ import annotations

import threading

from ewebuild.core.exceptions import PipelineCancelled


class CancelToken:
    """线程安全的取消令牌"""

    def __init__(self, parent: CancelToken | None = None) -> None:
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def child(self) -> CancelToken:
        return CancelToken(parent=self)

    def raise_if_cancelled(self, what: str = "") -> None:
        if self.cancelled:
            raise PipelineCancelled(f"已取消{': ' + what if what else ''}")

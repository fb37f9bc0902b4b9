"""构建服务模块

- executor.py: 源文件暂存与 prepare / build / check 执行
"""

from ewebuild.services.build.executor import BuildExecutor

__all__ = ["BuildExecutor"]

"""统一异常体系

所有业务异常继承 EweBuildError。
CLI 层据此输出友好提示，编排器据此判定流水线失败阶段。

分类:
  - SpecParseError / PolicyViolation: 加载期错误，不产生任何副作用
  - SourceFetchError: 源获取失败（网络 / 不存在 / 校验和不匹配）
  - BuildStepError / PackageStepError: 声明步骤非零退出，附带捕获输出
"""

from __future__ import annotations

from typing import Any


class EweBuildError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class ConfigError(EweBuildError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(EweBuildError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class SpecParseError(EweBuildError):
    """构建规格格式错误，field_path 指向出错字段（如 source[1].sha256sum）"""

    code = "SPEC_PARSE_ERROR"

    def __init__(self, field_path: str, message: str) -> None:
        super().__init__(f"{field_path}: {message}" if field_path else message)
        self.field_path = field_path
        self.reason = message

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "field": self.field_path}


class PolicyViolation(EweBuildError):
    """策略违规：缺失校验和、包名冲突、架构不支持等"""

    code = "POLICY_VIOLATION"


class SourceFetchError(EweBuildError):
    """源条目获取失败

    cause 取值: network | not-found | checksum-mismatch
    """

    code = "SOURCE_FETCH_ERROR"

    NETWORK = "network"
    NOT_FOUND = "not-found"
    CHECKSUM_MISMATCH = "checksum-mismatch"

    def __init__(self, entry: Any, cause: str, message: str) -> None:
        super().__init__(f"[{cause}] {entry}: {message}")
        self.entry = entry
        self.cause = cause
        self.reason = message

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "entry": str(self.entry), "cause": self.cause}


class StepError(EweBuildError):
    """声明步骤执行失败的公共基类"""

    code = "STEP_ERROR"

    def __init__(self, message: str, exit_status: int | None, output: str) -> None:
        super().__init__(message)
        self.exit_status = exit_status
        self.output = output

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "exit_status": self.exit_status,
            "output": self.output,
        }


class BuildStepError(StepError):
    """prepare / build / check 步骤失败"""

    code = "BUILD_STEP_ERROR"

    def __init__(self, step: str, exit_status: int | None, output: str = "") -> None:
        super().__init__(
            f"{step} 步骤失败 (exit={exit_status})", exit_status, output,
        )
        self.step = step

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "step": self.step}


class PackageStepError(StepError):
    """打包步骤失败"""

    code = "PACKAGE_STEP_ERROR"

    def __init__(
        self, package: str, exit_status: int | None, output: str = "",
        message: str = "",
    ) -> None:
        super().__init__(
            message or f"包 {package} 打包失败 (exit={exit_status})",
            exit_status, output,
        )
        self.package = package

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "package": self.package}


class ExecutionError(EweBuildError):
    """外部命令执行失败"""

    code = "EXECUTION_ERROR"


class PipelineCancelled(EweBuildError):
    """流水线被取消"""

    code = "CANCELLED"

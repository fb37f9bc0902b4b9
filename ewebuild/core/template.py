"""模板插值

语法: {{ name }}，name 为标识符。只做变量替换，不支持表达式求值。
双花括号避免与 shell 的 ${VAR} 冲突；未定义的变量直接报错而不是静默保留。
"""

from __future__ import annotations

import re
from collections.abc import Mapping

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

# 内置变量，用户局部变量不可覆盖
BUILTIN_VARIABLES = ("version", "revision", "architecture")


class TemplateError(ValueError):
    """模板引用了未定义的变量"""

    def __init__(self, name: str) -> None:
        super().__init__(f"未定义的模板变量: {name}")
        self.name = name


def render(template: str, variables: Mapping[str, str]) -> str:
    """对 template 做变量替换（纯函数，不访问环境）"""

    def _sub(m: re.Match[str]) -> str:
        name = m.group(1)
        if name not in variables:
            raise TemplateError(name)
        return str(variables[name])

    return _PLACEHOLDER_RE.sub(_sub, template)

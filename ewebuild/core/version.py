"""包版本号解析与比较

格式: [epoch:]upstream[-revision]
  - epoch: 非负整数，缺省为 0
  - upstream / revision: 仅允许字母数字与 . + ~
  - '-' 只作为 upstream 与 revision 的分隔符（取最后一个）

排序规则（Debian 风格）:
  - 交替比较非数字段与数字段
  - 非数字段中 '~' 排在一切之前（包括空串），字母排在非字母之前
  - 数字段按数值比较（忽略前导零）
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass

_ALLOWED_RE = re.compile(r"^[A-Za-z0-9.+~]+$")
_DIGITS_RE = re.compile(r"\d+")
_NON_DIGIT_RE = re.compile(r"\D")


class VersionError(ValueError):
    """版本号格式错误"""


def _cmp_lexical(a: str, b: str) -> int:
    for ac, bc in zip(a, b):
        if ac == bc:
            continue
        if ac == "~":
            return -1
        if bc == "~":
            return 1
        if ac.isalpha() and not bc.isalpha():
            return -1
        if not ac.isalpha() and bc.isalpha():
            return 1
        return -1 if ac < bc else 1

    n = min(len(a), len(b))
    rest_a, rest_b = a[n:], b[n:]
    if rest_a.startswith("~"):
        return -1
    if rest_b.startswith("~"):
        return 1
    if rest_a:
        return 1
    if rest_b:
        return -1
    return 0


def _cmp_numerical(a: str, b: str) -> int:
    a = a.lstrip("0")
    b = b.lstrip("0")
    if len(a) != len(b):
        return -1 if len(a) < len(b) else 1
    if a == b:
        return 0
    return -1 if a < b else 1


def _split_at(s: str, pattern: re.Pattern[str]) -> tuple[str, str]:
    m = pattern.search(s)
    idx = m.start() if m else len(s)
    return s[:idx], s[idx:]


def compare_segments(a: str, b: str) -> int:
    """比较两个 upstream（或 revision）串，返回 -1 / 0 / 1"""
    while a or b:
        lex_a, a = _split_at(a, _DIGITS_RE)
        lex_b, b = _split_at(b, _DIGITS_RE)
        r = _cmp_lexical(lex_a, lex_b)
        if r:
            return r
        num_a, a = _split_at(a, _NON_DIGIT_RE)
        num_b, b = _split_at(b, _NON_DIGIT_RE)
        r = _cmp_numerical(num_a, num_b)
        if r:
            return r
    return 0


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class PackageVersion:
    """解析后的包版本号"""

    upstream: str
    revision: str = ""
    epoch: int = 0

    @classmethod
    def parse(cls, text: str) -> PackageVersion:
        s = str(text).strip()
        epoch = 0
        if ":" in s:
            epoch_str, s = s.split(":", 1)
            if not epoch_str.isdigit():
                raise VersionError(f"epoch 不是非负整数: {epoch_str!r}")
            epoch = int(epoch_str)
        upstream, sep, revision = s.rpartition("-")
        if not sep:
            upstream, revision = s, ""
        if not upstream or not _ALLOWED_RE.match(upstream):
            raise VersionError(f"upstream 版本包含非法字符: {upstream!r}")
        if sep and (not revision or not _ALLOWED_RE.match(revision)):
            raise VersionError(f"revision 包含非法字符: {revision!r}")
        return cls(upstream=upstream, revision=revision, epoch=epoch)

    def compare(self, other: PackageVersion) -> int:
        if self.epoch != other.epoch:
            return -1 if self.epoch < other.epoch else 1
        r = compare_segments(self.upstream, other.upstream)
        if r:
            return r
        return compare_segments(self.revision, other.revision)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageVersion):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: PackageVersion) -> bool:
        return self.compare(other) < 0

    __hash__ = None  # type: ignore[assignment]

    def __str__(self) -> str:
        s = self.upstream
        if self.epoch:
            s = f"{self.epoch}:{s}"
        if self.revision:
            s = f"{s}-{self.revision}"
        return s


def compare_versions(a: str, b: str) -> int:
    """比较两个版本字符串，返回 -1 / 0 / 1"""
    return PackageVersion.parse(a).compare(PackageVersion.parse(b))

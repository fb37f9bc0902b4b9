"""归档工具 — 源归档识别/解压，包归档生成

支持的源归档（按文件名后缀识别）:
  .tar  .tar.gz/.tgz  .tar.xz/.txz  .tar.bz2/.tbz2  .tar.zst/.tzst  .zip  .deb

.deb 为 ar 容器：成员平铺到目标目录，其中 control.tar.* / data.tar.*
再分别解压到 control/ 与 data/ 子目录。

解压时拒绝任何会逃逸目标目录的成员（绝对路径、..、指向外部的链接）。
"""

from __future__ import annotations

import io
import logging
import lzma
import os
import tarfile
import tempfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath

import zstandard

logger = logging.getLogger(__name__)

# (后缀, 归档类型)，长后缀在前
_SUFFIXES: tuple[tuple[str, str], ...] = (
    (".tar.gz", "tar"), (".tar.xz", "tar"), (".tar.bz2", "tar"), (".tar.zst", "tar-zst"),
    (".tgz", "tar"), (".txz", "tar"), (".tbz2", "tar"), (".tzst", "tar-zst"),
    (".tar", "tar"), (".zip", "zip"), (".deb", "deb"),
)


class ArchiveError(OSError):
    """归档损坏或包含不安全成员"""


def archive_kind(file_name: str) -> tuple[str, str] | None:
    """识别归档类型，返回 (kind, 去掉后缀的文件名)；非归档返回 None"""
    lower = file_name.lower()
    for suffix, kind in _SUFFIXES:
        if lower.endswith(suffix) and len(file_name) > len(suffix):
            return kind, file_name[: -len(suffix)]
    return None


def staged_name(file_name: str, *, rename: str = "", extract: bool = True) -> str:
    """源文件在工作目录中的落地名：rename 优先，其次归档去后缀，最后原文件名"""
    if rename:
        return rename
    if extract:
        detected = archive_kind(file_name)
        if detected:
            return detected[1]
    return file_name


def _is_safe_member(name: str) -> bool:
    if "\0" in name:
        return False
    p = PurePosixPath(name)
    if p.is_absolute():
        return False
    depth = 0
    for part in p.parts:
        if part == "..":
            depth -= 1
            if depth < 0:
                return False
        elif part not in ("", "."):
            depth += 1
    return True


# ar 容器（.deb）格式常量
AR_MAGIC = b"!<arch>\n"
_AR_HEADER_SIZE = 60
_AR_COPY_CHUNK = 64 * 1024

# 解压过程中可能由各压缩层抛出的数据错误
_CORRUPT_ERRORS = (
    tarfile.TarError, zipfile.BadZipFile, EOFError,
    zlib.error, lzma.LZMAError, zstandard.ZstdError,
)


def _extract_tar(src: Path, dest: Path) -> None:
    """解压 tar 族归档；.tar.zst 先经 zstandard 解压到临时文件"""
    detected = archive_kind(src.name)
    if detected is not None and detected[0] == "tar-zst":
        with open(src, "rb") as fh, tempfile.TemporaryFile() as tmp:
            zstandard.ZstdDecompressor().copy_stream(fh, tmp)
            tmp.seek(0)
            with tarfile.open(fileobj=tmp) as tf:
                tf.extractall(path=str(dest), filter="data")
        return
    with tarfile.open(src) as tf:
        # data 过滤器拒绝绝对路径、.. 与指向外部的链接
        tf.extractall(path=str(dest), filter="data")


def _extract_ar(src: Path, dest: Path) -> list[Path]:
    """将 ar 容器成员平铺写入 dest，返回写出的文件（按归档顺序）"""
    written: list[Path] = []
    with open(src, "rb") as f:
        if f.read(len(AR_MAGIC)) != AR_MAGIC:
            raise ArchiveError(f"不是 ar 归档: {src.name}")
        while True:
            header = f.read(_AR_HEADER_SIZE)
            if not header:
                break
            if len(header) < _AR_HEADER_SIZE or header[58:60] != b"`\n":
                raise ArchiveError(f"ar 成员头损坏: {src.name}")
            name = header[:16].decode("utf-8").rstrip(" ")
            size = int(header[48:58].decode("ascii").strip())
            mode = int(header[40:48].decode("ascii").strip() or "644", 8)
            padding = size % 2

            # GNU 符号表 / 长文件名表
            if name in ("/", "//"):
                f.seek(size + padding, os.SEEK_CUR)
                continue
            name = name.removesuffix("/")
            if name in ("", ".", "..") or "/" in name:
                raise ArchiveError(f"归档成员路径不安全: {name!r}")

            target = dest / name
            remaining = size
            with open(target, "wb") as out:
                while remaining:
                    chunk = f.read(min(remaining, _AR_COPY_CHUNK))
                    if not chunk:
                        raise ArchiveError(f"ar 成员被截断: {name}")
                    out.write(chunk)
                    remaining -= len(chunk)
            os.chmod(target, (mode & 0o777) or 0o644)
            written.append(target)
            if padding:
                f.read(padding)
    return written


def _extract_deb(src: Path, dest: Path) -> None:
    for member in _extract_ar(src, dest):
        detected = archive_kind(member.name)
        if detected is None or detected[0] not in ("tar", "tar-zst"):
            continue
        if detected[1] not in ("control", "data"):
            continue
        _extract_tar(member, dest / detected[1])
        member.unlink()


def extract_archive(src: Path, dest: Path) -> None:
    """解压 src 到 dest 目录

    归档损坏（包括被截断的压缩流）统一以 ArchiveError 抛出。
    """
    detected = archive_kind(src.name)
    if detected is None:
        raise ArchiveError(f"不支持的归档类型: {src.name}")
    dest.mkdir(parents=True, exist_ok=True)
    kind = detected[0]
    try:
        if kind == "zip":
            with zipfile.ZipFile(src) as zf:
                for name in zf.namelist():
                    if not _is_safe_member(name):
                        raise ArchiveError(f"归档成员路径不安全: {name}")
                zf.extractall(dest)
        elif kind == "deb":
            _extract_deb(src, dest)
        else:
            _extract_tar(src, dest)
    except _CORRUPT_ERRORS as e:
        raise ArchiveError(f"解压失败 {src.name}: {e}") from e
    except ValueError as e:
        raise ArchiveError(f"归档格式错误 {src.name}: {e}") from e
    logger.debug("已解压 %s -> %s", src.name, dest)


def tree_size(root: Path) -> int:
    """目录树中普通文件的总字节数（不跟随符号链接）"""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            p = Path(dirpath) / name
            if not p.is_symlink():
                total += p.stat().st_size
    return total


def _walk(root: Path) -> list[Path]:
    """列出目录树全部条目（排序，不进入符号链接目录）"""
    entries: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            entries.append(Path(dirpath) / name)
    return sorted(entries)


def create_package_archive(
    staging: Path, dest: Path, *, extra_files: dict[str, bytes] | None = None,
    compress_level: int = 6,
) -> Path:
    """将 staging 目录打包为 .tar.xz

    成员路径相对 staging；符号链接按链接本身归档。
    extra_files 以 {归档内文件名: 内容} 追加（如 .MANIFEST）。
    先写临时文件再 rename，保证 dest 要么完整要么不存在。
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + ".part")
    try:
        with tarfile.open(tmp, "w:xz", preset=compress_level) as tf:
            tf.dereference = False
            for name, content in sorted((extra_files or {}).items()):
                info = tarfile.TarInfo(name)
                info.size = len(content)
                info.mode = 0o644
                tf.addfile(info, io.BytesIO(content))
            for entry in _walk(staging):
                tf.add(
                    str(entry), arcname=entry.relative_to(staging).as_posix(),
                    recursive=False,
                )
        os.replace(tmp, dest)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise
    return dest

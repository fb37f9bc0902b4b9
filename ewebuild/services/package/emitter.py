"""包产出器

职责:
- 按声明顺序对每个 PackageSpec 执行 pack 步骤
- 任一 pack 步骤引用共享目录时严格串行，否则并行执行
- 每个包每次尝试使用全新的暂存目录：成功后删除，失败时保留用于诊断，从不复用
- 生成 <name>_<version>.tar.xz（内含 .MANIFEST）与旁路清单 <name>_<version>.manifest.yml
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from ewebuild.core.exceptions import PackageStepError
from ewebuild.core.models import BuildOutcome, PackageArtifact, PackageSpec, SourceSpec, StepContext
from ewebuild.utils.archive import create_package_archive, tree_size
from ewebuild.utils.yaml_io import dump_yaml, save_yaml

if TYPE_CHECKING:
    from ewebuild.utils.cancel import CancelToken
    from ewebuild.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.xz"
MANIFEST_SUFFIX = ".manifest.yml"
MANIFEST_MEMBER = ".MANIFEST"


class PackageEmitter:
    """包产出器"""

    def __init__(
        self,
        output_dir: str | Path,
        *,
        compress_level: int = 6,
        step_timeout: float | None = None,
        max_workers: int = 4,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.compress_level = compress_level
        self.step_timeout = step_timeout
        self.max_workers = max(1, max_workers)
        self.executor = executor

    def artifact_paths(self, package: PackageSpec) -> tuple[Path, Path]:
        stem = package.artifact_stem
        return (
            self.output_dir / f"{stem}{ARCHIVE_SUFFIX}",
            self.output_dir / f"{stem}{MANIFEST_SUFFIX}",
        )

    # ---- 单个包 ----

    def emit(
        self,
        package: PackageSpec,
        outcome: BuildOutcome,
        *,
        base_env: dict[str, str],
        staging_root: Path,
        variables: dict[str, str] | None = None,
        cancel: CancelToken | None = None,
    ) -> PackageArtifact:
        """执行 pack 步骤并写出归档 + 清单"""
        staging_root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f"{package.name}.", dir=str(staging_root)))
        log_extra = {"source": package.source_name, "stage": "packaging", "package": package.name}

        if package.pack is not None:
            env = {
                **base_env,
                "PKGDIR": str(staging),
                "PKGNAME": package.name,
                "VERSION": package.version,
            }
            ctx = StepContext(
                step="pack", source=package.source_name,
                work_dir=outcome.src_dir, src_dir=outcome.src_dir,
                shared_dir=outcome.shared_dir, env=env,
                pkg_dir=staging, package=package.name,
                variables=dict(variables or {}),
                timeout=self.step_timeout, cancel=cancel,
            )
            result = package.pack.run(ctx, self.executor)
            if not result.success:
                logger.error("  pack 失败: %s (暂存目录保留: %s)", package.name, staging, extra=log_extra)
                raise PackageStepError(package.name, result.returncode, result.output)
            if not any(staging.iterdir()):
                logger.error("  pack 未产出文件: %s", package.name, extra=log_extra)
                raise PackageStepError(
                    package.name, result.returncode, result.output,
                    message=f"包 {package.name} 的 pack 步骤未向 PKGDIR 写入任何文件",
                )

        manifest = package.manifest(installed_size=tree_size(staging))
        archive_path, manifest_path = self.artifact_paths(package)
        create_package_archive(
            staging, archive_path,
            extra_files={MANIFEST_MEMBER: dump_yaml(manifest).encode("utf-8")},
            compress_level=self.compress_level,
        )
        save_yaml(manifest_path, manifest)
        shutil.rmtree(staging, ignore_errors=True)
        logger.info("  已产出: %s", archive_path.name, extra=log_extra)
        return PackageArtifact(
            package=package.name, version=package.version,
            archive_path=archive_path, manifest_path=manifest_path,
            manifest=manifest,
        )

    # ---- 整个源 ----

    def emit_all(
        self,
        spec: SourceSpec,
        outcome: BuildOutcome,
        *,
        base_env: dict[str, str],
        staging_root: Path,
        cancel: CancelToken | None = None,
    ) -> Iterator[PackageArtifact]:
        """按声明顺序产出全部包，逐个 yield 成功的产物

        串行模式下第一个失败即停止；并行模式下等待全部完成，
        先 yield 全部成功产物，再抛出声明顺序中第一个失败。
        """
        kwargs = {
            "base_env": base_env, "staging_root": staging_root,
            "variables": dict(spec.variables), "cancel": cancel,
        }
        sequential = any(p.uses_shared_dir for p in spec.packages)
        if sequential or len(spec.packages) <= 1:
            for package in spec.packages:
                if cancel is not None:
                    cancel.raise_if_cancelled(package.name)
                yield self.emit(package, outcome, **kwargs)
            return

        logger.info("  并行打包 %d 个包: %s", len(spec.packages), ", ".join(spec.package_names))
        workers = min(self.max_workers, len(spec.packages))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"pack-{spec.name}") as pool:
            futures = [pool.submit(self.emit, p, outcome, **kwargs) for p in spec.packages]
        first_error: BaseException | None = None
        for future in futures:
            error = future.exception()
            if error is None:
                yield future.result()
            elif first_error is None:
                first_error = error
        if first_error is not None:
            raise first_error

    # ---- 标记 ----

    def mark_provisional(self, artifact: PackageArtifact) -> PackageArtifact:
        """所属流水线后续失败：在旁路清单中标记 provisional"""
        artifact.provisional = True
        artifact.manifest["provisional"] = True
        save_yaml(artifact.manifest_path, artifact.manifest)
        logger.warning("包标记为 provisional: %s", artifact.package)
        return artifact

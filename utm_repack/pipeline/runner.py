"""End-to-end repackaging procedure."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from utm_repack.config.settings import PackagerConfig
from utm_repack.logging import LoggerFactory, operation_context
from utm_repack.pipeline import boot, package, rootfs, source
from utm_repack.pipeline.package import PackageResult
from utm_repack.storage import loop
from utm_repack.storage.commands import run_to_file
from utm_repack.storage.session import WorkSession


log = LoggerFactory.for_pipeline("runner")


def decompress_image(source_image: Path, target: Path) -> None:
    run_to_file(["unxz", "-v", "-c", str(source_image)], target)


def run(config: PackagerConfig, *, now: Optional[float] = None) -> PackageResult:
    """Repackage the source image described by ``config``.

    Raises:
        PackagerError: With the exit code matching the failed step
    """
    log.info(f"Mode: {config.mode_label}")
    source_image = source.locate_source_image(config)
    version = source.derive_version(source_image, config.version, now)
    log.info(f"Version: {version}")

    with WorkSession(config.work_dir) as session:
        with operation_context("decompress", source=source_image.name):
            decompress_image(source_image, session.raw_image)

        device = session.attach()

        with operation_context("boot", partition=config.boot_partition):
            boot_files = boot.extract_boot_files(
                loop.partition_node(device, config.boot_partition),
                session.boot_mount,
                config.workspace,
            )

        with operation_context("rootfs", partition=config.root_partition):
            rootfs.clone_root_partition(
                loop.partition_node(device, config.root_partition),
                session.rootfs_image,
                config.dd_block_size,
            )
            rootfs.patch_rootfs(
                session.rootfs_image,
                session.rootfs_mount,
                config.disabled_services,
            )

        with operation_context("package", version=version):
            if config.ci_mode:
                result = package.build_ci_package(
                    config.work_dir,
                    config.workspace,
                    config.package_prefix,
                    session.rootfs_image,
                    boot_files,
                    version,
                    xz_threads=config.xz_threads,
                    output_file=config.ci_output_file,
                )
            else:
                result = package.build_local_package(
                    config.image_dir,
                    config.package_prefix,
                    session.rootfs_image,
                    boot_files,
                    version,
                )

    log.success("All done")
    return result

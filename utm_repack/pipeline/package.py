"""Assemble the VM package and export results for CI."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from utm_repack.logging import LoggerFactory
from utm_repack.pipeline.boot import BootFiles
from utm_repack.pipeline.readme import write_readme
from utm_repack.storage.commands import run_pipeline


log = LoggerFactory.for_pipeline("package")

README_NAME = "README.md"
ARCHIVE_SUFFIX = ".tar.xz"


@dataclass(frozen=True)
class PackageResult:
    name: str
    directory: Path
    kernel_name: str
    initrd_name: str
    version: str
    archive: Optional[Path] = None

    def ci_outputs(self) -> dict[str, str]:
        """Key/value pairs handed back to the calling workflow."""
        return {
            "FINAL_PKG_NAME": self.archive.name if self.archive else self.name,
            "RAW_KERNEL": self.kernel_name,
            "RAW_INITRD": self.initrd_name,
            "VERSION": self.version,
        }


def package_name(prefix: str, version: str) -> str:
    return f"{prefix}_{version}"


def _move_into(source: Path, directory: Path) -> Path:
    target = directory / source.name
    try:
        return Path(shutil.move(str(source), str(target)))
    except OSError:
        # Fall back to a copy when the source cannot be removed
        return Path(shutil.copy2(source, target))


def assemble_package(
    directory: Path,
    rootfs: Path,
    boot: BootFiles,
    version: str,
    *,
    with_listing: bool = False,
) -> Path:
    """Move rootfs, kernel and initrd into ``directory`` and write the README."""
    directory.mkdir(parents=True, exist_ok=True)
    _move_into(rootfs, directory)
    _move_into(boot.kernel, directory)
    _move_into(boot.initrd, directory)
    listing = None
    if with_listing:
        listing = [rootfs.name, boot.kernel_name, boot.initrd_name, README_NAME]
    write_readme(
        directory / README_NAME,
        version,
        boot.kernel_name,
        boot.initrd_name,
        listing=listing,
    )
    return directory


def compress_package(directory: Path, xz_threads: int = 0) -> Path:
    """Create ``<directory>.tar.xz`` next to ``directory``."""
    archive = directory.with_name(directory.name + ARCHIVE_SUFFIX)
    log.info(f"Archiving and compressing {archive.name}")
    run_pipeline(
        ["tar", "-cf", "-", directory.name],
        ["xz", "-z", f"-T{xz_threads}", "-v"],
        archive,
        cwd=directory.parent,
    )
    return archive


def write_ci_outputs(output_file: Path, values: dict[str, str]) -> None:
    """Append ``KEY=value`` lines to the workflow's environment file."""
    with open(output_file, "a", encoding="utf-8") as handle:
        for key, value in values.items():
            handle.write(f"{key}={value}\n")
    log.debug(f"Exported {', '.join(values)} to {output_file}")


def build_ci_package(
    work_dir: Path,
    workspace: Path,
    prefix: str,
    rootfs: Path,
    boot: BootFiles,
    version: str,
    *,
    xz_threads: int = 0,
    output_file: Optional[Path] = None,
) -> PackageResult:
    """Cloud mode: versioned directory, compressed archive in the workspace."""
    name = package_name(prefix, version)
    directory = assemble_package(work_dir / name, rootfs, boot, version)
    archive = compress_package(directory, xz_threads)
    final_archive = Path(shutil.move(str(archive), str(workspace / archive.name)))
    result = PackageResult(
        name=name,
        directory=directory,
        kernel_name=boot.kernel_name,
        initrd_name=boot.initrd_name,
        version=version,
        archive=final_archive,
    )
    if output_file is not None:
        write_ci_outputs(output_file, result.ci_outputs())
    log.info(f"Package: {final_archive.name}")
    return result


def build_local_package(
    output_root: Path, prefix: str, rootfs: Path, boot: BootFiles, version: str
) -> PackageResult:
    """Local mode: uncompressed directory next to the source images."""
    name = package_name(prefix, version)
    directory = assemble_package(
        output_root / name, rootfs, boot, version, with_listing=True
    )
    log.info(f"Local output written to: {directory}/")
    return PackageResult(
        name=name,
        directory=directory,
        kernel_name=boot.kernel_name,
        initrd_name=boot.initrd_name,
        version=version,
    )

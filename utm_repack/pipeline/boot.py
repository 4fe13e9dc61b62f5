"""Kernel and initrd extraction from the boot partition."""

from __future__ import annotations

import fnmatch
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from utm_repack.logging import LoggerFactory
from utm_repack.pipeline.source import newest_by_version
from utm_repack.storage import mount
from utm_repack.storage.exceptions import BootFilesNotFoundError


log = LoggerFactory.for_pipeline("boot")

KERNEL_PATTERN = "vmlinuz-*"
INITRD_PATTERN = "initrd.img-*"
BACKUP_SUFFIX = ".old"


@dataclass(frozen=True)
class BootFiles:
    kernel: Path
    initrd: Path

    @property
    def kernel_name(self) -> str:
        return self.kernel.name

    @property
    def initrd_name(self) -> str:
        return self.initrd.name


def _iter_matching(root: Path, pattern: str) -> Iterator[Path]:
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            if not fnmatch.fnmatchcase(filename, pattern):
                continue
            if filename.endswith(BACKUP_SUFFIX):
                continue
            path = Path(dirpath) / filename
            # find -type f: skip symlinks such as /boot/vmlinuz -> vmlinuz-6.1
            if path.is_file() and not path.is_symlink():
                yield path


def find_boot_file(root: Path, pattern: str) -> Optional[Path]:
    """Newest (version sorted) regular file under ``root`` matching ``pattern``."""
    return newest_by_version(_iter_matching(root, pattern))


def select_boot_files(root: Path, partition: str = "boot partition") -> BootFiles:
    """Pick the kernel and initrd from a mounted boot partition.

    Raises:
        BootFilesNotFoundError: If either file is missing
    """
    kernel = find_boot_file(root, KERNEL_PATTERN)
    initrd = find_boot_file(root, INITRD_PATTERN)
    missing = []
    if kernel is None:
        missing.append(KERNEL_PATTERN)
    if initrd is None:
        missing.append(INITRD_PATTERN)
    if missing:
        raise BootFilesNotFoundError(partition, missing)
    return BootFiles(kernel=kernel, initrd=initrd)


def extract_boot_files(partition: str, mountpoint: Path, destination: Path) -> BootFiles:
    """Mount ``partition`` read-only and copy kernel and initrd to ``destination``.

    The partition is unmounted again on success and on failure.

    Returns:
        BootFiles pointing at the copies in ``destination``
    """
    mount.mount_partition(partition, mountpoint, read_only=True)
    try:
        found = select_boot_files(mountpoint, partition)
        log.info(f"Copying kernel files: {found.kernel_name}, {found.initrd_name}")
        destination.mkdir(parents=True, exist_ok=True)
        kernel = Path(shutil.copy2(found.kernel, destination / found.kernel_name))
        initrd = Path(shutil.copy2(found.initrd, destination / found.initrd_name))
    except BaseException:
        mount.unmount_quietly(mountpoint)
        raise
    mount.unmount_path(mountpoint)
    return BootFiles(kernel=kernel, initrd=initrd)

"""Mount helpers for loop partitions and filesystem images.

Functions:
    - mount_partition(): Mount a block device or image file on a directory
    - unmount_path(): Unmount a directory, raising on failure
    - unmount_quietly(): Unmount a directory, ignoring "not mounted"
    - sync_filesystems(): Flush pending writes
"""

from __future__ import annotations

from pathlib import Path

from utm_repack.logging import LoggerFactory
from utm_repack.storage.commands import run_checked_command, run_ignoring_errors


log = LoggerFactory.for_storage()


def mount_partition(source: str | Path, target: Path, *, read_only: bool = False) -> None:
    """Mount ``source`` on ``target``, creating the directory if needed.

    ``source`` may be a partition node (``/dev/loop0p1``) or an image file,
    which mount attaches through its own loop device.

    Raises:
        CommandFailedError: If mount fails
    """
    target.mkdir(parents=True, exist_ok=True)
    command = ["mount"]
    if read_only:
        command += ["-o", "ro"]
    command += [str(source), str(target)]
    run_checked_command(command)
    log.debug(f"Mounted {source} on {target}{' (ro)' if read_only else ''}")


def unmount_path(target: Path) -> None:
    """Unmount ``target``.

    Raises:
        CommandFailedError: If umount fails
    """
    run_checked_command(["umount", str(target)])
    log.debug(f"Unmounted {target}")


def unmount_quietly(target: Path) -> bool:
    """Unmount ``target`` if mounted; returns whether an unmount happened."""
    return run_ignoring_errors(["umount", str(target)])


def sync_filesystems() -> None:
    run_ignoring_errors(["sync"])

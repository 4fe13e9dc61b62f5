"""Loop device helpers built on ``losetup``."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from utm_repack.logging import LoggerFactory
from utm_repack.storage.commands import run_checked_command, run_ignoring_errors
from utm_repack.storage.exceptions import CommandFailedError, LoopDeviceError


log = LoggerFactory.for_storage()


def find_loop_device(image_path: Path) -> Optional[str]:
    """Return the first loop device backed by ``image_path``.

    ``losetup -j`` prints lines like ``/dev/loop3: []: (/work/source.img)``.
    """
    try:
        output = run_checked_command(["losetup", "-j", str(image_path)])
    except CommandFailedError as error:
        log.debug(f"losetup -j failed for {image_path}: {error}")
        return None
    for line in output.splitlines():
        device = line.split(":", 1)[0].strip()
        if device:
            return device
    return None


def attach_loop_device(image_path: Path) -> str:
    """Attach ``image_path`` with partition scanning and return the device.

    The device is looked up with ``losetup -j``; the name printed by
    ``--show`` is used when that lookup comes back empty.

    Raises:
        LoopDeviceError: If losetup fails or reports no device at all
    """
    try:
        output = run_checked_command(["losetup", "-Pf", "--show", str(image_path)])
    except CommandFailedError as error:
        raise LoopDeviceError(image_path, error.stderr) from error
    shown = next((line.strip() for line in output.splitlines() if line.strip()), None)
    device = find_loop_device(image_path)
    if not device:
        if not shown:
            raise LoopDeviceError(image_path, "no device reported by losetup")
        log.warning(f"losetup -j found nothing for {image_path.name}, using {shown}")
        device = shown
    log.info(f"Attached {image_path.name} to {device}")
    return device


def detach_loop_device(device: str) -> bool:
    """Detach a loop device; returns False if it was already gone."""
    return run_ignoring_errors(["losetup", "-d", device])


def partition_node(device: str, number: int) -> str:
    """Partition node for a loop device, e.g. ``/dev/loop0p2``."""
    return f"{device}p{number}"

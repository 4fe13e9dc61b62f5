"""Root partition clone and the patches applied to the copy."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from utm_repack.logging import LoggerFactory
from utm_repack.storage import mount
from utm_repack.storage.commands import run_checked_command


log = LoggerFactory.for_pipeline("rootfs")

FSTAB_PATH = Path("etc/fstab")
WANTS_DIR = Path("etc/systemd/system/multi-user.target.wants")
BOOT_MARKER = "/boot"


def clone_root_partition(partition: str, target: Path, block_size: str = "1M") -> None:
    """Raw copy of ``partition`` into the image file ``target``."""
    log.info(f"Cloning {partition} to {target.name}")
    run_checked_command(
        ["dd", f"if={partition}", f"of={target}", f"bs={block_size}", "status=none"]
    )


def comment_boot_lines(text: str) -> str:
    """Prefix every line mentioning /boot with ``#``; other lines are untouched."""
    lines = text.splitlines(keepends=True)
    return "".join(
        f"#{line}" if BOOT_MARKER in line else line
        for line in lines
    )


def patch_fstab(root: Path) -> bool:
    """Disable /boot mounts in ``root``/etc/fstab; returns whether it changed."""
    fstab = root / FSTAB_PATH
    if not fstab.is_file():
        log.debug("No etc/fstab in rootfs, nothing to patch")
        return False
    original = fstab.read_bytes().decode("utf-8", errors="surrogateescape")
    patched = comment_boot_lines(original)
    if patched == original:
        return False
    fstab.write_bytes(patched.encode("utf-8", errors="surrogateescape"))
    log.info("Commented out /boot entries in etc/fstab")
    return True


def remove_service_links(root: Path, services: Iterable[str]) -> list[str]:
    """Remove multi-user.target wants links; missing links are skipped."""
    removed = []
    for service in services:
        link = root / WANTS_DIR / service
        # lexists: dangling symlinks count as present
        if not (link.is_symlink() or link.exists()):
            continue
        try:
            link.unlink()
        except OSError as error:
            log.warning(f"Could not remove {service}: {error}")
            continue
        removed.append(service)
    if removed:
        log.info(f"Removed conflicting services: {', '.join(removed)}")
    return removed


def patch_rootfs(image: Path, mountpoint: Path, services: Iterable[str]) -> None:
    """Mount the cloned rootfs image, apply fixes, sync and unmount."""
    mount.mount_partition(image, mountpoint)
    try:
        patch_fstab(mountpoint)
        remove_service_links(mountpoint, services)
        mount.sync_filesystems()
    except BaseException:
        mount.unmount_quietly(mountpoint)
        raise
    mount.unmount_path(mountpoint)

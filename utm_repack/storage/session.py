"""Scoped cleanup guard for a single packaging run.

A :class:`WorkSession` owns the resources that must never outlive the run:
the raw decompressed image, the loop device and the two mount points. Its
cleanup runs on every exit path (normal return, exceptions, KeyboardInterrupt
and SystemExit raised from signal handlers) and is safe to call repeatedly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from utm_repack.logging import LoggerFactory
from utm_repack.storage import loop, mount


log = LoggerFactory.for_storage()

RAW_IMAGE_NAME = "source.img"
ROOTFS_IMAGE_NAME = "rootfs.img"
BOOT_MOUNT_NAME = "mnt_p1"
ROOTFS_MOUNT_NAME = "mnt_new"


@dataclass
class WorkSession:
    """Paths inside the working directory plus the attached loop device."""

    work_dir: Path
    loop_device: Optional[str] = None
    cleaned_up: bool = field(default=False, init=False)

    @property
    def raw_image(self) -> Path:
        return self.work_dir / RAW_IMAGE_NAME

    @property
    def rootfs_image(self) -> Path:
        return self.work_dir / ROOTFS_IMAGE_NAME

    @property
    def boot_mount(self) -> Path:
        return self.work_dir / BOOT_MOUNT_NAME

    @property
    def rootfs_mount(self) -> Path:
        return self.work_dir / ROOTFS_MOUNT_NAME

    def __enter__(self) -> WorkSession:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self.cleaned_up = False
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def attach(self) -> str:
        """Attach the raw image and remember the loop device for cleanup."""
        self.loop_device = loop.attach_loop_device(self.raw_image)
        return self.loop_device

    def cleanup(self) -> None:
        """Release mounts, then the loop device, then the raw image.

        Every step tolerates the resource already being gone.
        """
        if self.cleaned_up:
            log.trace("Cleanup already done")
            return
        log.info("Cleaning up")
        mount.sync_filesystems()
        for target in (self.boot_mount, self.rootfs_mount):
            if mount.unmount_quietly(target):
                log.debug(f"Unmounted leftover mount {target}")
        if self.loop_device:
            loop.detach_loop_device(self.loop_device)
            self.loop_device = None
        try:
            self.raw_image.unlink()
        except FileNotFoundError:
            pass
        except OSError as error:
            log.warning(f"Could not remove {self.raw_image}: {error}")
        self.cleaned_up = True

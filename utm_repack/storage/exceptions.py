"""Custom exceptions for the packaging pipeline.

Every exception carries the process exit code that ``main`` reports for it.

Exception Hierarchy:
    PackagerError (base)
        ├── SourceImageNotFoundError   exit code 1
        ├── LoopDeviceError            exit code 2
        ├── BootFilesNotFoundError     exit code 3
        └── CommandFailedError         exit code of the failing tool

Usage:
    from utm_repack.storage.exceptions import LoopDeviceError

    if not loop_device:
        raise LoopDeviceError(image_path)
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence


class PackagerError(Exception):
    """Base exception for all packaging failures."""

    exit_code = 1


class SourceImageNotFoundError(PackagerError):
    """No compressed source image could be resolved."""

    exit_code = 1

    def __init__(self, searched: Optional[Path | str] = None):
        self.searched = searched
        msg = "No .img.xz file found"
        if searched:
            msg += f" (looked at: {searched})"
        super().__init__(msg)


class LoopDeviceError(PackagerError):
    """The raw image could not be attached to a loop device."""

    exit_code = 2

    def __init__(self, image_path: Path | str, reason: str = ""):
        self.image_path = image_path
        self.reason = reason
        msg = f"Failed to set up loop device for {image_path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class BootFilesNotFoundError(PackagerError):
    """Kernel or initrd is missing from the boot partition."""

    exit_code = 3

    def __init__(self, partition: str, missing: Sequence[str]):
        self.partition = partition
        self.missing = list(missing)
        super().__init__(
            f"Kernel or initrd not found on {partition}. "
            f"Missing: {', '.join(self.missing)}"
        )


class CommandFailedError(PackagerError):
    """An external tool exited with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        message = stderr.strip() or "Command failed"
        super().__init__(
            f"Command failed ({' '.join(self.command)}) "
            f"with exit code {returncode}: {message}"
        )

    @property
    def exit_code(self) -> int:
        # Signals show up as negative return codes; report them like a shell
        if self.returncode < 0:
            return 128 - self.returncode
        return self.returncode or 1

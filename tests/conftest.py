"""
Pytest configuration and shared fixtures for utm-repack tests.

No test needs root: ``FakeSystem`` stands in for losetup, mount, umount, dd
and sync by answering ``subprocess.run`` calls and populating mount points
with the files a real image would expose.
"""

import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from utm_repack.config.settings import PackagerConfig


DEFAULT_BOOT_FILES = {
    "vmlinuz-6.1.0-9-arm64": b"kernel 6.1.0-9",
    "vmlinuz-6.1.0-12-arm64": b"kernel 6.1.0-12",
    "vmlinuz-6.1.0-13-arm64.old": b"old kernel",
    "initrd.img-6.1.0-9-arm64": b"initrd 6.1.0-9",
    "initrd.img-6.1.0-12-arm64": b"initrd 6.1.0-12",
    "config-6.1.0-12-arm64": b"config",
}

DEFAULT_FSTAB = (
    "UUID=1234-5678 / ext4 defaults,noatime 0 1\n"
    "/dev/vda2 /boot ext4 defaults 0 2\n"
    "tmpfs /tmp tmpfs defaults 0 0\n"
)

WANTS_DIR = Path("etc/systemd/system/multi-user.target.wants")


class FakeSystem:
    """Records commands and simulates their side effects on tmp_path."""

    def __init__(
        self,
        loop_device: Optional[str] = "/dev/loop7",
        boot_files: Optional[Dict[str, bytes]] = None,
        fstab: Optional[str] = DEFAULT_FSTAB,
        services: tuple = ("trim_miniscreen.service", "trim_wayland.service", "ssh.service"),
        failing: Optional[Dict[str, int]] = None,
        lookup_fails: bool = False,
    ):
        self.loop_device = loop_device
        self.boot_files = DEFAULT_BOOT_FILES if boot_files is None else boot_files
        self.fstab = fstab
        self.services = services
        self.failing = failing or {}
        self.lookup_fails = lookup_fails
        self.calls: List[List[str]] = []
        self.rootfs_mounts: List[Path] = []

    def run(self, command, **kwargs):
        command = [str(part) for part in command]
        self.calls.append(command)
        name = command[0]
        if name in self.failing:
            return subprocess.CompletedProcess(
                command, self.failing[name], stdout="", stderr=f"{name}: simulated failure"
            )
        stdout = ""
        lookup_ok = self.loop_device and not self.lookup_fails
        if name == "losetup" and command[1] == "-j" and lookup_ok:
            stdout = f"{self.loop_device}: []: ({command[2]})\n"
        elif name == "losetup" and command[1] == "-Pf" and self.loop_device:
            stdout = f"{self.loop_device}\n"
        elif name == "mount":
            self._populate(command[-2], Path(command[-1]))
        elif name == "dd":
            target = next(arg[3:] for arg in command if arg.startswith("of="))
            Path(target).write_bytes(b"rootfs partition bytes")
        return subprocess.CompletedProcess(command, 0, stdout=stdout, stderr="")

    def _populate(self, source: str, target: Path) -> None:
        if source.endswith("p1"):
            boot = target / "boot"
            boot.mkdir(parents=True, exist_ok=True)
            for filename, content in self.boot_files.items():
                (boot / filename).write_bytes(content)
            return
        self.rootfs_mounts.append(target)
        wants = target / WANTS_DIR
        wants.mkdir(parents=True, exist_ok=True)
        if self.fstab is not None:
            (target / "etc" / "fstab").write_text(self.fstab)
        for service in self.services:
            link = wants / service
            if not link.is_symlink():
                link.symlink_to(f"/lib/systemd/system/{service}")

    def commands(self, name: str) -> List[List[str]]:
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def fake_system(mocker):
    """FakeSystem wired into subprocess.run."""
    system = FakeSystem()
    mocker.patch("subprocess.run", side_effect=system.run)
    return system


@pytest.fixture
def image_dir(tmp_path) -> Path:
    directory = tmp_path / "images"
    directory.mkdir()
    return directory


@pytest.fixture
def workspace(tmp_path) -> Path:
    directory = tmp_path / "workspace"
    directory.mkdir()
    return directory


@pytest.fixture
def make_config(workspace, image_dir):
    """Factory for PackagerConfig pointing at the temporary directories."""

    def _make(**overrides) -> PackagerConfig:
        values = {
            "ci_mode": False,
            "workspace": workspace,
            "image_dir": image_dir,
        }
        values.update(overrides)
        return PackagerConfig(**values)

    return _make


@pytest.fixture
def source_image(image_dir) -> Path:
    """A (fake) compressed image named like a release artifact."""
    path = image_dir / "fnos_arm_20240102_99.img.xz"
    path.write_bytes(b"\xfd7zXZ\x00fake")
    return path

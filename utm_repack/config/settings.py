"""Settings file and run configuration.

The settings file holds packaging defaults that rarely change (package name
prefix, services to disable, partition numbers). The environment and command
line are read exactly once into a :class:`PackagerConfig`, which every
pipeline step receives explicitly.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from utm_repack.pipeline.source import is_ci_mode


SETTINGS_PATH_ENV = "UTM_REPACK_SETTINGS_PATH"
IMAGE_DIR_ENV = "UTM_REPACK_IMAGE_DIR"

# Environment contract shared with the CI workflow
SOURCE_FILE_ENV = "SOURCE_FILE"
VERSION_ENV = "VERSION"
CI_OUTPUT_ENV = "GITHUB_ENV"

DEFAULT_SETTINGS_PATH = Path.home() / ".config" / "utm-repack" / "settings.json"

DEFAULT_SETTINGS: dict[str, Any] = {
    "package_prefix": "fn_utm",
    "work_dir_name": "fn_utm_work",
    "disabled_services": [
        "trim_miniscreen.service",
        "trim_wayland.service",
    ],
    "boot_partition": 1,
    "root_partition": 2,
    "dd_block_size": "1M",
    "xz_threads": 0,
}


def settings_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Settings file location, overridable with $UTM_REPACK_SETTINGS_PATH."""
    environ = os.environ if environ is None else environ
    value = environ.get(SETTINGS_PATH_ENV)
    return Path(value) if value else DEFAULT_SETTINGS_PATH


def load_settings(
    path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None
) -> dict[str, Any]:
    """Return the defaults updated with the settings file, if readable.

    Without an explicit ``path`` the file is located through ``environ``.
    """
    values = dict(DEFAULT_SETTINGS)
    path = path or settings_path(environ)
    if not path.exists():
        return values
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return values
    if isinstance(data, dict):
        values.update({key: value for key, value in data.items() if key in DEFAULT_SETTINGS})
    return values


@dataclass(frozen=True)
class PackagerConfig:
    """Everything a packaging run needs, resolved once at start-up."""

    ci_mode: bool
    workspace: Path
    image_dir: Path
    source_file: Optional[Path] = None
    version: Optional[str] = None
    ci_output_file: Optional[Path] = None
    package_prefix: str = DEFAULT_SETTINGS["package_prefix"]
    work_dir_name: str = DEFAULT_SETTINGS["work_dir_name"]
    disabled_services: tuple[str, ...] = tuple(DEFAULT_SETTINGS["disabled_services"])
    boot_partition: int = DEFAULT_SETTINGS["boot_partition"]
    root_partition: int = DEFAULT_SETTINGS["root_partition"]
    dd_block_size: str = DEFAULT_SETTINGS["dd_block_size"]
    xz_threads: int = DEFAULT_SETTINGS["xz_threads"]

    @property
    def work_dir(self) -> Path:
        return self.workspace / self.work_dir_name

    @property
    def mode_label(self) -> str:
        return "cloud (GitHub Actions)" if self.ci_mode else "local"


def _non_empty(environ: Mapping[str, str], key: str) -> Optional[str]:
    value = environ.get(key, "")
    return value or None


def build_config(
    environ: Mapping[str, str],
    *,
    settings: Optional[Mapping[str, Any]] = None,
    ci_mode: Optional[bool] = None,
    source_file: Optional[str] = None,
    version: Optional[str] = None,
    image_dir: Optional[str] = None,
    workspace: Optional[str] = None,
) -> PackagerConfig:
    """Build the run configuration from the environment plus CLI overrides.

    Explicit keyword arguments (from the command line) win over the
    environment; ``settings`` defaults to :func:`load_settings`.
    """
    settings = dict(settings) if settings is not None else load_settings(environ=environ)
    if ci_mode is None:
        ci_mode = is_ci_mode(environ)

    source_value = source_file or _non_empty(environ, SOURCE_FILE_ENV)
    output_value = _non_empty(environ, CI_OUTPUT_ENV)
    workspace_path = Path(workspace) if workspace else Path.cwd()
    image_dir_value = image_dir or _non_empty(environ, IMAGE_DIR_ENV)

    return PackagerConfig(
        ci_mode=ci_mode,
        workspace=workspace_path.resolve(),
        image_dir=Path(image_dir_value).resolve() if image_dir_value else workspace_path.resolve(),
        source_file=Path(source_value) if source_value else None,
        version=version or _non_empty(environ, VERSION_ENV),
        ci_output_file=Path(output_value) if output_value else None,
        package_prefix=str(settings["package_prefix"]),
        work_dir_name=str(settings["work_dir_name"]),
        disabled_services=tuple(settings["disabled_services"]),
        boot_partition=int(settings["boot_partition"]),
        root_partition=int(settings["root_partition"]),
        dd_block_size=str(settings["dd_block_size"]),
        xz_threads=int(settings["xz_threads"]),
    )

"""Mode detection, source image discovery and version derivation."""

from __future__ import annotations

import re
import time
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Optional

from utm_repack.logging import LoggerFactory
from utm_repack.storage.exceptions import SourceImageNotFoundError

if TYPE_CHECKING:
    from utm_repack.config.settings import PackagerConfig


log = LoggerFactory.for_pipeline("source")

CI_INDICATOR_ENV = "GITHUB_ACTIONS"
IMAGE_PATTERN = "*.img.xz"

_DIGIT_RUN = re.compile(r"(\d+)")
_VERSION_TOKEN = re.compile(r"_([0-9]+)")


def is_ci_mode(environ: Mapping[str, str]) -> bool:
    """True when running inside GitHub Actions."""
    return bool(environ.get(CI_INDICATOR_ENV))


def version_sort_key(name: str) -> tuple:
    """Sort key approximating ``sort -V``: digit runs compare numerically.

    ``re.split`` with a capture group alternates text and digits, so every
    position of the key holds the same type for all names.
    """
    parts = _DIGIT_RUN.split(name)
    return tuple(int(part) if index % 2 else part for index, part in enumerate(parts))


def newest_by_version(paths) -> Optional[Path]:
    """Return the path whose file name sorts highest by version, if any."""
    candidates = sorted(paths, key=lambda path: version_sort_key(Path(path).name))
    if not candidates:
        return None
    return Path(candidates[-1])


def _scan(directory: Path) -> list[Path]:
    return sorted(path for path in directory.glob(IMAGE_PATTERN) if path.is_file())


def locate_source_image(config: PackagerConfig) -> Path:
    """Resolve the compressed image to repackage.

    Cloud mode prefers the explicit source file and otherwise takes the first
    image in the workspace. Local mode takes the highest versioned image in
    the image directory unless a source file was given explicitly.

    Raises:
        SourceImageNotFoundError: If nothing usable was found
    """
    candidate: Optional[Path]
    if config.source_file is not None:
        candidate = config.source_file
        searched: Path = config.source_file
    elif config.ci_mode:
        images = _scan(config.workspace)
        candidate = images[0] if images else None
        searched = config.workspace
    else:
        candidate = newest_by_version(_scan(config.image_dir))
        searched = config.image_dir

    if candidate is None or not candidate.is_file():
        raise SourceImageNotFoundError(searched)

    candidate = candidate.resolve()
    log.info(f"Using image: {candidate}")
    return candidate


def derive_version(
    source: Path, override: Optional[str] = None, now: Optional[float] = None
) -> str:
    """Version string for naming the package and rendering the README.

    Precedence: explicit override, the last ``_<digits>`` run in the file
    name, then ``local-<unix time>``.
    """
    if override:
        return override
    matches = _VERSION_TOKEN.findall(source.name)
    if matches:
        return matches[-1]
    timestamp = int(now if now is not None else time.time())
    return f"local-{timestamp}"

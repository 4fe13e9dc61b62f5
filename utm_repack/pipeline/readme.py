"""README rendering for the VM package."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Mapping

TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "templates" / "README.md.in"

VERSION_TOKEN = "__VER__"
KERNEL_TOKEN = "__RAW_KERNEL__"
INITRD_TOKEN = "__RAW_INITRD__"


def load_template(path: Path = TEMPLATE_PATH) -> str:
    return path.read_text(encoding="utf-8")


def substitute(template: str, values: Mapping[str, str]) -> str:
    """Replace every placeholder token with its literal value in one pass.

    Values are never rescanned, so a value that happens to contain another
    token (or backslashes) is rendered verbatim.
    """
    if not values:
        return template
    pattern = re.compile("|".join(re.escape(token) for token in values))
    return pattern.sub(lambda match: values[match.group(0)], template)


def render_readme(
    version: str, kernel_name: str, initrd_name: str, template: str | None = None
) -> str:
    if template is None:
        template = load_template()
    return substitute(
        template,
        {
            VERSION_TOKEN: version,
            KERNEL_TOKEN: kernel_name,
            INITRD_TOKEN: initrd_name,
        },
    )


def file_listing(names: Iterable[str]) -> str:
    """Appendix listing the package contents (local mode)."""
    items = "".join(f"- {name}\n" for name in names)
    return (
        "\nThis folder contains:\n"
        f"{items}\n"
        "Import these files into UTM directly.\n"
    )


def write_readme(
    target: Path,
    version: str,
    kernel_name: str,
    initrd_name: str,
    *,
    listing: Iterable[str] | None = None,
) -> Path:
    content = render_readme(version, kernel_name, initrd_name)
    if listing is not None:
        content += file_listing(listing)
    target.write_text(content, encoding="utf-8")
    return target

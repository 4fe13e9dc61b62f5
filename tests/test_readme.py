"""Tests for pipeline/readme.py - README template rendering."""

import pytest

from utm_repack.pipeline import readme


TOKENS = (readme.VERSION_TOKEN, readme.KERNEL_TOKEN, readme.INITRD_TOKEN)


def test_template_contains_all_placeholders():
    template = readme.load_template()
    for token in TOKENS:
        assert token in template


def test_render_replaces_every_placeholder():
    rendered = readme.render_readme("99", "vmlinuz-6.1.0-12-arm64", "initrd.img-6.1.0-12-arm64")

    for token in TOKENS:
        assert token not in rendered
    assert "(v99)" in rendered
    assert "vmlinuz-6.1.0-12-arm64" in rendered
    assert "initrd.img-6.1.0-12-arm64" in rendered
    assert '"root=/dev/vda rw console=tty0 console=ttyAMA0 earlycon"' in rendered


@pytest.mark.parametrize(
    "value",
    [
        r"a\1b",
        r"\g<0>",
        "path/with/slashes&amp",
        r"C:\kernels\new",
        "$1.*[x]",
    ],
)
def test_special_characters_are_rendered_literally(value):
    rendered = readme.substitute("<__VER__>", {"__VER__": value})

    assert rendered == f"<{value}>"


def test_value_containing_a_token_is_not_rescanned():
    rendered = readme.render_readme(
        "__RAW_KERNEL__", "vmlinuz-1", "initrd.img-1", template="v__VER__ / __RAW_KERNEL__"
    )

    assert rendered == "v__RAW_KERNEL__ / vmlinuz-1"


def test_substitute_replaces_all_occurrences():
    assert readme.substitute("__VER__ and __VER__", {"__VER__": "7"}) == "7 and 7"


def test_write_readme_with_listing(tmp_path):
    target = readme.write_readme(
        tmp_path / "README.md",
        "99",
        "vmlinuz-1",
        "initrd.img-1",
        listing=["rootfs.img", "vmlinuz-1", "initrd.img-1", "README.md"],
    )

    content = target.read_text(encoding="utf-8")
    assert content.startswith(readme.render_readme("99", "vmlinuz-1", "initrd.img-1"))
    assert content.rstrip().endswith("Import these files into UTM directly.")
    for name in ("rootfs.img", "vmlinuz-1", "initrd.img-1", "README.md"):
        assert f"- {name}\n" in content


def test_write_readme_without_listing(tmp_path):
    target = readme.write_readme(tmp_path / "README.md", "99", "vmlinuz-1", "initrd.img-1")

    assert "This folder contains" not in target.read_text(encoding="utf-8")

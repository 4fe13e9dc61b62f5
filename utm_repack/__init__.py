"""Repackage compressed disk images for UTM / QEMU virtual machines."""

from .__version__ import __version__

__all__ = ["__version__"]

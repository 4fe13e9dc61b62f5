"""Block device, mount and subprocess helpers used by the packaging pipeline."""

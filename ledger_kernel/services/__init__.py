"""Kernel services: flush-only writers used inside a caller-owned unit of work."""

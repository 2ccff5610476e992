"""Metrics gateway building blocks: buffered forwarding, type-based loading, dimension ordering, internal metrics and logging."""

__version__ = "0.9.10"
__all__ = ["__version__"]
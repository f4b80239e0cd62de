"""Foundation classes shared across filegen."""

from filegen.primitives.base import RichEnumMixin

__all__ = ["RichEnumMixin"]

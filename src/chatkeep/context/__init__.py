"""Rolling context assembly."""

from chatkeep.context.rolling import RollingContext

__all__ = ["RollingContext"]

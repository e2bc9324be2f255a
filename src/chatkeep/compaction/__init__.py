"""chatkeep compaction components."""

from chatkeep.compaction.engine import CompactionEngine

__all__ = ["CompactionEngine"]

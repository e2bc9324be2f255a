"""Idle-session expiry."""

from chatkeep.expiry.sweeper import ExpirySweeper, SessionDestroyer

__all__ = ["ExpirySweeper", "SessionDestroyer"]

"""
Session persistence.

Provides:
- SessionSlot: quota-limited JSON key/value slot
- SessionAutosave: debounced two-tier autosave, restore and clear
- Session document builder and reader shared with snapshot import
"""

from .autosave import QUOTA_WARNING, SessionAutosave
from .document import SESSION_KEY, BodyMode, DocumentReader, plan_session
from .slot import SessionSlot

__all__ = [
    "BodyMode",
    "DocumentReader",
    "QUOTA_WARNING",
    "SESSION_KEY",
    "SessionAutosave",
    "SessionSlot",
    "plan_session",
]

"""Session Service: per-conversation state shared by every channel adapter.

Components:
- session_store.py: SessionStore (create/append/status/linkage/eviction)
"""

from .session_store import SessionStore

__all__ = ["SessionStore"]

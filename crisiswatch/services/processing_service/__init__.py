"""Processing Service: scheduling and side effects of conversation analysis.

Components:
- router.py: SessionRouter (bus events -> per-session actors)
- scheduler.py: ProcessingScheduler (debounce, suppression, forced passes)
- action_engine.py: ActionEngine (case creation/update, alerts, escalation,
  follow-up, resources)
"""

from .action_engine import ActionEngine, FOLLOWUP_TIMEFRAMES
from .router import SessionRouter
from .scheduler import ProcessingScheduler, RecentlyProcessedCache

__all__ = [
    "ActionEngine",
    "FOLLOWUP_TIMEFRAMES",
    "SessionRouter",
    "ProcessingScheduler",
    "RecentlyProcessedCache",
]

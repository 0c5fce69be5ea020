"""Processing action and result models."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .analysis import ConversationAnalysis
from .risk import Priority


class ActionType(Enum):
    CREATE_CASE = "create_case"
    UPDATE_CASE = "update_case"
    ALERT_SUPERVISOR = "alert_supervisor"
    ESCALATE_CALL = "escalate_call"
    SEND_RESOURCES = "send_resources"
    SCHEDULE_FOLLOWUP = "schedule_followup"


@dataclass
class ProcessingAction:
    """An action decided for one pass. Mutated only while it executes."""
    action_type: ActionType
    description: str
    priority: Priority
    automated: bool
    executed: bool = False
    executed_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "action_type": self.action_type.value,
            "description": self.description,
            "priority": self.priority.value,
            "automated": self.automated,
            "executed": self.executed,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "result": self.result,
            "error": self.error,
        }


@dataclass
class ProcessingResult:
    conversation_id: str
    analysis: ConversationAnalysis
    actions: List[ProcessingAction] = field(default_factory=list)
    case_created: bool = False
    case_updated: bool = False
    errors: List[str] = field(default_factory=list)
    forced: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "analysis": self.analysis.to_dict(),
            "actions": [a.to_dict() for a in self.actions],
            "case_created": self.case_created,
            "case_updated": self.case_updated,
            "errors": list(self.errors),
            "forced": self.forced,
        }

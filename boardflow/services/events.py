"""
Automation event context.

An AutomationEvent is what item mutations, approval transitions and the
date scheduler hand to the AutomationEngine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

EVENT_TYPES = (
    "item_created",
    "item_updated",
    "item_status_changed",
    "item_deleted",
    "item_moved",
    "date_check",
    "approval_submitted",
    "approval_approved",
    "approval_rejected",
    "approval_level_completed",
)

ITEM_EVENT_TYPES = frozenset(EVENT_TYPES[:5])


@dataclass
class ApprovalEventData:
    approval_id: int | None
    level: str
    approver_id: str | None = None
    comments: str | None = None

    def to_dict(self) -> dict:
        return {
            "approvalId": self.approval_id,
            "level": self.level,
            "approverId": self.approver_id,
            "comments": self.comments,
        }


@dataclass
class AutomationEvent:
    item_id: int
    board_id: int
    user_id: str | None
    event_type: str
    old_data: dict[str, Any] | None = None
    new_data: dict[str, Any] | None = None
    changed_fields: dict[str, Any] = field(default_factory=dict)
    approval_data: ApprovalEventData | None = None

    def __post_init__(self):
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.event_type}")


# Callable that receives events raised outside the engine (approval transitions)
EventSink = Callable[[AutomationEvent], None]

"""
Approval lifecycle notifications.

Composes the user-facing messages for approval events on top of a
Notifier (NotificationService by default):

    approval_requested            → approvers of a newly eligible level
    approval_approved             → item creator
    approval_rejected             → item creator
    approval_changes_requested    → item creator (rejection with feedback)
    approval_complete             → item creator
    approval_reminder             → approver of a long-pending row
    approval_deadline_approaching → approver, shortly before the level timeout
    approval_deadline_passed      → approver, once the level timeout has passed
    approval_escalation           → level's escalation user
"""

from __future__ import annotations

import logging

from boardflow.services.notification import NotificationService

logger = logging.getLogger(__name__)

QUEUE_LINK = "/approvals/queue"


def level_label(level: str) -> str:
    """LEVEL_2 → "Level 2"."""
    return level.replace("LEVEL_", "Level ")


def item_link(item) -> str:
    workspace_id = item.board.workspace_id if item.board else None
    return f"/workspaces/{workspace_id}/boards/{item.board_id}/items/{item.id}"


class ApprovalNotifier:
    """Sends approval notifications through an injectable notifier."""

    def __init__(self, notifier=NotificationService):
        self._notifier = notifier

    def _send(self, user_id, type, title, message, link, metadata):
        if not user_id:
            return None
        return self._notifier.notify(user_id, type, title, message, link, metadata)

    def approval_requested(self, item, level, approver_ids):
        message = f'"{item.name}" requires your {level_label(level)} approval. Please review and take action.'
        for uid in dict.fromkeys(a for a in approver_ids if a):
            self._send(uid, "approval_requested", f"Approval Required - {level_label(level)}",
                       message, QUEUE_LINK, {"itemId": item.id, "approvalLevel": level})

    def approved(self, item, level, approver_id, comments=None):
        message = f'"{item.name}" has been approved at {level_label(level)} by {approver_id}'
        if comments:
            message += f". Comments: {comments}"
        self._send(item.created_by, "approval_approved", f"Approval {level_label(level)} Approved",
                   message, item_link(item), {"itemId": item.id, "approvalLevel": level})

    def rejected(self, item, level, approver_id, reason=None):
        message = (f'"{item.name}" has been rejected at {level_label(level)} by {approver_id}. '
                   f"Reason: {reason or 'No reason provided'}")
        self._send(item.created_by, "approval_rejected", f"Approval {level_label(level)} Rejected",
                   message, item_link(item), {"itemId": item.id, "approvalLevel": level})

    def changes_requested(self, item, level, approver_id, feedback):
        message = (f'"{item.name}" requires changes at {level_label(level)}. '
                   f"{approver_id} has provided feedback: {feedback}")
        self._send(item.created_by, "approval_changes_requested",
                   f"Changes Requested - {level_label(level)}",
                   message, item_link(item), {"itemId": item.id, "approvalLevel": level})

    def all_complete(self, item):
        message = f'"{item.name}" has been fully approved and is ready for processing.'
        self._send(item.created_by, "approval_complete", "All Approvals Complete",
                   message, item_link(item), {"itemId": item.id})

    def reminder(self, approval, hours_pending: int):
        item = approval.item
        message = (f'"{item.name}" has been pending your {level_label(approval.level)} approval '
                   f"for {hours_pending} hour(s). Please review and take action.")
        self._send(approval.approver_id, "approval_reminder",
                   f"Reminder: Approval Required - {level_label(approval.level)}",
                   message, QUEUE_LINK,
                   {"approvalId": approval.id, "approvalLevel": approval.level,
                    "itemId": item.id, "hoursPending": hours_pending})

    def escalation(self, approval, escalation_user_id, hours_pending: int):
        item = approval.item
        message = (f'"{item.name}" has been waiting on {level_label(approval.level)} approval '
                   f"for {hours_pending} hour(s) and was escalated to you.")
        self._send(escalation_user_id, "approval_escalation",
                   f"Escalation: {level_label(approval.level)} Approval Overdue",
                   message, QUEUE_LINK,
                   {"approvalId": approval.id, "approvalLevel": approval.level,
                    "itemId": item.id, "hoursPending": hours_pending})

    def deadline_approaching(self, approval, deadline, hours_left: float):
        item = approval.item
        message = (f'"{item.name}" has a deadline approaching in {round(hours_left)} hour(s). '
                   "Please review and take action soon.")
        self._send(approval.approver_id, "approval_deadline_approaching",
                   f"Urgent: Approval Deadline Approaching - {level_label(approval.level)}",
                   message, QUEUE_LINK,
                   {"approvalId": approval.id, "approvalLevel": approval.level,
                    "itemId": item.id, "deadline": deadline.isoformat()})

    def deadline_passed(self, approval, deadline, hours_overdue: float):
        item = approval.item
        message = (f'"{item.name}" approval deadline passed {hours_overdue:.1f} hour(s) ago. '
                   "Please review and take action immediately.")
        self._send(approval.approver_id, "approval_deadline_passed",
                   f"Overdue: Approval Deadline Passed - {level_label(approval.level)}",
                   message, QUEUE_LINK,
                   {"approvalId": approval.id, "approvalLevel": approval.level,
                    "itemId": item.id, "deadline": deadline.isoformat(),
                    "hoursOverdue": round(hours_overdue, 1)})

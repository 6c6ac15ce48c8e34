"""
Approval State Machine.

Owns the lifecycle of the per-level Approval rows of one item:

    absent ──request_approval──▶ pending ──transition──▶ approved
                                    │                        (final)
                                    └──────transition──▶ rejected

Rules enforced here:
    - A level is opened (its rows created) only when it is eligible: it is
      the lowest required level, or every earlier required level is satisfied.
    - Approving LEVEL_n (n > 1) requires an approved row at LEVEL_n-1.
    - approved never goes back to pending or rejected.
    - Parallel levels are satisfied once ``requiredApprovals`` rows are
      approved (default: every row). Sequential levels have a single row.
    - Row creation for one item is serialized by a per-item lock and is
      idempotent: a level that already has rows is never re-opened.

Levels the workflow does not require but that sit below a required level
get a synthetic approved row ("Skipped by workflow rules") so the
sequence rule holds for the levels that are required.

Approval events are handed to an injected event sink (the automation
engine in production); sink and notification failures are logged and
never fail the transition.
"""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timedelta, timezone

from flask import current_app

from boardflow.core.exceptions import (
    InvalidTransition,
    NotFoundError,
    SequenceViolation,
    ValidationError,
)
from boardflow.models.approval import APPROVAL_LEVELS, APPROVAL_STATUSES, previous_level
from boardflow.services import authorization, workflow_evaluator
from boardflow.services.approval_notifications import ApprovalNotifier
from boardflow.services.events import ApprovalEventData, AutomationEvent
from boardflow.services.notification import NotificationService
from boardflow.services.stores import SqlApprovalStore, SqlItemStore

logger = logging.getLogger(__name__)

AUTO_APPROVED_COMMENT = "Auto-approved based on workflow rules"
SKIPPED_COMMENT = "Skipped by workflow rules"
REMINDER_DEDUP_HOURS = 24
DEADLINE_DEDUP_HOURS = 12
DEADLINE_TYPES = ("approval_deadline_approaching", "approval_deadline_passed")
APPROVED_ITEM_FILTERS = {"all", "fully_approved", "partially_approved", "archived"}

_CHANGES_REQUESTED = re.compile(r"changes requested", re.IGNORECASE)
_CHANGES_PREFIX = re.compile(r"^\s*changes requested:\s*", re.IGNORECASE)

# item_id -> lock serializing row creation for that item
_item_locks: dict[int, threading.Lock] = {}
_locks_guard = threading.Lock()


def _item_lock(item_id: int) -> threading.Lock:
    with _locks_guard:
        lock = _item_locks.get(item_id)
        if lock is None:
            lock = _item_locks[item_id] = threading.Lock()
        return lock


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment


def is_changes_request(comments: str | None) -> bool:
    return bool(comments and _CHANGES_REQUESTED.search(comments))


def strip_changes_prefix(comments: str) -> str:
    return _CHANGES_PREFIX.sub("", comments, count=1).strip()


class ApprovalStateMachine:
    """Stateful only in its collaborators; safe to build per request."""

    def __init__(self, item_store=None, approval_store=None, notifier=None, event_sink=None):
        self.items = item_store or SqlItemStore()
        self.approvals = approval_store or SqlApprovalStore()
        self.notifier = notifier or ApprovalNotifier(NotificationService)
        self.event_sink = event_sink

    # ── helpers ──────────────────────────────────────────────────────────

    def _get_item(self, item_id, include_deleted=False):
        item = self.items.get_item(item_id, include_deleted=include_deleted)
        if item is None:
            raise NotFoundError(resource="Item", resource_id=item_id)
        return item

    def _rows_by_level(self, item_id) -> dict[str, list]:
        grouped: dict[str, list] = {lv: [] for lv in APPROVAL_LEVELS}
        for row in self.approvals.list_for_item(item_id):
            grouped.setdefault(row.level, []).append(row)
        return grouped

    @staticmethod
    def level_satisfied(rows, level_config) -> bool:
        if not rows:
            return False
        approved = sum(1 for r in rows if r.status == "approved")
        if level_config is not None and level_config.is_parallel:
            needed = min(level_config.required_approvals or len(rows), len(rows))
            return approved >= needed
        return approved >= 1

    def _create_level_rows(self, item, level, evaluation, config) -> list:
        approvers = [a for a in evaluation.assigned_approvers.get(level, []) if a]
        lv_config = config.level_config(level)
        if lv_config is not None and lv_config.is_parallel:
            targets = list(dict.fromkeys(approvers))
        else:
            targets = approvers[:1]
        created = []
        for approver_id in targets or [None]:
            row = self.approvals.create(item.id, level, approver_id)
            if row is not None:
                created.append(row)
        logger.info("Opened %s for item %s (%d row(s))", level, item.id, len(created),
                    extra={"item_id": item.id})
        return created

    def _placeholder(self, item, level) -> None:
        self.approvals.create(item.id, level, None, status="approved", comments=SKIPPED_COMMENT)

    def _open_eligible_levels(self, item, evaluation, config) -> list:
        """Create rows for the next eligible required level. Caller holds the item lock."""
        required = evaluation.required_levels
        if not required:
            return []
        rows = self._rows_by_level(item.id)
        if any(r.status == "rejected" for level_rows in rows.values() for r in level_rows):
            return []

        previous_required = None
        for level in required:
            if rows.get(level):
                if not self.level_satisfied(rows[level], config.level_config(level)):
                    return []
                previous_required = level
                continue
            start = APPROVAL_LEVELS.index(previous_required) + 1 if previous_required else 0
            for gap in APPROVAL_LEVELS[start:APPROVAL_LEVELS.index(level)]:
                if not rows.get(gap):
                    self._placeholder(item, gap)
            return self._create_level_rows(item, level, evaluation, config)
        return []

    def _emit(self, item, event_type, approval=None, level=None, actor_id=None, comments=None):
        if self.event_sink is None:
            return
        try:
            data = ApprovalEventData(
                approval_id=approval.id if approval is not None else None,
                level=level or approval.level,
                approver_id=approval.approver_id if approval is not None else None,
                comments=comments if comments is not None else (approval.comments if approval else None),
            )
            self.event_sink(AutomationEvent(
                item_id=item.id,
                board_id=item.board_id,
                user_id=actor_id,
                event_type=event_type,
                approval_data=data,
            ))
        except Exception:
            logger.exception("Approval event %s failed for item %s", event_type, item.id,
                             extra={"item_id": item.id, "event_type": event_type})

    def _notify(self, fn, *args):
        try:
            fn(*args)
        except Exception:
            logger.exception("Approval notification %s failed", getattr(fn, "__name__", fn))

    def _announce_opened(self, item, created, actor_id):
        for row in created:
            self._emit(item, "approval_submitted", approval=row, actor_id=actor_id)
        by_level: dict[str, list] = {}
        for row in created:
            by_level.setdefault(row.level, []).append(row.approver_id)
        for level, approver_ids in by_level.items():
            self._notify(self.notifier.approval_requested, item, level, approver_ids)

    # ── request ──────────────────────────────────────────────────────────

    def request_approval(self, item_id, actor_id) -> list:
        """Open the approval flow for an item. Returns the rows created by this call."""
        item = self._get_item(item_id)
        authorization.require(actor_id, item, "item.read")

        with _item_lock(item.id):
            evaluation, config = workflow_evaluator.evaluate_item(item, self.items)
            if evaluation.auto_approved:
                existing = self._rows_by_level(item.id)
                created = []
                for level in APPROVAL_LEVELS:
                    if existing.get(level):
                        continue
                    row = self.approvals.create(item.id, level, actor_id, status="approved",
                                                comments=AUTO_APPROVED_COMMENT)
                    if row is not None:
                        created.append(row)
                logger.info("Item %s auto-approved (%d level(s) synthesized)", item.id, len(created),
                            extra={"item_id": item.id})
            else:
                created = self._open_eligible_levels(item, evaluation, config)

        if evaluation.auto_approved:
            if created:
                self._notify(self.notifier.all_complete, item)
        else:
            self._announce_opened(item, [r for r in created if r.status == "pending"], actor_id)
        return created

    # ── transition ───────────────────────────────────────────────────────

    def transition(self, approval_id, new_status, actor_id, comments=None):
        approval = self.approvals.get(approval_id)
        if approval is None:
            raise NotFoundError(resource="Approval", resource_id=approval_id)

        authorization.require(actor_id, approval, "approval.transition")

        if new_status not in APPROVAL_STATUSES:
            raise InvalidTransition(approval.status, new_status)
        if approval.status == "approved" and new_status != "approved":
            raise InvalidTransition(approval.status, new_status)

        if new_status == "approved":
            prev = previous_level(approval.level)
            if prev is not None:
                prev_rows = self.approvals.list_for_level(approval.item_id, prev)
                if not any(r.status == "approved" for r in prev_rows):
                    raise SequenceViolation(approval.level, prev)

        item = self._get_item(approval.item_id, include_deleted=True)
        config = workflow_evaluator.get_workflow_config(item.board_id)
        lv_config = config.level_config(approval.level)
        level_completed = False
        opened = []
        fully_approved = False

        with _item_lock(item.id):
            was_satisfied = self.level_satisfied(
                self.approvals.list_for_level(item.id, approval.level), lv_config)

            self.approvals.update(
                approval,
                status=new_status,
                comments=comments,
                approver_id=approval.approver_id or actor_id,
                approved_at=None if new_status == "pending" else datetime.now(timezone.utc),
            )

            if new_status == "approved":
                level_rows = self.approvals.list_for_level(item.id, approval.level)
                level_completed = not was_satisfied and self.level_satisfied(level_rows, lv_config)
                if level_completed:
                    evaluation, config = workflow_evaluator.evaluate_item(item, self.items)
                    opened = self._open_eligible_levels(item, evaluation, config)
                    if not opened:
                        fully_approved = self._overall(item)["overallStatus"] == "approved"

        logger.info("Approval %s -> %s by %s", approval.id, new_status, actor_id,
                    extra={"approval_id": approval.id, "item_id": item.id})

        if new_status == "approved":
            self._emit(item, "approval_approved", approval=approval, actor_id=actor_id)
            self._notify(self.notifier.approved, item, approval.level, approval.approver_id, comments)
            if level_completed:
                self._emit(item, "approval_level_completed", level=approval.level,
                           actor_id=actor_id, comments=comments)
            self._announce_opened(item, [r for r in opened if r.status == "pending"], actor_id)
            if fully_approved:
                self._notify(self.notifier.all_complete, item)
        elif new_status == "rejected":
            self._emit(item, "approval_rejected", approval=approval, actor_id=actor_id)
            if is_changes_request(comments):
                self._notify(self.notifier.changes_requested, item, approval.level,
                             approval.approver_id, strip_changes_prefix(comments))
            else:
                self._notify(self.notifier.rejected, item, approval.level, approval.approver_id, comments)

        return approval

    # ── status ───────────────────────────────────────────────────────────

    def _overall(self, item) -> dict:
        rows = self._rows_by_level(item.id)
        config = workflow_evaluator.get_workflow_config(item.board_id)
        summary = {}
        for level in APPROVAL_LEVELS:
            level_rows = rows.get(level) or []
            if not level_rows:
                summary[level] = None
            elif any(r.status == "rejected" for r in level_rows):
                summary[level] = "rejected"
            elif self.level_satisfied(level_rows, config.level_config(level)):
                summary[level] = "approved"
            else:
                summary[level] = "pending"

        existing = [lv for lv in APPROVAL_LEVELS if summary[lv] is not None]
        if not existing:
            overall, complete = "not_submitted", False
        elif "rejected" in summary.values():
            overall, complete = "rejected", True
        else:
            highest = existing[-1]
            if summary[highest] == "approved":
                evaluation, _ = workflow_evaluator.evaluate_item(item, self.items)
                later = APPROVAL_LEVELS[APPROVAL_LEVELS.index(highest) + 1:]
                further = not evaluation.auto_approved and any(
                    lv in evaluation.required_levels for lv in later)
                overall, complete = ("in_progress", False) if further else ("approved", True)
            else:
                lower_cleared = any(
                    summary[lv] == "approved"
                    and any(r.comments != SKIPPED_COMMENT for r in rows[lv])
                    for lv in existing[:-1]
                )
                overall, complete = ("in_progress" if lower_cleared else "pending"), False

        return {
            "itemId": item.id,
            "level1": summary["LEVEL_1"],
            "level2": summary["LEVEL_2"],
            "level3": summary["LEVEL_3"],
            "overallStatus": overall,
            "isComplete": complete,
            "approvals": [r.to_dict() for lv in APPROVAL_LEVELS for r in rows.get(lv) or []],
        }

    def get_status(self, item_id, actor_id=None) -> dict:
        item = self._get_item(item_id, include_deleted=True)
        if actor_id is not None:
            authorization.require(actor_id, item, "item.read")
        return self._overall(item)

    # ── administration ───────────────────────────────────────────────────

    def list_pending_for(self, actor_id) -> list:
        """Pending approvals the actor is assigned to or may act on by role."""
        result = []
        for row in self.approvals.list_pending():
            if row.item is None or row.item.is_deleted:
                continue
            if authorization.authorize(actor_id, row, "approval.transition"):
                result.append(row)
        return result

    def delete_approval(self, approval_id, actor_id) -> None:
        approval = self.approvals.get(approval_id)
        if approval is None:
            raise NotFoundError(resource="Approval", resource_id=approval_id)
        authorization.require(actor_id, approval, "approval.delete")
        self.approvals.delete(approval)
        logger.info("Approval %s deleted by %s", approval_id, actor_id,
                    extra={"approval_id": approval_id})

    def send_reminders(self, hours=None, now=None) -> dict:
        """Remind approvers of rows pending longer than ``hours``; once per day per row."""
        if hours is None:
            hours = current_app.config.get("APPROVAL_REMINDER_HOURS", 24)
        now = now or datetime.now(timezone.utc)
        results = {"pending": 0, "reminded": 0}
        for row in self.approvals.list_pending(created_before=now - timedelta(hours=hours)):
            results["pending"] += 1
            if not row.approver_id or row.item is None or row.item.is_deleted:
                continue
            if NotificationService.sent_within(
                row.approver_id, "approval_reminder",
                hours=REMINDER_DEDUP_HOURS, metadata_key="approvalId", metadata_value=row.id,
            ):
                continue
            hours_pending = int((now - _as_utc(row.created_at)).total_seconds() // 3600)
            self._notify(self.notifier.reminder, row, hours_pending)
            results["reminded"] += 1
        return results

    def send_deadline_alerts(self, hours_before=None, now=None) -> dict:
        """Warn approvers whose row is within ``hours_before`` of its level timeout,
        or already past it. Deduplicated per row."""
        if hours_before is None:
            hours_before = current_app.config.get("APPROVAL_DEADLINE_ALERT_HOURS", 24)
        now = now or datetime.now(timezone.utc)
        results = {"checked": 0, "approaching": 0, "overdue": 0}
        configs = {}
        for row in self.approvals.list_pending():
            if not row.approver_id or row.item is None or row.item.is_deleted:
                continue
            board_id = row.item.board_id
            if board_id not in configs:
                configs[board_id] = workflow_evaluator.get_workflow_config(board_id)
            lv_config = configs[board_id].level_config(row.level)
            if lv_config is None or not lv_config.timeout_hours:
                continue
            results["checked"] += 1

            deadline = _as_utc(row.created_at) + timedelta(hours=lv_config.timeout_hours)
            hours_left = (deadline - now).total_seconds() / 3600
            if 0 < hours_left <= hours_before:
                if NotificationService.sent_within(
                    row.approver_id, DEADLINE_TYPES,
                    hours=DEADLINE_DEDUP_HOURS, metadata_key="approvalId", metadata_value=row.id,
                ):
                    continue
                self._notify(self.notifier.deadline_approaching, row, deadline, hours_left)
                results["approaching"] += 1
            elif hours_left <= 0:
                if NotificationService.sent_within(
                    row.approver_id, "approval_deadline_passed",
                    hours=REMINDER_DEDUP_HOURS, metadata_key="approvalId", metadata_value=row.id,
                ):
                    continue
                self._notify(self.notifier.deadline_passed, row, deadline, -hours_left)
                results["overdue"] += 1
        return results

    # ── history & archive ────────────────────────────────────────────────

    def history(self, item_id, actor_id=None, now=None) -> dict:
        """Approval timeline of an item.

        ``timeTaken`` (hours) runs from row creation to its decision, or to
        ``now`` while the row is pending. ``totalTime`` sums decided rows.
        """
        item = self._get_item(item_id, include_deleted=True)
        if actor_id is not None:
            authorization.require(actor_id, item, "item.read")
        now = now or datetime.now(timezone.utc)
        rows = sorted(self.approvals.list_for_item(item.id),
                      key=lambda r: (_as_utc(r.created_at), r.id))

        entries = []
        total = 0.0
        for row in rows:
            created = _as_utc(row.created_at)
            if row.approved_at is not None:
                taken = (_as_utc(row.approved_at) - created).total_seconds() / 3600
                total += taken
            elif row.status == "pending":
                taken = (now - created).total_seconds() / 3600
            else:
                taken = None
            entries.append({**row.to_dict(),
                            "timeTaken": round(taken, 2) if taken is not None else None})

        return {
            "itemId": item.id,
            "itemName": item.name,
            "entries": entries,
            "totalTime": round(total, 2) if total > 0 else None,
        }

    def list_approved_items(self, actor_id, *, board_id=None, status_filter="all", search=None,
                            page=1, limit=50) -> dict:
        """Items with an approval flow that the actor can see, newest first."""
        if status_filter not in APPROVED_ITEM_FILTERS:
            raise ValidationError(f"Unknown filter: {status_filter}",
                                  details={"filter": sorted(APPROVED_ITEM_FILTERS)})
        candidates = self.approvals.list_items_with_approvals(
            archived=status_filter == "archived", board_id=board_id, search=search)

        matched = []
        for item in candidates:
            if not authorization.authorize(actor_id, item, "item.read"):
                continue
            status = self._overall(item)
            fully = status["overallStatus"] == "approved" and status["isComplete"]
            partially = not fully and (
                status["overallStatus"] == "in_progress"
                or (status["overallStatus"] != "rejected"
                    and "approved" in (status["level1"], status["level2"], status["level3"]))
            )
            if status_filter == "fully_approved" and not fully:
                continue
            if status_filter == "partially_approved" and not partially:
                continue
            matched.append({
                **item.to_dict(include_cells=False),
                "approvalStatus": {
                    "level1": status["level1"],
                    "level2": status["level2"],
                    "level3": status["level3"],
                    "overallStatus": status["overallStatus"],
                    "isFullyApproved": fully,
                    "isPartiallyApproved": partially,
                },
            })

        start = (page - 1) * limit
        return {"items": matched[start:start + limit], "total": len(matched)}

    def archive_if_complete(self, item_id, actor_id=None) -> bool:
        """Soft-delete an item once its approval flow is fully approved."""
        item = self._get_item(item_id)
        if actor_id is not None:
            authorization.require(actor_id, item, "item.archive")
        if self._overall(item)["overallStatus"] != "approved":
            return False
        self.items.soft_delete_item(item)
        logger.info("Item %s archived after full approval", item.id, extra={"item_id": item.id})
        return True

    def restore_item(self, item_id, actor_id=None) -> bool:
        """Undo an archive. Returns False when the item is not archived."""
        item = self._get_item(item_id, include_deleted=True)
        if actor_id is not None:
            authorization.require(actor_id, item, "item.archive")
        if not item.is_deleted:
            return False
        self.items.restore_item(item)
        logger.info("Item %s restored by %s", item.id, actor_id, extra={"item_id": item.id})
        return True

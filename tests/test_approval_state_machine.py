"""
Approval State Machine.

Tests cover:
  - three-level scenario with a parallel LEVEL_2 (requiredApprovals=1)
  - requestApproval idempotence, also under concurrent calls
  - sequence, authorization and transition guards
  - rejection, changes requested and reset to pending
  - auto-approve and skip_level routing
  - reminders, deadline alerts, deletion and the pending queue
  - history, archive/restore and the approved-items listing
"""

import itertools
import threading
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from boardflow.core.exceptions import (
    AccessDenied,
    InvalidTransition,
    NotFoundError,
    SequenceViolation,
    ValidationError,
)
from boardflow.models import db
from boardflow.models.approval import Approval
from boardflow.models.board import Item
from boardflow.models.notification import Notification
from boardflow.services import authorization, workflow_evaluator
from boardflow.services.approval_state_machine import (
    AUTO_APPROVED_COMMENT,
    SKIPPED_COMMENT,
    ApprovalStateMachine,
)
from boardflow.services.stores import SqlApprovalStore, SqlItemStore

from conftest import make_board, make_item

SCENARIO_LEVELS = [
    {"level": "LEVEL_1", "name": "Manager", "approvers": ["A"]},
    {"level": "LEVEL_2", "name": "Directors", "approvers": ["B", "C"], "isParallel": True,
     "requiredApprovals": 1},
    {"level": "LEVEL_3", "name": "Finance", "approvers": ["D"]},
]
AMOUNT_RULE = {
    "id": "amount-10k",
    "name": "Amount > 10,000 requires Level 1",
    "type": "amount",
    "condition": {"type": "greater_than", "field": "amount", "value": 10000},
    "action": {"type": "require_level", "level": "LEVEL_1"},
    "priority": 100,
}


def _board(workspace, rules=None, levels=None):
    board = make_board(workspace, name="Purchases", columns=[("Amount", "number"), ("Owner", "people")])
    workflow_evaluator.save_config(board, {
        "name": "Purchase approvals",
        "levels": levels or SCENARIO_LEVELS,
        "rules": [AMOUNT_RULE] + list(rules or []),
    }, "owner")
    return board


def _rows(item, level=None):
    q = Approval.query.filter_by(item_id=item.id)
    if level:
        q = q.filter_by(level=level)
    return q.order_by(Approval.id).all()


def _notifications(user_id, type):
    return Notification.query.filter_by(user_id=user_id, type=type).all()


class StaticItemStore:
    """Serves one item and its snapshot without touching the database."""

    def __init__(self, item, snapshot):
        self.item = item
        self._snapshot = snapshot

    def get_item(self, item_id, include_deleted=False):
        return self.item if item_id == self.item.id else None

    def snapshot(self, item):
        return dict(self._snapshot)


class SlowApprovalStore:
    """In-memory approval rows with a slow, unguarded create."""

    def __init__(self):
        self.rows = []
        self._ids = itertools.count(1)

    def create(self, item_id, level, approver_id, *, status="pending", comments=None):
        time.sleep(0.02)
        row = SimpleNamespace(id=next(self._ids), item_id=item_id, level=level,
                              approver_id=approver_id, status=status, comments=comments)
        self.rows.append(row)
        return row

    def list_for_item(self, item_id):
        return [r for r in self.rows if r.item_id == item_id]


class SilentNotifier:
    def approval_requested(self, item, level, approver_ids):
        pass

    def all_complete(self, item):
        pass


@pytest.fixture()
def events():
    return []


@pytest.fixture()
def machine(events):
    return ApprovalStateMachine(event_sink=events.append)


@pytest.fixture()
def item(workspace):
    board = _board(workspace)
    return make_item(board, name="Laptops", cells={"Amount": 15000})


# ═════════════════════════════════════════════════════════════════════════
# SCENARIO
# ═════════════════════════════════════════════════════════════════════════

class TestThreeLevelScenario:
    def test_full_flow(self, machine, item, events):
        created = machine.request_approval(item.id, "creator")
        assert [(r.level, r.approver_id, r.status) for r in created] == [("LEVEL_1", "A", "pending")]
        assert _rows(item, "LEVEL_2") == [] and _rows(item, "LEVEL_3") == []
        assert machine.get_status(item.id)["overallStatus"] == "pending"

        machine.transition(created[0].id, "approved", "A")
        l2 = _rows(item, "LEVEL_2")
        assert sorted((r.approver_id, r.status) for r in l2) == [("B", "pending"), ("C", "pending")]
        assert _rows(item, "LEVEL_3") == []

        events.clear()
        b_row = next(r for r in l2 if r.approver_id == "B")
        machine.transition(b_row.id, "approved", "B")
        completed = [e for e in events if e.event_type == "approval_level_completed"]
        assert len(completed) == 1 and completed[0].approval_data.level == "LEVEL_2"
        l3 = _rows(item, "LEVEL_3")
        assert [(r.approver_id, r.status) for r in l3] == [("D", "pending")]
        status = machine.get_status(item.id)
        assert status["overallStatus"] == "in_progress"
        assert status["isComplete"] is False

        machine.transition(l3[0].id, "approved", "D")
        status = machine.get_status(item.id)
        assert status["overallStatus"] == "approved"
        assert status["isComplete"] is True
        assert (status["level1"], status["level2"], status["level3"]) == ("approved",) * 3
        assert len(_rows(item)) == 4
        assert len(_notifications("creator", "approval_complete")) == 1

    def test_second_parallel_approval_does_not_complete_level_again(self, machine, item, events):
        first = machine.request_approval(item.id, "creator")[0]
        machine.transition(first.id, "approved", "A")
        b_row, c_row = sorted(_rows(item, "LEVEL_2"), key=lambda r: r.approver_id)
        machine.transition(b_row.id, "approved", "B")

        events.clear()
        machine.transition(c_row.id, "approved", "C")
        assert [e.event_type for e in events] == ["approval_approved"]
        assert len(_rows(item, "LEVEL_3")) == 1

    def test_requested_approvers_are_notified(self, machine, item):
        machine.request_approval(item.id, "creator")
        notif = _notifications("A", "approval_requested")
        assert len(notif) == 1
        assert notif[0].meta == {"itemId": item.id, "approvalLevel": "LEVEL_1"}

    def test_events_carry_approval_data(self, machine, item, events):
        row = machine.request_approval(item.id, "creator")[0]
        submitted = [e for e in events if e.event_type == "approval_submitted"]
        assert len(submitted) == 1
        assert submitted[0].approval_data.approval_id == row.id
        assert submitted[0].board_id == item.board_id


# ═════════════════════════════════════════════════════════════════════════
# REQUEST
# ═════════════════════════════════════════════════════════════════════════

class TestRequestApproval:
    def test_request_is_idempotent(self, machine, item):
        machine.request_approval(item.id, "creator")
        assert machine.request_approval(item.id, "creator") == []
        assert len(_rows(item)) == 1

    def test_concurrent_requests_create_each_row_once(self, monkeypatch, item):
        workflow_evaluator.get_workflow_config(item.board_id)
        monkeypatch.setattr(authorization, "require", lambda *args: None)
        snapshot = SqlItemStore().snapshot(item)
        plain_item = SimpleNamespace(id=item.id, board_id=item.board_id, name=item.name,
                                     created_by=item.created_by, is_deleted=False)
        approvals = SlowApprovalStore()
        machine = ApprovalStateMachine(
            item_store=StaticItemStore(plain_item, snapshot),
            approval_store=approvals,
            notifier=SilentNotifier(),
        )

        barrier = threading.Barrier(6)
        results, errors = [], []

        def request():
            barrier.wait()
            try:
                results.append(machine.request_approval(item.id, "creator"))
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=request) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert [(r.level, r.approver_id) for r in approvals.rows] == [("LEVEL_1", "A")]
        assert sum(len(created) for created in results) == 1

    def test_not_submitted_before_request(self, machine, item):
        status = machine.get_status(item.id)
        assert status["overallStatus"] == "not_submitted"
        assert status["approvals"] == []

    def test_unknown_item(self, machine):
        with pytest.raises(NotFoundError):
            machine.request_approval(424242, "creator")

    def test_non_member_cannot_request(self, machine, item):
        with pytest.raises(AccessDenied):
            machine.request_approval(item.id, "stranger")

    def test_auto_approve_synthesizes_all_levels(self, machine, workspace):
        board = _board(workspace, rules=[{
            "id": "petty", "name": "Petty cash", "condition":
                {"type": "less_than", "field": "amount", "value": 100},
            "action": {"type": "auto_approve"},
        }])
        item = make_item(board, cells={"Amount": 40})

        created = machine.request_approval(item.id, "creator")
        assert [r.level for r in created] == ["LEVEL_1", "LEVEL_2", "LEVEL_3"]
        assert all(r.status == "approved" for r in created)
        assert all(r.comments == AUTO_APPROVED_COMMENT and r.approver_id == "creator" for r in created)
        assert machine.get_status(item.id)["overallStatus"] == "approved"
        assert len(_notifications("creator", "approval_complete")) == 1

    def test_skip_level_creates_placeholders_below_required_level(self, machine, workspace):
        board = _board(workspace, rules=[{
            "id": "fast-track", "name": "Fast track", "condition":
                {"type": "equals", "field": "status", "value": "Fast"},
            "action": {"type": "skip_level", "skipToLevel": "LEVEL_3"},
            "priority": 200,
        }])
        item = make_item(board, status="Fast", cells={"Amount": 500})

        created = machine.request_approval(item.id, "creator")
        assert [(r.level, r.approver_id) for r in created] == [("LEVEL_3", "D")]
        placeholders = _rows(item, "LEVEL_1") + _rows(item, "LEVEL_2")
        assert [r.comments for r in placeholders] == [SKIPPED_COMMENT, SKIPPED_COMMENT]
        assert all(r.status == "approved" for r in placeholders)
        assert machine.get_status(item.id)["overallStatus"] == "pending"

        machine.transition(created[0].id, "approved", "D")
        assert machine.get_status(item.id)["overallStatus"] == "approved"


# ═════════════════════════════════════════════════════════════════════════
# TRANSITION GUARDS
# ═════════════════════════════════════════════════════════════════════════

class TestTransitionGuards:
    def test_sequence_violation(self, machine, item):
        machine.request_approval(item.id, "creator")
        early = SqlApprovalStore().create(item.id, "LEVEL_2", "B")
        with pytest.raises(SequenceViolation):
            machine.transition(early.id, "approved", "B")
        assert early.status == "pending"

    def test_only_assigned_approver_or_elevated_role(self, machine, item):
        row = machine.request_approval(item.id, "creator")[0]
        with pytest.raises(AccessDenied):
            machine.transition(row.id, "approved", "E")
        machine.transition(row.id, "approved", "finance")
        assert row.status == "approved"
        assert row.approver_id == "A"

    def test_approved_is_final(self, machine, item):
        row = machine.request_approval(item.id, "creator")[0]
        machine.transition(row.id, "approved", "A")
        for status in ("rejected", "pending"):
            with pytest.raises(InvalidTransition):
                machine.transition(row.id, status, "A")

    def test_unknown_status(self, machine, item):
        row = machine.request_approval(item.id, "creator")[0]
        with pytest.raises(InvalidTransition):
            machine.transition(row.id, "escalated", "A")

    def test_unknown_approval(self, machine):
        with pytest.raises(NotFoundError):
            machine.transition(99999, "approved", "A")

    def test_event_sink_failure_does_not_fail_transition(self, item):
        def broken_sink(event):
            raise RuntimeError("engine down")

        machine = ApprovalStateMachine(event_sink=broken_sink)
        row = machine.request_approval(item.id, "creator")[0]
        assert machine.transition(row.id, "approved", "A").status == "approved"


# ═════════════════════════════════════════════════════════════════════════
# REJECTION
# ═════════════════════════════════════════════════════════════════════════

class TestRejection:
    def test_reject_notifies_creator_and_blocks_next_level(self, machine, item):
        row = machine.request_approval(item.id, "creator")[0]
        machine.transition(row.id, "rejected", "A", "Budget exhausted")

        status = machine.get_status(item.id)
        assert status["overallStatus"] == "rejected"
        assert status["isComplete"] is True
        notif = _notifications("creator", "approval_rejected")
        assert len(notif) == 1 and "Budget exhausted" in notif[0].message
        assert _rows(item, "LEVEL_2") == []

    def test_changes_requested_convention(self, machine, item):
        row = machine.request_approval(item.id, "creator")[0]
        machine.transition(row.id, "rejected", "A", "Changes requested: attach the quote")

        assert _notifications("creator", "approval_rejected") == []
        notif = _notifications("creator", "approval_changes_requested")
        assert len(notif) == 1
        assert notif[0].message.endswith("attach the quote")
        assert row.status == "rejected"

    def test_rejected_can_be_reset_to_pending_and_approved(self, machine, item):
        row = machine.request_approval(item.id, "creator")[0]
        machine.transition(row.id, "rejected", "A", "No")
        machine.transition(row.id, "pending", "A")
        assert row.approved_at is None
        machine.transition(row.id, "approved", "A")
        assert len(_rows(item, "LEVEL_2")) == 2


# ═════════════════════════════════════════════════════════════════════════
# ADMINISTRATION
# ═════════════════════════════════════════════════════════════════════════

class TestAdministration:
    def test_pending_queue_by_assignment_and_role(self, machine, item):
        row = machine.request_approval(item.id, "creator")[0]
        assert [r.id for r in machine.list_pending_for("A")] == [row.id]
        assert [r.id for r in machine.list_pending_for("finance")] == [row.id]
        assert machine.list_pending_for("B") == []

    def test_delete_approval_permissions(self, machine, item):
        row = machine.request_approval(item.id, "creator")[0]
        with pytest.raises(AccessDenied):
            machine.delete_approval(row.id, "E")
        machine.delete_approval(row.id, "creator")
        assert _rows(item) == []

    def test_reminders_are_sent_once_per_day(self, machine, item):
        machine.request_approval(item.id, "creator")
        later = datetime.now(timezone.utc) + timedelta(hours=30)

        assert machine.send_reminders(hours=24, now=later) == {"pending": 1, "reminded": 1}
        assert machine.send_reminders(hours=24, now=later) == {"pending": 1, "reminded": 0}
        assert len(_notifications("A", "approval_reminder")) == 1

    def test_no_reminder_for_recent_rows(self, machine, item):
        machine.request_approval(item.id, "creator")
        assert machine.send_reminders(hours=24)["reminded"] == 0

    def test_archive_only_after_full_approval(self, machine, item):
        row = machine.request_approval(item.id, "creator")[0]
        assert machine.archive_if_complete(item.id) is False

        machine.transition(row.id, "approved", "A")
        b_row = next(r for r in _rows(item, "LEVEL_2") if r.approver_id == "B")
        machine.transition(b_row.id, "approved", "B")
        machine.transition(_rows(item, "LEVEL_3")[0].id, "approved", "D")

        assert machine.archive_if_complete(item.id) is True
        assert db.session.get(Item, item.id).is_deleted


# ═════════════════════════════════════════════════════════════════════════
# HISTORY, ARCHIVE & APPROVED ITEMS
# ═════════════════════════════════════════════════════════════════════════

T0 = datetime(2024, 6, 10, 8, 0, tzinfo=timezone.utc)


def _approve_all(machine, item):
    machine.transition(_rows(item, "LEVEL_1")[0].id, "approved", "A")
    b_row = next(r for r in _rows(item, "LEVEL_2") if r.approver_id == "B")
    machine.transition(b_row.id, "approved", "B")
    machine.transition(_rows(item, "LEVEL_3")[0].id, "approved", "D")


class TestHistory:
    def test_time_taken_per_row_and_total(self, machine, item):
        first = machine.request_approval(item.id, "creator")[0]
        machine.transition(first.id, "approved", "A")
        first = db.session.get(Approval, first.id)
        first.created_at = T0
        first.approved_at = T0 + timedelta(hours=5)
        for row in _rows(item, "LEVEL_2"):
            row.created_at = T0 + timedelta(hours=5)
        db.session.commit()

        history = machine.history(item.id, "creator", now=T0 + timedelta(hours=7))

        assert history["itemId"] == item.id
        assert history["itemName"] == "Laptops"
        assert [(e["level"], e["approver_id"], e["timeTaken"]) for e in history["entries"]] == [
            ("LEVEL_1", "A", 5.0), ("LEVEL_2", "B", 2.0), ("LEVEL_2", "C", 2.0),
        ]
        assert history["totalTime"] == 5.0

    def test_empty_history(self, machine, item):
        history = machine.history(item.id)
        assert history["entries"] == []
        assert history["totalTime"] is None

    def test_history_requires_membership(self, machine, item):
        with pytest.raises(AccessDenied):
            machine.history(item.id, "stranger")


class TestArchiveAndRestore:
    def test_archive_limited_to_creator_and_admins(self, machine, item):
        machine.request_approval(item.id, "creator")
        _approve_all(machine, item)

        with pytest.raises(AccessDenied):
            machine.archive_if_complete(item.id, "E")
        assert not db.session.get(Item, item.id).is_deleted

        assert machine.archive_if_complete(item.id, "creator") is True
        assert db.session.get(Item, item.id).is_deleted

    def test_restore_archived_item(self, machine, item):
        machine.request_approval(item.id, "creator")
        _approve_all(machine, item)
        machine.archive_if_complete(item.id, "admin")

        with pytest.raises(AccessDenied):
            machine.restore_item(item.id, "E")
        assert machine.restore_item(item.id, "admin") is True
        assert not db.session.get(Item, item.id).is_deleted
        assert machine.restore_item(item.id, "admin") is False

    def test_restore_unknown_item(self, machine):
        with pytest.raises(NotFoundError):
            machine.restore_item(9999, "admin")


class TestApprovedItems:
    @pytest.fixture()
    def items(self, machine, item):
        machine.request_approval(item.id, "creator")
        _approve_all(machine, item)
        pending = make_item(item.board, name="Chairs", cells={"Amount": 15000})
        machine.request_approval(pending.id, "creator")
        partial = make_item(item.board, name="Monitors", cells={"Amount": 15000})
        machine.request_approval(partial.id, "creator")
        machine.transition(_rows(partial, "LEVEL_1")[0].id, "approved", "A")
        make_item(item.board, name="Desks", cells={"Amount": 15000})
        return item, pending, partial

    def test_lists_items_with_approvals_newest_first(self, machine, items):
        done, pending, partial = items
        result = machine.list_approved_items("A")
        assert [i["id"] for i in result["items"]] == [partial.id, pending.id, done.id]
        assert result["total"] == 3
        flags = {i["id"]: i["approvalStatus"] for i in result["items"]}
        assert flags[done.id]["isFullyApproved"] is True
        assert flags[partial.id]["isPartiallyApproved"] is True
        assert flags[pending.id]["overallStatus"] == "pending"
        assert flags[pending.id]["isPartiallyApproved"] is False

    def test_filters(self, machine, items):
        done, pending, partial = items
        def ids(**kwargs):
            return [i["id"] for i in machine.list_approved_items("A", **kwargs)["items"]]

        assert ids(status_filter="fully_approved") == [done.id]
        assert ids(status_filter="partially_approved") == [partial.id]
        assert ids(search="mon") == [partial.id]
        assert ids(status_filter="archived") == []

        machine.archive_if_complete(done.id, "creator")
        assert ids(status_filter="archived") == [done.id]
        assert done.id not in ids()

    def test_pagination(self, machine, items):
        done, _, _ = items
        result = machine.list_approved_items("A", page=2, limit=2)
        assert [i["id"] for i in result["items"]] == [done.id]
        assert result["total"] == 3

    def test_non_member_sees_nothing(self, machine, items):
        assert machine.list_approved_items("stranger") == {"items": [], "total": 0}

    def test_unknown_filter(self, machine):
        with pytest.raises(ValidationError):
            machine.list_approved_items("A", status_filter="mine")


# ═════════════════════════════════════════════════════════════════════════
# DEADLINE ALERTS
# ═════════════════════════════════════════════════════════════════════════

class TestDeadlineAlerts:
    @pytest.fixture()
    def timed_item(self, workspace):
        levels = [dict(SCENARIO_LEVELS[0], timeoutHours=48)] + SCENARIO_LEVELS[1:]
        board = _board(workspace, levels=levels)
        return make_item(board, name="Servers", cells={"Amount": 15000})

    def test_alert_before_deadline_is_sent_once(self, machine, timed_item):
        machine.request_approval(timed_item.id, "creator")
        soon = datetime.now(timezone.utc) + timedelta(hours=30)

        assert machine.send_deadline_alerts(hours_before=24, now=soon) == \
            {"checked": 1, "approaching": 1, "overdue": 0}
        assert machine.send_deadline_alerts(hours_before=24, now=soon)["approaching"] == 0
        [note] = _notifications("A", "approval_deadline_approaching")
        assert note.meta["approvalId"] == _rows(timed_item)[0].id

    def test_overdue_alert(self, machine, timed_item):
        machine.request_approval(timed_item.id, "creator")
        late = datetime.now(timezone.utc) + timedelta(hours=50)

        assert machine.send_deadline_alerts(hours_before=24, now=late)["overdue"] == 1
        assert machine.send_deadline_alerts(hours_before=24, now=late)["overdue"] == 0
        [note] = _notifications("A", "approval_deadline_passed")
        assert note.meta["hoursOverdue"] == pytest.approx(2.0, abs=0.1)

    def test_far_deadline_and_untimed_levels_are_quiet(self, machine, timed_item, item):
        machine.request_approval(timed_item.id, "creator")
        machine.request_approval(item.id, "creator")

        result = machine.send_deadline_alerts(hours_before=24)
        assert result == {"checked": 1, "approaching": 0, "overdue": 0}
        assert _notifications("A", "approval_deadline_approaching") == []

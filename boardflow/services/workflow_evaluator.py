"""
Approval workflow evaluation.

A board's workflow (levels + prioritized routing rules) decides, per item:
which levels are required, which are skipped, whether the item is
auto-approved and who approves each level.

    evaluate(snapshot, config)          pure rule evaluation
    evaluate_item(item, store)          snapshot + config lookup + evaluate
    get_workflow_config(board_id)       saved config, else the default one (cached)
    save_config(board, payload, actor)  strict validation + persist + cache invalidation
    check_escalations(now)              notify escalation users of overdue levels

Boards without a saved workflow use the default three-level workflow:
LEVEL_1 and LEVEL_2 sequential, LEVEL_3 parallel with one required
approval, and a single rule "total > 10000 requires LEVEL_1".
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from boardflow.models import db
from boardflow.models.approval import APPROVAL_LEVELS, Approval, ApprovalWorkflow
from boardflow.schemas.workflow import WorkflowConfig, parse_workflow_config
from boardflow.services import authorization
from boardflow.services.approval_notifications import ApprovalNotifier
from boardflow.services.condition_evaluator import evaluate as evaluate_condition
from boardflow.services.notification import NotificationService

logger = logging.getLogger(__name__)

ESCALATION_DEDUP_HOURS = 24

# board_id -> WorkflowConfig
_config_cache: dict[int, WorkflowConfig] = {}
_cache_lock = threading.Lock()


@dataclass
class WorkflowEvaluation:
    required_levels: list[str] = field(default_factory=list)
    skipped_levels: list[str] = field(default_factory=list)
    auto_approved: bool = False
    assigned_approvers: dict[str, list[str]] = field(
        default_factory=lambda: {lv: [] for lv in APPROVAL_LEVELS}
    )
    routing_rules: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "requiredLevels": list(self.required_levels),
            "skippedLevels": list(self.skipped_levels),
            "autoApproved": self.auto_approved,
            "assignedApprovers": {k: list(v) for k, v in self.assigned_approvers.items()},
            "routingRules": list(self.routing_rules),
        }


# ── Config ───────────────────────────────────────────────────────────────────


def default_workflow_config() -> WorkflowConfig:
    return WorkflowConfig.model_validate({
        "name": "Default Approval Workflow",
        "description": "Standard 3-level approval process",
        "levels": [
            {"level": "LEVEL_1", "name": "Level 1", "isOptional": False, "isParallel": False},
            {"level": "LEVEL_2", "name": "Level 2", "isOptional": False, "isParallel": False},
            {"level": "LEVEL_3", "name": "Level 3 - Finance", "isOptional": False,
             "isParallel": True, "requiredApprovals": 1},
        ],
        "rules": [
            {
                "id": "rule-amount-10k",
                "name": "Amount > 10,000 requires Level 1",
                "type": "amount",
                "condition": {"type": "greater_than", "field": "total", "value": 10000},
                "action": {"type": "require_level", "level": "LEVEL_1"},
                "priority": 100,
                "enabled": True,
            },
        ],
    })


def get_workflow_config(board_id: int) -> WorkflowConfig:
    with _cache_lock:
        cached = _config_cache.get(board_id)
    if cached is not None:
        return cached

    row = ApprovalWorkflow.query.filter_by(board_id=board_id).first()
    if row is not None:
        config = parse_workflow_config({
            "name": row.name,
            "description": row.description or "",
            "levels": row.levels or [],
            "rules": row.rules or [],
        })
    else:
        config = default_workflow_config()

    with _cache_lock:
        _config_cache[board_id] = config
    return config


def invalidate_cache(board_id: int | None = None) -> None:
    with _cache_lock:
        if board_id is None:
            _config_cache.clear()
        else:
            _config_cache.pop(board_id, None)


def save_config(board, payload: dict, actor_id: str) -> WorkflowConfig:
    """Validate and persist a board's workflow. Requires ``workflow.write``."""
    authorization.require(actor_id, board, "workflow.write")
    config = parse_workflow_config(payload)
    data = config.to_json()

    row = ApprovalWorkflow.query.filter_by(board_id=board.id).first()
    if row is None:
        row = ApprovalWorkflow(board_id=board.id)
        db.session.add(row)
    row.name = config.name
    row.description = config.description
    row.levels = data["levels"]
    row.rules = data.get("rules", [])
    row.updated_by = actor_id
    db.session.commit()

    invalidate_cache(board.id)
    logger.info("Workflow saved for board %s by %s", board.id, actor_id,
                extra={"board_id": board.id})
    return config


# ── Evaluation ───────────────────────────────────────────────────────────────


def evaluate(snapshot: dict, config: WorkflowConfig) -> WorkflowEvaluation:
    """Run the routing rules of ``config`` against an item snapshot."""
    result = WorkflowEvaluation()
    rule_required: list[str] = []

    rules = sorted(config.rules, key=lambda r: r.priority, reverse=True)
    for rule in rules:
        if not rule.enabled or not evaluate_condition(rule.condition, snapshot):
            continue
        result.routing_rules.append({"id": rule.id, "name": rule.name, "priority": rule.priority})
        action = rule.action

        if action.type == "require_level":
            if action.level not in rule_required:
                rule_required.append(action.level)
        elif action.type == "skip_level":
            for lv in APPROVAL_LEVELS[:APPROVAL_LEVELS.index(action.skip_to_level)]:
                if lv not in result.skipped_levels:
                    result.skipped_levels.append(lv)
        elif action.type == "auto_approve":
            result.auto_approved = True
        elif action.type == "assign_approver":
            result.assigned_approvers[action.level].extend(action.approver_ids or [])

    for lv_config in config.levels:
        if lv_config.level in result.skipped_levels:
            continue
        if not result.assigned_approvers[lv_config.level]:
            result.assigned_approvers[lv_config.level] = list(lv_config.approvers)

    required = set(rule_required)
    for lv_config in config.levels:
        if lv_config.level not in result.skipped_levels and not lv_config.is_optional:
            required.add(lv_config.level)
    result.required_levels = [lv for lv in APPROVAL_LEVELS if lv in required]
    result.skipped_levels.sort(key=APPROVAL_LEVELS.index)
    return result


def evaluate_item(item, store) -> tuple[WorkflowEvaluation, WorkflowConfig]:
    config = get_workflow_config(item.board_id)
    return evaluate(store.snapshot(item), config), config


# ── Escalations ──────────────────────────────────────────────────────────────


def _hours_since(moment: datetime, now: datetime) -> float:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (now - moment).total_seconds() / 3600


def check_escalations(now: datetime | None = None, notifier: ApprovalNotifier | None = None) -> dict:
    """Notify escalation users about pending approvals older than their level's timeout.

    Each approval escalates at most once per day.
    """
    now = now or datetime.now(timezone.utc)
    notifier = notifier or ApprovalNotifier()
    results = {"checked": 0, "escalated": 0}

    for approval in Approval.query.filter_by(status="pending").all():
        results["checked"] += 1
        item = approval.item
        if item is None or item.is_deleted:
            continue
        lv_config = get_workflow_config(item.board_id).level_config(approval.level)
        if lv_config is None or not lv_config.timeout_hours or not lv_config.escalation_user_id:
            continue
        hours = _hours_since(approval.created_at, now)
        if hours < lv_config.timeout_hours:
            continue
        if NotificationService.sent_within(
            lv_config.escalation_user_id, "approval_escalation",
            hours=ESCALATION_DEDUP_HOURS, metadata_key="approvalId", metadata_value=approval.id,
        ):
            continue
        try:
            notifier.escalation(approval, lv_config.escalation_user_id, int(hours))
            results["escalated"] += 1
            logger.info("Escalated approval %s to %s", approval.id, lv_config.escalation_user_id,
                        extra={"approval_id": approval.id, "item_id": item.id})
        except Exception:
            logger.exception("Escalation notification failed for approval %s", approval.id)
    return results

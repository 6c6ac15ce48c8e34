"""
Boardflow
Scheduled Jobs.

Concrete job implementations run by the daily scheduler.

Jobs:
    - date_trigger_check: re-evaluates date triggers for every item of every
      board with an active date automation
    - approval_escalation_check: notifies escalation users about approvals
      pending past their level's timeout
    - approval_reminders: reminds approvers of long-pending approvals
    - approval_deadline_alerts: warns approvers shortly before and after
      their level timeout
"""

from __future__ import annotations

import logging
from typing import Any

from boardflow.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Date triggers
# ═══════════════════════════════════════════════════════════════════════════

@register_job("date_trigger_check")
def run_date_triggers(app) -> dict[str, Any]:
    """Evaluate date_* automation triggers for all live items."""
    from boardflow.services.wiring import get_automation_engine

    return get_automation_engine().check_date_triggers()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Approval escalations
# ═══════════════════════════════════════════════════════════════════════════

@register_job("approval_escalation_check")
def run_approval_escalations(app) -> dict[str, Any]:
    """Escalate approvals pending longer than their level timeout."""
    from boardflow.services.workflow_evaluator import check_escalations

    return check_escalations()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Approval reminders
# ═══════════════════════════════════════════════════════════════════════════

@register_job("approval_reminders")
def run_approval_reminders(app) -> dict[str, Any]:
    """Remind approvers about approvals waiting longer than APPROVAL_REMINDER_HOURS."""
    from boardflow.services.wiring import get_approval_machine

    hours = app.config.get("APPROVAL_REMINDER_HOURS", 24)
    return get_approval_machine().send_reminders(hours=hours)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 4: Approval deadline alerts
# ═══════════════════════════════════════════════════════════════════════════

@register_job("approval_deadline_alerts")
def run_approval_deadline_alerts(app) -> dict[str, Any]:
    """Warn approvers within APPROVAL_DEADLINE_ALERT_HOURS of their level timeout."""
    from boardflow.services.wiring import get_approval_machine

    hours = app.config.get("APPROVAL_DEADLINE_ALERT_HOURS", 24)
    return get_approval_machine().send_deadline_alerts(hours_before=hours)

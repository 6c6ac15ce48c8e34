"""
Service wiring.

Builds the services with their collaborators so that approval transitions
and item mutations feed the automation engine without the modules
importing each other.
"""

from boardflow.services.approval_state_machine import ApprovalStateMachine
from boardflow.services.automation_engine import AutomationEngine
from boardflow.services.item_service import ItemService
from boardflow.services.stores import SqlApprovalStore, SqlItemStore


def get_automation_engine() -> AutomationEngine:
    return AutomationEngine(item_store=SqlItemStore())


def get_approval_machine() -> ApprovalStateMachine:
    engine = get_automation_engine()
    return ApprovalStateMachine(
        item_store=engine.items,
        approval_store=SqlApprovalStore(),
        event_sink=engine.process,
    )


def get_item_service() -> ItemService:
    engine = get_automation_engine()
    return ItemService(item_store=engine.items, event_sink=engine.process)

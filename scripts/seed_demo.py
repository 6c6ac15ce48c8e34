#!/usr/bin/env python3
"""
Boardflow: demo seed (invoice approvals).

Creates one workspace with an "Invoices" board, a three-level approval
workflow, two automations and a handful of invoices in different states.

Usage:
    python scripts/seed_demo.py            # Seed into the configured DB
    python scripts/seed_demo.py --reset    # Drop + recreate all tables first
    python scripts/seed_demo.py --request  # Also open approval flows
"""

import argparse
import sys
from datetime import date, timedelta

sys.path.insert(0, ".")

from boardflow import create_app
from boardflow.models import db
from boardflow.models.board import Board, BoardColumn, Workspace, WorkspaceMember
from boardflow.services import workflow_evaluator
from boardflow.services.automation_service import AutomationService
from boardflow.services.wiring import get_approval_machine, get_item_service

MEMBERS = {
    "olivia": "owner",
    "adam": "admin",
    "fiona": "finance",
    "maria": "member",
    "bruno": "member",
    "chen": "member",
}

COLUMNS = [
    ("Amount", "number"),
    ("Due Date", "date"),
    ("Owner", "people"),
    ("Vendor", "text"),
]

WORKFLOW = {
    "name": "Invoice approvals",
    "description": "Manager, directors, finance",
    "levels": [
        {"level": "LEVEL_1", "name": "Manager", "approvers": ["maria"], "timeoutHours": 48,
         "escalationUserId": "adam"},
        {"level": "LEVEL_2", "name": "Directors", "approvers": ["bruno", "chen"], "isParallel": True,
         "requiredApprovals": 1, "isOptional": True},
        {"level": "LEVEL_3", "name": "Finance", "approvers": ["fiona"]},
    ],
    "rules": [
        {
            "id": "large-invoice",
            "name": "Amount > 10,000 needs directors",
            "type": "amount",
            "condition": {"type": "greater_than", "field": "amount", "value": 10000},
            "action": {"type": "require_level", "level": "LEVEL_2"},
            "priority": 100,
        },
        {
            "id": "petty-cash",
            "name": "Amount < 100 is auto-approved",
            "type": "amount",
            "condition": {"type": "less_than", "field": "amount", "value": 100},
            "action": {"type": "auto_approve"},
            "priority": 200,
        },
    ],
}

INVOICES = [
    ("INV-1001 Office chairs", 2400, 10, ["maria"], "Seatco"),
    ("INV-1002 Data center lease", 48000, 3, ["bruno", "chen"], "RackSpace Ltd"),
    ("INV-1003 Coffee beans", 60, 20, ["maria"], "Bean & Co"),
    ("INV-1004 Consulting", 15500, -2, ["chen"], "Northwind"),
]


def seed_board():
    """Workspace, members and the Invoices board."""
    ws = Workspace(name="Finance Ops")
    db.session.add(ws)
    db.session.flush()
    for user_id, role in MEMBERS.items():
        db.session.add(WorkspaceMember(workspace_id=ws.id, user_id=user_id, role=role))

    board = Board(workspace_id=ws.id, name="Invoices")
    db.session.add(board)
    db.session.flush()
    for position, (name, col_type) in enumerate(COLUMNS):
        db.session.add(BoardColumn(board_id=board.id, name=name, type=col_type, position=position))
    db.session.commit()
    print(f"  ✓ Board #{board.id} '{board.name}' in workspace '{ws.name}'")
    return board


def seed_automations(board):
    due = next(c for c in board.columns if c.name == "Due Date")
    payloads = [
        {
            "boardId": board.id,
            "name": "Overdue invoices notify owners",
            "trigger": {"type": "field_equals", "config": {"columnId": "status", "value": "Overdue"}},
            "actions": [{"type": "notify_assignees",
                         "config": {"title": "Invoice overdue", "message": "Please follow up"}}],
        },
        {
            "boardId": board.id,
            "name": "Due within 3 days",
            "trigger": {"type": "date_approaching", "config": {"columnId": due.id, "daysBefore": 3}},
            "actions": [{"type": "notify_assignees",
                         "config": {"title": "Invoice due soon", "message": "Due in 3 days or less"}}],
        },
    ]
    for payload in payloads:
        automation = AutomationService.create("olivia", payload)
        print(f"  ✓ Automation #{automation.id} '{automation.name}'")


def seed_items(board, request_approvals=False):
    columns = {c.name: c.id for c in board.columns}
    items = get_item_service()
    machine = get_approval_machine()
    for name, amount, due_in, owners, vendor in INVOICES:
        item = items.create_item(board.id, "maria", name, status="Submitted", cells={
            columns["Amount"]: amount,
            columns["Due Date"]: (date.today() + timedelta(days=due_in)).isoformat(),
            columns["Owner"]: owners,
            columns["Vendor"]: vendor,
        })
        line = f"  ✓ Item #{item.id} {name}"
        if request_approvals:
            created = machine.request_approval(item.id, "maria")
            line += f" ({machine.get_status(item.id)['overallStatus']}, {len(created)} row(s))"
        print(line)


def main():
    parser = argparse.ArgumentParser(description="Seed the Boardflow demo data")
    parser.add_argument("--reset", action="store_true", help="drop and recreate all tables")
    parser.add_argument("--request", action="store_true", help="open approval flows for the invoices")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        if args.reset:
            db.drop_all()
            db.create_all()
            print("  ✓ Tables recreated")
        board = seed_board()
        workflow_evaluator.save_config(board, WORKFLOW, "olivia")
        print("  ✓ Workflow 'Invoice approvals'")
        seed_automations(board)
        seed_items(board, request_approvals=args.request)
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""Show DB record counts for all tables."""
import sys
sys.path.insert(0, ".")

from boardflow import create_app
from boardflow.models import db

TABLES = [
    "workspaces", "workspace_members", "boards", "board_columns", "items",
    "cells", "approval_workflows", "approvals", "automations",
    "automation_execution_logs", "notifications", "scheduled_jobs",
]

app = create_app()
with app.app_context():
    total = 0
    for t in TABLES:
        c = db.session.execute(db.text(f"SELECT COUNT(*) FROM {t}")).scalar()
        total += c
        print(f"    {t:.<30} {c}")
    print(f"    {'TOTAL':.<30} {total}")

"""
Workspace-role authorization.

    authorize(actor_id, resource, action) -> bool
    require(actor_id, resource, action)   -> None | raises AccessDenied

Resources are Board, Item or Approval instances; the workspace is derived
from them. Actions:

    item.read             any workspace member
    approval.transition   assigned approver, or an elevated role (owner/admin/finance)
    approval.delete       owner/admin, or the item's creator
    item.archive          owner/admin, or the item's creator (archive and restore)
    workflow.write        owner/admin
    automation.write      owner/admin
"""

from __future__ import annotations

import logging

from flask import current_app

from boardflow.core.exceptions import AccessDenied
from boardflow.models.approval import Approval
from boardflow.models.board import Board, Item, WorkspaceMember

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({"owner", "admin"})
DEFAULT_ELEVATED_ROLES = ("owner", "admin", "finance")

ACTIONS = frozenset({
    "item.read",
    "approval.transition",
    "approval.delete",
    "item.archive",
    "workflow.write",
    "automation.write",
})


def elevated_roles() -> frozenset[str]:
    return frozenset(current_app.config.get("APPROVAL_ELEVATED_ROLES", DEFAULT_ELEVATED_ROLES))


def member_role(workspace_id: int, user_id: str | None) -> str | None:
    if not user_id:
        return None
    member = WorkspaceMember.query.filter_by(workspace_id=workspace_id, user_id=user_id).first()
    return member.role if member else None


def _workspace_of(resource) -> int | None:
    if isinstance(resource, Board):
        return resource.workspace_id
    if isinstance(resource, Item):
        return resource.board.workspace_id if resource.board else None
    if isinstance(resource, Approval):
        return _workspace_of(resource.item) if resource.item else None
    return None


def authorize(actor_id: str | None, resource, action: str) -> bool:
    if action not in ACTIONS:
        raise ValueError(f"Unknown action: {action}")
    workspace_id = _workspace_of(resource)
    if workspace_id is None or not actor_id:
        return False
    role = member_role(workspace_id, actor_id)

    if action == "item.read":
        return role is not None
    if action == "approval.transition":
        if isinstance(resource, Approval) and resource.approver_id and resource.approver_id == actor_id:
            return True
        return role in elevated_roles()
    if action in ("approval.delete", "item.archive"):
        if role in ADMIN_ROLES:
            return True
        item = resource.item if isinstance(resource, Approval) else resource
        return isinstance(item, Item) and item.created_by == actor_id
    # workflow.write, automation.write
    return role in ADMIN_ROLES


def require(actor_id: str | None, resource, action: str) -> None:
    if not authorize(actor_id, resource, action):
        logger.warning("Access denied: actor=%s action=%s resource=%r", actor_id, action, resource)
        raise AccessDenied(actor_id, action)

"""
Approval Blueprint.

Routes (all under /api/v1/approvals, actor from the X-User header):
  POST   /item/<item_id>/request               – open the approval flow for an item
  GET    /item/<item_id>                       – approval status summary
  GET    /item/<item_id>/history               – approval timeline with time taken per row
  POST   /item/<item_id>/archive               – archive a fully approved item
  POST   /item/<item_id>/restore               – restore an archived item
  GET    /approved-items                       – items with an approval flow (filterable)
  GET    /pending                              – approvals the actor may act on
  PUT    /<approval_id>                        – approve / reject / reset to pending
  DELETE /<approval_id>                        – remove an approval row
  GET    /boards/<board_id>/workflow           – effective workflow config
  POST   /boards/<board_id>/workflow           – save workflow config
  POST   /boards/<board_id>/evaluate-workflow  – dry-run the routing rules for an item
"""

import logging

from flask import Blueprint, jsonify, request

from boardflow.blueprints import current_user, int_arg, json_body, register_error_handlers
from boardflow.core.exceptions import NotFoundError
from boardflow.models.approval import APPROVAL_STATUSES
from boardflow.services import authorization, workflow_evaluator
from boardflow.services.stores import SqlItemStore
from boardflow.services.wiring import get_approval_machine
from boardflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approvals", __name__, url_prefix="/api/v1/approvals")
register_error_handlers(approval_bp)

_items = SqlItemStore()


# ── helpers ──────────────────────────────────────────────────────────────

def _board_or_404(board_id):
    board = _items.get_board(board_id)
    if board is None:
        raise NotFoundError(resource="Board", resource_id=board_id)
    return board


# ═════════════════════════════════════════════════════════════════════════════
# ITEM FLOW
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/item/<int:item_id>/request", methods=["POST"])
def request_approval(item_id):
    """Create the eligible level rows for an item. Idempotent."""
    machine = get_approval_machine()
    created = machine.request_approval(item_id, current_user())
    return jsonify({
        "created": [a.to_dict() for a in created],
        "status": machine.get_status(item_id),
    }), 201 if created else 200


@approval_bp.route("/item/<int:item_id>", methods=["GET"])
def approval_status(item_id):
    return jsonify(get_approval_machine().get_status(item_id, current_user()))


@approval_bp.route("/item/<int:item_id>/history", methods=["GET"])
def approval_history(item_id):
    return jsonify(get_approval_machine().history(item_id, current_user()))


@approval_bp.route("/item/<int:item_id>/archive", methods=["POST"])
def archive_item(item_id):
    """Owner/admin or the item creator only."""
    archived = get_approval_machine().archive_if_complete(item_id, current_user())
    if not archived:
        return api_error(E.CONFLICT_STATE, "Item is not fully approved",
                         details={"itemId": item_id})
    return jsonify({"itemId": item_id, "archived": True})


@approval_bp.route("/item/<int:item_id>/restore", methods=["POST"])
def restore_item(item_id):
    restored = get_approval_machine().restore_item(item_id, current_user())
    if not restored:
        return api_error(E.CONFLICT_STATE, "Item is not archived", details={"itemId": item_id})
    return jsonify({"itemId": item_id, "archived": False})


@approval_bp.route("/approved-items", methods=["GET"])
def approved_items():
    """Query: boardId?, filter=all|fully_approved|partially_approved|archived, search?, page, limit"""
    board_id, err = int_arg("boardId", None)
    if err:
        return err
    page, err = int_arg("page", 1)
    if err:
        return err
    limit, err = int_arg("limit", 50)
    if err:
        return err
    if page < 1 or not 1 <= limit <= 200:
        return api_error(E.VALIDATION_INVALID, "page must be >= 1 and limit 1..200",
                         details={"page": page, "limit": limit})
    result = get_approval_machine().list_approved_items(
        current_user(),
        board_id=board_id,
        status_filter=request.args.get("filter", "all"),
        search=request.args.get("search") or None,
        page=page,
        limit=limit,
    )
    return jsonify(result)


@approval_bp.route("/pending", methods=["GET"])
def pending_approvals():
    rows = get_approval_machine().list_pending_for(current_user())
    return jsonify({"approvals": [a.to_dict() for a in rows], "total": len(rows)})


@approval_bp.route("/<int:approval_id>", methods=["PUT"])
def transition_approval(approval_id):
    """Change an approval's status.

    Body: { status: "approved" | "rejected" | "pending", comments? }
    A rejection whose comment contains "changes requested" notifies the
    item creator that changes were requested.
    """
    data, err = json_body()
    if err:
        return err
    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    if status not in APPROVAL_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"status must be one of {sorted(APPROVAL_STATUSES)}",
                         details={"status": status})
    comments = data.get("comments")
    if comments is not None and not isinstance(comments, str):
        return api_error(E.VALIDATION_INVALID, "comments must be a string")

    approval = get_approval_machine().transition(approval_id, status, current_user(), comments)
    return jsonify(approval.to_dict())


@approval_bp.route("/<int:approval_id>", methods=["DELETE"])
def delete_approval(approval_id):
    get_approval_machine().delete_approval(approval_id, current_user())
    return jsonify({"deleted": True})


# ═════════════════════════════════════════════════════════════════════════════
# WORKFLOW CONFIG
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/boards/<int:board_id>/workflow", methods=["GET"])
def get_workflow(board_id):
    board = _board_or_404(board_id)
    authorization.require(current_user(), board, "item.read")
    config = workflow_evaluator.get_workflow_config(board.id)
    return jsonify({"boardId": board.id, **config.to_json()})


@approval_bp.route("/boards/<int:board_id>/workflow", methods=["POST"])
def save_workflow(board_id):
    """Body: { name, description?, levels: [...], rules: [...] }"""
    data, err = json_body()
    if err:
        return err
    board = _board_or_404(board_id)
    config = workflow_evaluator.save_config(board, data, current_user())
    return jsonify({"boardId": board.id, **config.to_json()})


@approval_bp.route("/boards/<int:board_id>/evaluate-workflow", methods=["POST"])
def evaluate_workflow(board_id):
    """Body: { itemId }. Returns required levels, approvers and applied rules."""
    data, err = json_body()
    if err:
        return err
    item_id = data.get("itemId")
    if item_id is None:
        return api_error(E.VALIDATION_REQUIRED, "itemId is required")
    if not isinstance(item_id, int) or isinstance(item_id, bool):
        return api_error(E.VALIDATION_INVALID, "itemId must be an integer")

    board = _board_or_404(board_id)
    authorization.require(current_user(), board, "item.read")
    item = _items.get_item(item_id)
    if item is None or item.board_id != board.id:
        raise NotFoundError(resource="Item", resource_id=item_id)

    evaluation, _ = workflow_evaluator.evaluate_item(item, _items)
    return jsonify(evaluation.to_dict())

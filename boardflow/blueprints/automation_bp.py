"""
Automation Blueprint.

Routes (all under /api/v1/automations, actor from the X-User header):
  POST   /                    – create automation
  GET    /?boardId=&isActive=&search=&page=&limit=
  GET    /<automation_id>     – single automation
  PUT    /<automation_id>     – partial update
  DELETE /<automation_id>     – delete automation and its logs
  PATCH  /<automation_id>/toggle
  POST   /<automation_id>/test – dry run against an item (body: itemId)
  GET    /<automation_id>/logs?limit=
"""

import logging

from flask import Blueprint, jsonify, request

from boardflow.blueprints import bool_arg, current_user, int_arg, json_body, register_error_handlers
from boardflow.services.automation_service import DEFAULT_PAGE_SIZE, AutomationService
from boardflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

automation_bp = Blueprint("automations", __name__, url_prefix="/api/v1/automations")
register_error_handlers(automation_bp)


@automation_bp.route("", methods=["POST"])
def create_automation():
    data, err = json_body()
    if err:
        return err
    automation = AutomationService.create(current_user(), data)
    return jsonify(automation.to_dict()), 201


@automation_bp.route("", methods=["GET"])
def list_automations():
    board_id, err = int_arg("boardId", None)
    if err:
        return err
    if board_id is None:
        return api_error(E.VALIDATION_REQUIRED, "boardId is required")
    page, err = int_arg("page", 1)
    if err:
        return err
    limit, err = int_arg("limit", DEFAULT_PAGE_SIZE)
    if err:
        return err

    result = AutomationService.list_automations(
        current_user(), board_id,
        is_active=bool_arg("isActive"),
        search=(request.args.get("search") or "").strip() or None,
        page=page,
        limit=limit,
    )
    return jsonify(result)


@automation_bp.route("/<int:automation_id>", methods=["GET"])
def get_automation(automation_id):
    return jsonify(AutomationService.get(current_user(), automation_id).to_dict())


@automation_bp.route("/<int:automation_id>", methods=["PUT"])
def update_automation(automation_id):
    data, err = json_body()
    if err:
        return err
    automation = AutomationService.update(current_user(), automation_id, data)
    return jsonify(automation.to_dict())


@automation_bp.route("/<int:automation_id>", methods=["DELETE"])
def delete_automation(automation_id):
    AutomationService.delete(current_user(), automation_id)
    return jsonify({"deleted": True})


@automation_bp.route("/<int:automation_id>/toggle", methods=["PATCH"])
def toggle_automation(automation_id):
    automation = AutomationService.toggle(current_user(), automation_id)
    return jsonify({"id": automation.id, "isActive": automation.is_active})


@automation_bp.route("/<int:automation_id>/test", methods=["POST"])
def test_automation(automation_id):
    """Dry run: reports trigger/condition outcome and the actions that would run."""
    data, err = json_body()
    if err:
        return err
    item_id = data.get("itemId")
    if item_id is None:
        return api_error(E.VALIDATION_REQUIRED, "itemId is required")
    if not isinstance(item_id, int) or isinstance(item_id, bool):
        return api_error(E.VALIDATION_INVALID, "itemId must be an integer")
    return jsonify(AutomationService.preview(current_user(), automation_id, item_id))


@automation_bp.route("/<int:automation_id>/logs", methods=["GET"])
def automation_logs(automation_id):
    limit, err = int_arg("limit", 50)
    if err:
        return err
    limit = max(1, min(limit, 200))
    logs = AutomationService.logs(current_user(), automation_id, limit=limit)
    return jsonify({"logs": logs, "total": len(logs)})

"""
Item Blueprint.

Item mutations go through ItemService so that every change feeds the
automation engine.

Routes (all under /api/v1/items):
  POST   /                        – create item  { boardId, name, status?, cells? }
  GET    /<item_id>               – item with cells
  PUT    /<item_id>               – rename / set cells  { name?, cells? }
  PATCH  /<item_id>/status        – { status }
  POST   /<item_id>/move          – { boardId }
  DELETE /<item_id>               – soft delete
"""

from flask import Blueprint, jsonify

from boardflow.blueprints import current_user, json_body, register_error_handlers
from boardflow.core.exceptions import NotFoundError
from boardflow.services import authorization
from boardflow.services.wiring import get_item_service
from boardflow.utils.errors import E, api_error

item_bp = Blueprint("items", __name__, url_prefix="/api/v1/items")
register_error_handlers(item_bp)


def _cells(data):
    cells = data.get("cells")
    if cells is None:
        return {}, None
    if not isinstance(cells, dict):
        return None, api_error(E.VALIDATION_INVALID, "cells must be an object keyed by column id")
    try:
        return {int(k): v for k, v in cells.items()}, None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, "cells keys must be column ids")


@item_bp.route("", methods=["POST"])
def create_item():
    data, err = json_body()
    if err:
        return err
    board_id = data.get("boardId")
    if board_id is None:
        return api_error(E.VALIDATION_REQUIRED, "boardId is required")
    cells, err = _cells(data)
    if err:
        return err
    item = get_item_service().create_item(board_id, current_user(), data.get("name"),
                                          status=data.get("status") or "", cells=cells)
    return jsonify(item.to_dict()), 201


@item_bp.route("/<int:item_id>", methods=["GET"])
def get_item(item_id):
    service = get_item_service()
    item = service.items.get_item(item_id)
    if item is None:
        raise NotFoundError(resource="Item", resource_id=item_id)
    authorization.require(current_user(), item, "item.read")
    return jsonify(item.to_dict())


@item_bp.route("/<int:item_id>", methods=["PUT"])
def update_item(item_id):
    data, err = json_body()
    if err:
        return err
    cells, err = _cells(data)
    if err:
        return err
    item = get_item_service().update_item(item_id, current_user(), name=data.get("name"), cells=cells)
    return jsonify(item.to_dict())


@item_bp.route("/<int:item_id>/status", methods=["PATCH"])
def change_status(item_id):
    data, err = json_body()
    if err:
        return err
    status = data.get("status")
    if not isinstance(status, str) or not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    item = get_item_service().change_status(item_id, current_user(), status)
    return jsonify(item.to_dict())


@item_bp.route("/<int:item_id>/move", methods=["POST"])
def move_item(item_id):
    data, err = json_body()
    if err:
        return err
    board_id = data.get("boardId")
    if board_id is None:
        return api_error(E.VALIDATION_REQUIRED, "boardId is required")
    item = get_item_service().move_item(item_id, current_user(), board_id)
    return jsonify(item.to_dict())


@item_bp.route("/<int:item_id>", methods=["DELETE"])
def delete_item(item_id):
    get_item_service().delete_item(item_id, current_user())
    return jsonify({"deleted": True})

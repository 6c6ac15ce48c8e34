"""
Notification Blueprint.

The acting user's in-app notifications (approval and automation messages).

Routes (all under /api/v1/notifications):
  GET    /?unreadOnly=&limit=&offset=   – newest first
  PATCH  /<notification_id>/read
  POST   /read-all
"""

from flask import Blueprint, jsonify

from boardflow.blueprints import bool_arg, current_user, int_arg, register_error_handlers
from boardflow.services.notification import NotificationService

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")
register_error_handlers(notification_bp)


@notification_bp.route("", methods=["GET"])
def list_notifications():
    limit, err = int_arg("limit", 50)
    if err:
        return err
    offset, err = int_arg("offset", 0)
    if err:
        return err
    unread_only = bool(bool_arg("unreadOnly"))

    items, total = NotificationService.list_for_user(
        current_user(), unread_only=unread_only, limit=max(1, min(limit, 200)), offset=max(0, offset),
    )
    return jsonify({"notifications": [n.to_dict() for n in items], "total": total})


@notification_bp.route("/<int:notification_id>/read", methods=["PATCH"])
def mark_read(notification_id):
    return jsonify(NotificationService.mark_read(notification_id, current_user()).to_dict())


@notification_bp.route("/read-all", methods=["POST"])
def mark_all_read():
    return jsonify({"updated": NotificationService.mark_all_read(current_user())})

"""
Care Audit Service
Notification blueprint — the caller's in-app notifications.

Endpoints:
    GET   /api/v1/notifications                   unread_only, organization_id, limit, offset
    GET   /api/v1/notifications/unread-count
    PATCH /api/v1/notifications/<id>/read
    POST  /api/v1/notifications/mark-all-read
"""

import logging

from flask import Blueprint, jsonify, request

from careaudit.blueprints import current_user, json_body, ok, register_error_handlers
from careaudit.core.exceptions import ValidationError
from careaudit.services.notification import NotificationService

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")
register_error_handlers(notification_bp)


def _recipient(data=None):
    user_id, _ = current_user(data)
    if not user_id:
        raise ValidationError("Caller identity is required (X-User-Email)", details={"user": "required"})
    return user_id


@notification_bp.route("", methods=["GET"])
def list_notifications():
    """List the caller's notifications, newest first."""
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = request.args.get("limit", 50, type=int)
    if limit < 1:
        raise ValidationError(f"Invalid limit: {limit}", details={"limit": "integer >= 1"})
    limit = min(limit, 200)
    offset = max(request.args.get("offset", 0, type=int), 0)

    items, total = NotificationService.list_for_user(
        _recipient(),
        organization_id=request.args.get("organization_id"),
        unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    })


@notification_bp.route("/unread-count", methods=["GET"])
def notification_unread_count():
    count = NotificationService.unread_count(
        _recipient(), organization_id=request.args.get("organization_id"),
    )
    return jsonify({"unread_count": count})


@notification_bp.route("/<int:nid>/read", methods=["PATCH"])
def mark_notification_read(nid):
    return ok(NotificationService.mark_read(nid).to_dict())


@notification_bp.route("/mark-all-read", methods=["POST"])
def mark_all_notifications_read():
    data = json_body()
    count = NotificationService.mark_all_read(
        _recipient(data), organization_id=data.get("organization_id"),
    )
    return ok({"marked_read": count})

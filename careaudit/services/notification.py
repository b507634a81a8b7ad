"""
Care Audit Service
Notification Service.

Central service for creating and querying notifications. Delivery (in-app
push, email) belongs to the surrounding application; this service only
guarantees the record exists.

Transaction policy: flush only, caller commits.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from careaudit.core.exceptions import NotFoundError
from careaudit.models import db
from careaudit.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, title, message="", type="action_plan", link="",
               sender_id=None, sender_name=None, metadata=None,
               organization_id=None, team_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (flushed, not committed).
        """
        notif = Notification(
            user_id=user_id,
            sender_id=sender_id,
            sender_name=sender_name,
            type=type,
            title=title,
            message=message,
            link=link,
            meta_data=metadata or {},
            organization_id=organization_id,
            team_id=team_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    @staticmethod
    def create_non_fatal(**kwargs):
        """
        Create a notification inside a SAVEPOINT, swallowing store failures.

        Used by state transitions: a notification that cannot be written must
        not roll back the transition that produced it.

        Returns:
            The Notification, or None when creation failed.
        """
        try:
            with db.session.begin_nested():
                return NotificationService.create(**kwargs)
        except SQLAlchemyError:
            logger.warning(
                "Notification creation failed for user=%s type=%s, main flow unaffected",
                kwargs.get("user_id"), kwargs.get("type"), exc_info=True,
            )
            return None

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, organization_id=None, unread_only=False,
                      limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.

        Returns:
            (items, total)
        """
        q = Notification.query.filter_by(user_id=user_id)
        if organization_id:
            q = q.filter_by(organization_id=organization_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id, organization_id=None):
        """Return count of unread notifications."""
        q = Notification.query.filter_by(user_id=user_id, is_read=False)
        if organization_id:
            q = q.filter_by(organization_id=organization_id)
        return q.count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if not notif:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        notif.mark_read()
        db.session.flush()
        return notif

    @staticmethod
    def mark_all_read(user_id, organization_id=None):
        """Mark all notifications for a recipient as read. Returns the count."""
        q = Notification.query.filter_by(user_id=user_id, is_read=False)
        if organization_id:
            q = q.filter_by(organization_id=organization_id)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.flush()
        return count

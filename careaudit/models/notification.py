"""
Care Audit Service
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from careaudit.models import db
from careaudit.utils.helpers import isoformat


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "action_plan",
    "action_plan_completed",
    "action_plan_overdue",
    "action_plan_overdue_manager",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. Linked to audit entities by id inside
    ``meta_data`` only; there is no foreign key.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(150), nullable=False, index=True, comment="Recipient")
    sender_id = db.Column(db.String(150), nullable=True)
    sender_name = db.Column(db.String(200), nullable=True)
    type = db.Column(db.String(40), nullable=False, default="action_plan")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    link = db.Column(db.String(500), default="")
    meta_data = db.Column("metadata", db.JSON, default=dict)

    organization_id = db.Column(db.String(64), nullable=True, index=True)
    team_id = db.Column(db.String(64), nullable=True, index=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "sender_id": self.sender_id,
            "sender_name": self.sender_name,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "metadata": dict(self.meta_data or {}),
            "organization_id": self.organization_id,
            "team_id": self.team_id,
            "is_read": self.is_read,
            "read_at": isoformat(self.read_at),
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"

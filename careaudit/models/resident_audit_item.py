"""
Care Audit Service
Flattened per-resident audit item table.

One row per (resident, item name) summarising the latest audit outcome for
the resident's care file. ``last_audited_date`` and ``due_date`` are ISO
``YYYY-MM-DD`` strings; overdue counting compares them as strings.
"""

from datetime import datetime, timezone

from careaudit.models import db
from careaudit.utils.helpers import isoformat


RESIDENT_ITEM_STATUSES = {"n/a", "pending", "in-progress", "completed", "overdue", "not-applicable"}

# Statuses that never count as overdue.
RESIDENT_ITEM_CLOSED_STATUSES = {"completed", "n/a"}


class ResidentAuditItem(db.Model):
    __tablename__ = "resident_audit_items"
    __table_args__ = (
        db.UniqueConstraint("resident_id", "item_name", name="uq_resident_audit_item"),
    )

    id = db.Column(db.Integer, primary_key=True)
    resident_id = db.Column(db.String(64), nullable=False, index=True)
    item_name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    auditor_name = db.Column(db.String(200), nullable=True)
    last_audited_date = db.Column(db.String(10), nullable=True)
    due_date = db.Column(db.String(10), nullable=True)
    team_id = db.Column(db.String(64), nullable=False, index=True)
    organization_id = db.Column(db.String(64), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "resident_id": self.resident_id,
            "item_name": self.item_name,
            "status": self.status,
            "auditor_name": self.auditor_name,
            "last_audited_date": self.last_audited_date,
            "due_date": self.due_date,
            "team_id": self.team_id,
            "organization_id": self.organization_id,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<ResidentAuditItem {self.resident_id}: {self.item_name[:40]}>"

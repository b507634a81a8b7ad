"""
Care Audit Service
Remediation domain models.

Models:
    - ActionPlan: remediation task raised against an audit run
    - ActionPlanStatusUpdate: append-only status history entry

``status_updates`` is the source of truth for the lifecycle. ``latest_comment``
and ``is_new`` are denormalised convenience fields for list views and badges.

Overdue is never stored: ``is_overdue()`` derives it from ``due_date`` and
``status`` at read time.
"""

from datetime import datetime, timezone

from careaudit.models import db
from careaudit.utils.helpers import ensure_utc, isoformat


# ── Constants ────────────────────────────────────────────────────────────────

ACTION_PLAN_STATUSES = ("pending", "in_progress", "completed")
PRIORITY_LEVELS = ("Low", "Medium", "High")
PRIORITY_ORDER = {"High": 0, "Medium": 1, "Low": 2}


def _now():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
#  ACTION PLAN
# ═══════════════════════════════════════════════════════════════════════════

class ActionPlan(db.Model):
    """
    A remediation task tied to the run (and template) that surfaced it.

    Lifecycle: pending → in_progress → completed, driven by the assignee.
    Every transition appends one ActionPlanStatusUpdate row.
    """

    __tablename__ = "action_plans"

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(
        db.Integer, db.ForeignKey("audit_runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    template_id = db.Column(
        db.Integer, db.ForeignKey("audit_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    category = db.Column(db.String(20), nullable=False, index=True)
    organization_id = db.Column(db.String(64), nullable=False, index=True)
    team_id = db.Column(db.String(64), nullable=True, index=True)
    resident_id = db.Column(db.String(64), nullable=True, index=True)
    item_id = db.Column(db.String(64), nullable=True, comment="Run item that failed")

    description = db.Column(db.Text, nullable=False)
    assigned_to = db.Column(db.String(150), nullable=False, index=True)
    assigned_to_name = db.Column(db.String(200), default="")
    priority = db.Column(db.String(10), nullable=False, default="Medium")
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    latest_comment = db.Column(db.Text, nullable=True)
    is_new = db.Column(db.Boolean, nullable=False, default=True)
    viewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(150), nullable=True)
    overdue_notified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(150), nullable=False)
    created_by_name = db.Column(db.String(200), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    run = db.relationship("AuditRun")
    template = db.relationship("AuditTemplate")
    status_updates = db.relationship(
        "ActionPlanStatusUpdate",
        back_populates="action_plan",
        order_by="ActionPlanStatusUpdate.seq",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def is_overdue(self, now=None) -> bool:
        """Derived overdue: past due date and not completed."""
        if self.status == "completed" or self.due_date is None:
            return False
        now = ensure_utc(now) if now else _now()
        return ensure_utc(self.due_date) < now

    def to_dict(self, now=None, include_history=True):
        d = {
            "id": self.id,
            "run_id": self.run_id,
            "template_id": self.template_id,
            "category": self.category,
            "organization_id": self.organization_id,
            "team_id": self.team_id,
            "resident_id": self.resident_id,
            "item_id": self.item_id,
            "description": self.description,
            "assigned_to": self.assigned_to,
            "assigned_to_name": self.assigned_to_name,
            "priority": self.priority,
            "due_date": isoformat(self.due_date),
            "status": self.status,
            "is_overdue": self.is_overdue(now),
            "latest_comment": self.latest_comment,
            "is_new": self.is_new,
            "viewed_at": isoformat(self.viewed_at),
            "completed_at": isoformat(self.completed_at),
            "completed_by": self.completed_by,
            "created_by": self.created_by,
            "created_by_name": self.created_by_name,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_history:
            d["status_history"] = [u.to_dict() for u in self.status_updates]
        return d

    def __repr__(self):
        return f"<ActionPlan {self.id}: {self.status} → {self.assigned_to}>"


class ActionPlanStatusUpdate(db.Model):
    """
    One entry in an action plan's status history. Never updated or deleted
    on its own; rows go away only with their plan.

    ``seq`` is 1-based and unique per plan, so two concurrent appends at the
    same position cannot both commit.
    """

    __tablename__ = "action_plan_status_updates"
    __table_args__ = (
        db.UniqueConstraint("action_plan_id", "seq", name="uq_action_plan_status_seq"),
    )

    id = db.Column(db.Integer, primary_key=True)
    action_plan_id = db.Column(
        db.Integer, db.ForeignKey("action_plans.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    seq = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False)
    comment = db.Column(db.Text, nullable=True)
    updated_by = db.Column(db.String(150), nullable=False)
    updated_by_name = db.Column(db.String(200), default="")
    updated_at = db.Column(db.DateTime(timezone=True), default=_now)

    action_plan = db.relationship("ActionPlan", back_populates="status_updates")

    def to_dict(self):
        return {
            "seq": self.seq,
            "status": self.status,
            "comment": self.comment,
            "updated_by": self.updated_by,
            "updated_by_name": self.updated_by_name,
            "updated_at": isoformat(self.updated_at),
        }

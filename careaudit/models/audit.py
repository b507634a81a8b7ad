"""
Care Audit Service
Audit domain models — templates and runs.

Models:
    - AuditTemplate: reusable checklist (category + ordered items + frequency)
    - AuditRun: one execution of a template, owning its per-item responses

Chain: AuditTemplate → AuditRun → ActionPlan (see models/action_plan.py)
"""

from datetime import datetime, timedelta, timezone

from careaudit.models import db
from careaudit.utils.helpers import isoformat


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_CATEGORIES = ("resident", "carefile", "governance", "clinical", "environment")

RUN_STATUSES = ("draft", "in-progress", "completed")
OPEN_RUN_STATUSES = ("draft", "in-progress")
ITEM_STATUSES = {"compliant", "non-compliant", "not-applicable", "checked", "unchecked"}

# Marker stored in AuditRun.open_slot while a run is not completed. NULL once
# completed, so the unique constraint only bites on open runs.
OPEN_SLOT = "open"


# ── Frequency policy ─────────────────────────────────────────────────────────

FREQUENCY_DAYS = {
    "monthly": 30,
    "quarterly": 90,
    "6months": 180,
    "yearly": 365,
}
DEFAULT_FREQUENCY_DAYS = 30


def frequency_days(frequency: str | None) -> int:
    """Day count for a frequency label; anything unmapped falls back to 30."""
    return FREQUENCY_DAYS.get(frequency, DEFAULT_FREQUENCY_DAYS)


def compute_next_audit_due(frequency: str | None, completed_at: datetime) -> datetime:
    """
    Next due date for a run completed at ``completed_at``.

    monthly → +30d, quarterly → +90d, 6months → +180d, yearly → +365d,
    everything else (daily, weekly, adhoc, unknown) → +30d.
    """
    return completed_at + timedelta(days=frequency_days(frequency))


def _now():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
#  TEMPLATE
# ═══════════════════════════════════════════════════════════════════════════

class AuditTemplate(db.Model):
    """
    A reusable checklist definition.

    ``items`` is an ordered JSON list of ``{"item_id", "label", "item_type"}``.
    Editing items never touches existing runs: runs snapshot item names.
    """

    __tablename__ = "audit_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    category = db.Column(db.String(20), nullable=False, index=True)
    organization_id = db.Column(db.String(64), nullable=False, index=True)
    team_id = db.Column(db.String(64), nullable=True, index=True,
                        comment="Set for team-scoped categories (resident, carefile)")
    items = db.Column(db.JSON, nullable=False, default=list)
    frequency = db.Column(db.String(20), nullable=False, default="monthly")
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by = db.Column(db.String(150), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    def item_labels(self) -> dict:
        """Map of item_id → label for the current item list."""
        return {item["item_id"]: item["label"] for item in (self.items or [])}

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "organization_id": self.organization_id,
            "team_id": self.team_id,
            "items": list(self.items or []),
            "frequency": self.frequency,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<AuditTemplate {self.id}: {self.category}/{self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  RUN
# ═══════════════════════════════════════════════════════════════════════════

class AuditRun(db.Model):
    """
    One completion of an AuditTemplate.

    Status moves draft → in-progress → completed and never back. ``frequency``
    and ``next_audit_due`` are written once, at completion.

    ``scope_key`` is the team id or organization id depending on the category,
    ``subject_key`` the resident id for per-resident categories ("" otherwise).
    """

    __tablename__ = "audit_runs"
    __table_args__ = (
        db.UniqueConstraint(
            "template_id", "scope_key", "subject_key", "open_slot",
            name="uq_audit_run_open_slot",
        ),
        db.Index("ix_audit_runs_template_scope", "template_id", "scope_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("audit_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    category = db.Column(db.String(20), nullable=False, index=True)
    template_name = db.Column(db.String(200), default="", comment="Snapshot at creation")

    organization_id = db.Column(db.String(64), nullable=False, index=True)
    team_id = db.Column(db.String(64), nullable=True, index=True)
    scope_key = db.Column(db.String(64), nullable=False)
    resident_id = db.Column(db.String(64), nullable=True, index=True)
    resident_name = db.Column(db.String(200), nullable=True)
    subject_key = db.Column(db.String(64), nullable=False, default="")

    status = db.Column(db.String(20), nullable=False, default="draft", index=True)
    open_slot = db.Column(db.String(10), nullable=True, default=OPEN_SLOT)
    items = db.Column(db.JSON, nullable=False, default=list)
    overall_notes = db.Column(db.Text, default="")

    audited_by = db.Column(db.String(150), default="")
    audited_at = db.Column(db.DateTime(timezone=True), default=_now)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    next_audit_due = db.Column(db.DateTime(timezone=True), nullable=True)
    frequency = db.Column(db.String(20), nullable=True, comment="Snapshot at completion")

    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    template = db.relationship("AuditTemplate")

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    def non_compliant_items(self) -> list[dict]:
        """Items a reviewer would raise action plans against."""
        return [i for i in (self.items or []) if i.get("status") == "non-compliant"]

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "template_name": self.template_name,
            "category": self.category,
            "organization_id": self.organization_id,
            "team_id": self.team_id,
            "resident_id": self.resident_id,
            "resident_name": self.resident_name,
            "status": self.status,
            "items": list(self.items or []),
            "overall_notes": self.overall_notes,
            "audited_by": self.audited_by,
            "audited_at": isoformat(self.audited_at),
            "completed_at": isoformat(self.completed_at),
            "next_audit_due": isoformat(self.next_audit_due),
            "frequency": self.frequency,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<AuditRun {self.id}: template={self.template_id} {self.status}>"

"""audit_engine_tables

Creates the audit engine tables:
  - audit_templates             — checklist definitions per category
  - audit_runs                  — template executions (one open run per scope)
  - action_plans                — remediation tasks raised against runs
  - action_plan_status_updates  — append-only status history (seq per plan)
  - notifications               — in-app notification records
  - resident_audit_items        — flattened per-resident item outcomes

Tables created conditionally (IF NOT EXISTS semantics) so the revision can run
against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-10-18 09:12:44.118203
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e2a9d4b10'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── AuditTemplate ─────────────────────────────────────────────────────
    if "audit_templates" not in existing:
        op.create_table(
            "audit_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column(
                "category", sa.String(length=20), nullable=False,
                comment="resident | carefile | governance | clinical | environment",
            ),
            sa.Column("organization_id", sa.String(length=64), nullable=False),
            sa.Column(
                "team_id", sa.String(length=64), nullable=True,
                comment="Set for team-scoped categories (resident, carefile)",
            ),
            sa.Column("items", sa.JSON(), nullable=False),
            sa.Column("frequency", sa.String(length=20), nullable=False, server_default="monthly"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_templates_category", "audit_templates", ["category"])
        op.create_index("ix_audit_templates_organization_id", "audit_templates", ["organization_id"])
        op.create_index("ix_audit_templates_team_id", "audit_templates", ["team_id"])
        op.create_index("ix_audit_templates_is_active", "audit_templates", ["is_active"])

    # ── AuditRun ──────────────────────────────────────────────────────────
    if "audit_runs" not in existing:
        op.create_table(
            "audit_runs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("category", sa.String(length=20), nullable=False),
            sa.Column("template_name", sa.String(length=200), nullable=True, comment="Snapshot at creation"),
            sa.Column("organization_id", sa.String(length=64), nullable=False),
            sa.Column("team_id", sa.String(length=64), nullable=True),
            sa.Column("scope_key", sa.String(length=64), nullable=False),
            sa.Column("resident_id", sa.String(length=64), nullable=True),
            sa.Column("resident_name", sa.String(length=200), nullable=True),
            sa.Column("subject_key", sa.String(length=64), nullable=False, server_default=""),
            sa.Column(
                "status", sa.String(length=20), nullable=False, server_default="draft",
                comment="draft | in-progress | completed",
            ),
            sa.Column(
                "open_slot", sa.String(length=10), nullable=True,
                comment="'open' while not completed, NULL afterwards",
            ),
            sa.Column("items", sa.JSON(), nullable=False),
            sa.Column("overall_notes", sa.Text(), nullable=True),
            sa.Column("audited_by", sa.String(length=150), nullable=True),
            sa.Column("audited_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("next_audit_due", sa.DateTime(timezone=True), nullable=True),
            sa.Column("frequency", sa.String(length=20), nullable=True, comment="Snapshot at completion"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["template_id"], ["audit_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "template_id", "scope_key", "subject_key", "open_slot",
                name="uq_audit_run_open_slot",
            ),
        )
        op.create_index("ix_audit_runs_template_id", "audit_runs", ["template_id"])
        op.create_index("ix_audit_runs_template_scope", "audit_runs", ["template_id", "scope_key"])
        op.create_index("ix_audit_runs_category", "audit_runs", ["category"])
        op.create_index("ix_audit_runs_organization_id", "audit_runs", ["organization_id"])
        op.create_index("ix_audit_runs_team_id", "audit_runs", ["team_id"])
        op.create_index("ix_audit_runs_resident_id", "audit_runs", ["resident_id"])
        op.create_index("ix_audit_runs_status", "audit_runs", ["status"])

    # ── ActionPlan ────────────────────────────────────────────────────────
    if "action_plans" not in existing:
        op.create_table(
            "action_plans",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("run_id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("category", sa.String(length=20), nullable=False),
            sa.Column("organization_id", sa.String(length=64), nullable=False),
            sa.Column("team_id", sa.String(length=64), nullable=True),
            sa.Column("resident_id", sa.String(length=64), nullable=True),
            sa.Column("item_id", sa.String(length=64), nullable=True, comment="Run item that failed"),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("assigned_to", sa.String(length=150), nullable=False),
            sa.Column("assigned_to_name", sa.String(length=200), nullable=True),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="Medium"),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column(
                "status", sa.String(length=20), nullable=False, server_default="pending",
                comment="pending | in_progress | completed",
            ),
            sa.Column("latest_comment", sa.Text(), nullable=True),
            sa.Column("is_new", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_by", sa.String(length=150), nullable=True),
            sa.Column("overdue_notified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=False),
            sa.Column("created_by_name", sa.String(length=200), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["run_id"], ["audit_runs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["template_id"], ["audit_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        for col in ("run_id", "template_id", "category", "organization_id",
                    "team_id", "resident_id", "assigned_to", "status"):
            op.create_index(f"ix_action_plans_{col}", "action_plans", [col])

    # ── ActionPlanStatusUpdate ────────────────────────────────────────────
    if "action_plan_status_updates" not in existing:
        op.create_table(
            "action_plan_status_updates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("action_plan_id", sa.Integer(), nullable=False),
            sa.Column("seq", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("updated_by", sa.String(length=150), nullable=False),
            sa.Column("updated_by_name", sa.String(length=200), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["action_plan_id"], ["action_plans.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("action_plan_id", "seq", name="uq_action_plan_status_seq"),
        )
        op.create_index(
            "ix_action_plan_status_updates_action_plan_id",
            "action_plan_status_updates", ["action_plan_id"],
        )

    # ── Notification ──────────────────────────────────────────────────────
    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.String(length=150), nullable=False, comment="Recipient"),
            sa.Column("sender_id", sa.String(length=150), nullable=True),
            sa.Column("sender_name", sa.String(length=200), nullable=True),
            sa.Column("type", sa.String(length=40), nullable=False, server_default="action_plan"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("link", sa.String(length=500), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("organization_id", sa.String(length=64), nullable=True),
            sa.Column("team_id", sa.String(length=64), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_organization_id", "notifications", ["organization_id"])
        op.create_index("ix_notifications_team_id", "notifications", ["team_id"])

    # ── ResidentAuditItem ─────────────────────────────────────────────────
    if "resident_audit_items" not in existing:
        op.create_table(
            "resident_audit_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("resident_id", sa.String(length=64), nullable=False),
            sa.Column("item_name", sa.String(length=200), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("auditor_name", sa.String(length=200), nullable=True),
            sa.Column("last_audited_date", sa.String(length=10), nullable=True, comment="YYYY-MM-DD"),
            sa.Column("due_date", sa.String(length=10), nullable=True, comment="YYYY-MM-DD"),
            sa.Column("team_id", sa.String(length=64), nullable=False),
            sa.Column("organization_id", sa.String(length=64), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("resident_id", "item_name", name="uq_resident_audit_item"),
        )
        op.create_index("ix_resident_audit_items_resident_id", "resident_audit_items", ["resident_id"])
        op.create_index("ix_resident_audit_items_team_id", "resident_audit_items", ["team_id"])
        op.create_index(
            "ix_resident_audit_items_organization_id", "resident_audit_items", ["organization_id"],
        )


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    for table in (
        "resident_audit_items",
        "notifications",
        "action_plan_status_updates",
        "action_plans",
        "audit_runs",
        "audit_templates",
    ):
        if table in existing:
            op.drop_table(table)

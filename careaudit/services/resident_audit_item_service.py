"""Per-resident audit item table — upsert and listing.

Transaction policy: flush only, caller commits.

Rows are keyed by (resident_id, item_name). Completing a care-file run
refreshes one row per run item via :func:`record_run_results`.
"""
import logging

from careaudit.core.exceptions import ValidationError
from careaudit.models import db
from careaudit.models.resident_audit_item import RESIDENT_ITEM_STATUSES, ResidentAuditItem
from careaudit.utils.helpers import parse_iso_day

logger = logging.getLogger(__name__)

# Run item status → resident item status.
_RUN_TO_ITEM_STATUS = {
    "compliant": "completed",
    "checked": "completed",
    "not-applicable": "n/a",
    "non-compliant": "pending",
    "unchecked": "pending",
}


def _day(value, field):
    try:
        return parse_iso_day(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={field: "YYYY-MM-DD"}) from exc


def upsert_item(*, resident_id, item_name, status, team_id, organization_id,
                auditor_name=None, last_audited_date=None, due_date=None):
    """Create or update the row for (resident, item name).

    Returns:
        ResidentAuditItem (already flushed).
    """
    if not resident_id or not (item_name or "").strip():
        raise ValidationError(
            "resident_id and item_name are required",
            details={"resident_id": "required", "item_name": "required"},
        )
    if status not in RESIDENT_ITEM_STATUSES:
        raise ValidationError(
            f"Invalid resident audit item status: {status}",
            details={"status": f"one of {', '.join(sorted(RESIDENT_ITEM_STATUSES))}"},
        )
    last_audited_date = _day(last_audited_date, "last_audited_date")
    due_date = _day(due_date, "due_date")

    item = ResidentAuditItem.query.filter_by(
        resident_id=str(resident_id), item_name=item_name.strip(),
    ).first()
    if item is None:
        if not team_id or not organization_id:
            raise ValidationError(
                "team_id and organization_id are required for a new item",
                details={"team_id": "required", "organization_id": "required"},
            )
        item = ResidentAuditItem(
            resident_id=str(resident_id),
            item_name=item_name.strip(),
            team_id=str(team_id),
            organization_id=str(organization_id),
        )
        db.session.add(item)
    item.status = status
    item.auditor_name = auditor_name
    item.last_audited_date = last_audited_date
    item.due_date = due_date
    db.session.flush()
    return item


def record_run_results(run):
    """Refresh the resident item table from a completed per-resident run."""
    if not run.resident_id:
        return []
    audited_day = run.completed_at.date().isoformat()
    due_day = run.next_audit_due.date().isoformat() if run.next_audit_due else None
    updated = []
    for entry in run.items or []:
        updated.append(upsert_item(
            resident_id=run.resident_id,
            item_name=entry["item_name"],
            status=_RUN_TO_ITEM_STATUS.get(entry.get("status"), "pending"),
            team_id=run.team_id or run.scope_key,
            organization_id=run.organization_id,
            auditor_name=run.audited_by,
            last_audited_date=audited_day,
            due_date=due_day,
        ))
    logger.debug("Recorded %d resident audit items for run=%s", len(updated), run.id)
    return updated


def list_for_resident(resident_id):
    return (
        ResidentAuditItem.query
        .filter_by(resident_id=str(resident_id))
        .order_by(ResidentAuditItem.item_name)
        .all()
    )


def list_for_team(team_id, organization_id):
    return (
        ResidentAuditItem.query
        .filter_by(team_id=str(team_id), organization_id=str(organization_id))
        .order_by(ResidentAuditItem.resident_id, ResidentAuditItem.item_name)
        .all()
    )

"""Audit run state machine — find-or-create drafts, autosave, completion.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().

State machine:
    draft → in-progress → completed      (forward only, completed is terminal)

Invariant: at most one non-completed run per (template, scope, resident).
The ``uq_audit_run_open_slot`` constraint enforces it in the store;
``get_or_create_draft`` inserts inside a SAVEPOINT and falls back to the
concurrent winner's row when the constraint fires.
"""
import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from careaudit.core.exceptions import ConcurrencyError, InvalidStateError, NotFoundError, ValidationError
from careaudit.models import db
from careaudit.models.action_plan import ActionPlan
from careaudit.models.audit import (
    AuditRun,
    ITEM_STATUSES,
    OPEN_RUN_STATUSES,
    OPEN_SLOT,
    RUN_STATUSES,
    compute_next_audit_due,
)
from careaudit.services import resident_audit_item_service
from careaudit.services.category_policy import get_policy
from careaudit.services.template_service import get_template
from careaudit.utils.helpers import ensure_utc, utcnow

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────────────────────────


def _resolve_scope(template, *, team_id=None, resident_id=None):
    """Return (policy, team_id, scope_key, subject_key) for a run of ``template``.

    The template decides the scope: a team-scoped template's runs live in
    that template's team, an organization-scoped template's runs in its
    organization. ``team_id`` is recorded on organization-scoped runs as the
    auditing team but does not affect the key.
    """
    policy = get_policy(template.category)
    if policy.team_scoped:
        if team_id and template.team_id and str(team_id) != template.team_id:
            raise ValidationError(
                f"Template {template.id} belongs to team {template.team_id}",
                details={"team_id": "does not match template"},
            )
        team_id = template.team_id or team_id
    scope_key = policy.scope_key(organization_id=template.organization_id, team_id=team_id)

    if policy.requires_resident:
        if not resident_id:
            raise ValidationError(
                f"resident_id is required for {template.category} audits",
                details={"resident_id": "required"},
            )
        subject_key = str(resident_id)
    else:
        subject_key = ""
    return policy, (str(team_id) if team_id else None), scope_key, subject_key


def _find_open_run(template_id, scope_key, subject_key):
    return (
        AuditRun.query
        .filter_by(template_id=template_id, scope_key=scope_key,
                   subject_key=subject_key, open_slot=OPEN_SLOT)
        .first()
    )


def _get_run_for_update(run_id):
    """Load a run with a row lock (no-op on SQLite) and fresh column values."""
    run = (
        AuditRun.query
        .filter_by(id=run_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if run is None:
        raise NotFoundError(resource="AuditRun", resource_id=run_id)
    return run


def _normalize_run_items(items, template):
    """Validate run items and snapshot item names from the template.

    Items whose id is no longer on the template keep the name the caller
    supplied, so history survives template edits.
    """
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("items must be a list", details={"items": "invalid"})

    labels = template.item_labels() if template is not None else {}
    seen = set()
    normalized = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", details={"items": "invalid"})
        item_id = str(raw.get("item_id") or "").strip()
        if not item_id:
            raise ValidationError("Every item needs an item_id", details={"items": "item_id required"})
        if item_id in seen:
            raise ValidationError(
                f"Duplicate item_id '{item_id}' in run items",
                details={"items": f"item_id '{item_id}' is not unique"},
            )
        status = raw.get("status")
        if status is not None and status not in ITEM_STATUSES:
            raise ValidationError(
                f"Invalid item status '{status}' for item '{item_id}'",
                details={"items": f"status must be one of {', '.join(sorted(ITEM_STATUSES))}"},
            )
        item_name = labels.get(item_id) or raw.get("item_name") or item_id
        seen.add(item_id)
        normalized.append({
            "item_id": item_id,
            "item_name": item_name,
            "status": status,
            "notes": raw.get("notes") or "",
            "date": raw.get("date"),
        })
    return normalized


def _ensure_not_completed(run, action):
    if run.is_completed:
        raise InvalidStateError(
            "AuditRun", run.id, run.status,
            f"cannot {action} a completed run",
        )


# ── Mutations ────────────────────────────────────────────────────────────


def get_or_create_draft(template_id, *, audited_by, team_id=None,
                        resident_id=None, resident_name=None):
    """Return the open run for (template, scope), creating a draft if none.

    Returns:
        AuditRun in draft or in-progress state (already flushed).

    Raises:
        NotFoundError: template does not exist.
        ValidationError: scope or resident id missing for the category.
        ConcurrencyError: the open-run constraint fired yet no open run is
            visible, meaning the store did not serialise the two writers.
    """
    template = get_template(template_id)
    _policy, team_id, scope_key, subject_key = _resolve_scope(
        template, team_id=team_id, resident_id=resident_id,
    )

    existing = _find_open_run(template.id, scope_key, subject_key)
    if existing is not None:
        return existing

    run = AuditRun(
        template_id=template.id,
        category=template.category,
        template_name=template.name,
        organization_id=template.organization_id,
        team_id=team_id,
        scope_key=scope_key,
        resident_id=str(resident_id) if resident_id else None,
        resident_name=resident_name,
        subject_key=subject_key,
        status="draft",
        open_slot=OPEN_SLOT,
        items=[],
        overall_notes="",
        audited_by=audited_by or "",
    )
    try:
        with db.session.begin_nested():
            db.session.add(run)
    except IntegrityError:
        winner = _find_open_run(template.id, scope_key, subject_key)
        if winner is None:
            raise ConcurrencyError(
                "AuditRun",
                f"open-run constraint fired for template={template.id} scope={scope_key} "
                "but no open run is visible",
            )
        logger.info("Draft race for template=%s scope=%s resolved to run=%s",
                    template.id, scope_key, winner.id)
        return winner

    logger.info("Created draft run id=%s for %s template=%s scope=%s",
                run.id, template.category, template.id, scope_key)
    return run


def update_run(run_id, *, items, status="draft", overall_notes=None):
    """Replace a run's mutable fields (autosave / status promotion).

    ``status`` may stay put or move forward; asking for ``completed`` goes
    through :func:`complete_run` so the due date is computed.

    Raises:
        InvalidStateError: the run is completed, or the status would move back.
        ValidationError: unknown status or malformed items.
    """
    if status not in RUN_STATUSES:
        raise ValidationError(
            f"Invalid run status: {status}",
            details={"status": f"one of {', '.join(RUN_STATUSES)}"},
        )

    run = _get_run_for_update(run_id)
    _ensure_not_completed(run, "update")

    if status == "completed":
        return complete_run(run_id, items=items, overall_notes=overall_notes)

    if RUN_STATUSES.index(status) < RUN_STATUSES.index(run.status):
        raise InvalidStateError(
            "AuditRun", run.id, run.status,
            f"cannot move back to '{status}'",
        )

    run.items = _normalize_run_items(items, run.template)
    run.status = status
    run.overall_notes = overall_notes or ""
    db.session.flush()
    return run


def complete_run(run_id, *, items=None, overall_notes=None, audited_by=None, now=None):
    """Complete a run and schedule the next audit.

    Sets ``completed_at``, snapshots the template's frequency and computes
    ``next_audit_due`` from it. Per-resident categories also refresh the
    resident audit item table.

    Raises:
        InvalidStateError: the run is already completed.
    """
    run = _get_run_for_update(run_id)
    _ensure_not_completed(run, "complete")

    template = run.template
    now = now or utcnow()
    if items is not None:
        run.items = _normalize_run_items(items, template)
    if overall_notes is not None:
        run.overall_notes = overall_notes
    if audited_by:
        run.audited_by = audited_by

    run.status = "completed"
    run.open_slot = None
    run.completed_at = now
    run.frequency = template.frequency
    run.next_audit_due = compute_next_audit_due(template.frequency, now)
    db.session.flush()

    if get_policy(run.category).requires_resident:
        resident_audit_item_service.record_run_results(run)

    logger.info("Completed run id=%s (%s template=%s) next due %s",
                run.id, run.category, run.template_id, run.next_audit_due.date().isoformat())
    return run


def delete_run(run_id):
    """Delete a draft or in-progress run (draft cleanup).

    Raises:
        InvalidStateError: completed runs are audit history and stay.
    """
    run = _get_run_for_update(run_id)
    _ensure_not_completed(run, "delete")
    db.session.delete(run)
    db.session.flush()
    return run_id


def cleanup_stale_drafts(older_than_days=30, now=None):
    """Delete abandoned open runs and any action plans raised against them.

    A run is abandoned when it is still draft or in-progress, was created
    more than ``older_than_days`` ago and never had an item saved. Runs with
    saved items are kept however old they are.

    Returns:
        Number of runs deleted.
    """
    if older_than_days < 0:
        raise ValidationError("older_than_days must not be negative", details={"older_than_days": ">= 0"})
    cutoff = (now or utcnow()) - timedelta(days=older_than_days)
    stale = [
        run for run in AuditRun.query.filter(AuditRun.status.in_(OPEN_RUN_STATUSES)).all()
        if not run.items and run.created_at is not None and ensure_utc(run.created_at) < cutoff
    ]

    plans_deleted = 0
    for run in stale:
        for plan in ActionPlan.query.filter_by(run_id=run.id).all():
            db.session.delete(plan)
            plans_deleted += 1
    db.session.flush()
    for run in stale:
        db.session.delete(run)
    db.session.flush()

    logger.info("Stale draft cleanup: %d run(s), %d action plan(s) deleted", len(stale), plans_deleted)
    return len(stale)


# ── Reads ────────────────────────────────────────────────────────────────


def get_run(run_id):
    run = db.session.get(AuditRun, run_id)
    if run is None:
        raise NotFoundError(resource="AuditRun", resource_id=run_id)
    return run


def _scoped_runs(template_id, *, team_id=None, resident_id=None):
    template = get_template(template_id)
    policy = get_policy(template.category)
    if policy.team_scoped:
        team_id = template.team_id or team_id
    scope_key = policy.scope_key(organization_id=template.organization_id, team_id=team_id)
    q = AuditRun.query.filter_by(template_id=template.id, scope_key=scope_key)
    if resident_id:
        q = q.filter_by(subject_key=str(resident_id))
    return q


def list_open_runs(template_id, *, team_id=None, resident_id=None):
    """Draft and in-progress runs for a template in its scope, newest first."""
    return (
        _scoped_runs(template_id, team_id=team_id, resident_id=resident_id)
        .filter(AuditRun.status.in_(OPEN_RUN_STATUSES))
        .order_by(AuditRun.created_at.desc(), AuditRun.id.desc())
        .all()
    )


def list_completed_runs(template_id, *, team_id=None, resident_id=None, limit=10):
    """The last ``limit`` completed runs for a template, most recent first.

    ``limit=None`` returns the whole history.
    """
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
        raise ValidationError(f"Invalid limit: {limit!r}", details={"limit": "integer >= 1"})
    q = (
        _scoped_runs(template_id, team_id=team_id, resident_id=resident_id)
        .filter_by(status="completed")
        .order_by(AuditRun.completed_at.desc(), AuditRun.id.desc())
    )
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def latest_completed_run(template_id, *, team_id=None, resident_id=None):
    runs = list_completed_runs(template_id, team_id=team_id, resident_id=resident_id, limit=1)
    return runs[0] if runs else None


def latest_completed_per_template(organization_id, *, category=None, team_id=None):
    """The single most recent completed run of every template in an organization."""
    if not organization_id:
        raise ValidationError("organization_id is required", details={"organization_id": "required"})
    q = AuditRun.query.filter_by(organization_id=str(organization_id), status="completed")
    if category:
        get_policy(category)
        q = q.filter_by(category=category)
    if team_id:
        q = q.filter_by(team_id=str(team_id))
    runs = q.order_by(AuditRun.completed_at.desc(), AuditRun.id.desc()).all()

    latest = {}
    for run in runs:
        latest.setdefault(run.template_id, run)
    return list(latest.values())

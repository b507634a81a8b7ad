"""Remediation lifecycle — action plans raised against audit runs.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler, CLI command) is responsible for db.session.commit().

Lifecycle:
    pending → in_progress → completed        (completed is terminal)

Every transition appends one ActionPlanStatusUpdate; the last entry's status
always equals ``ActionPlan.status``. Overdue is derived at read time from
``due_date`` and is not a status that can be set.

Notifications:
    create                → assignee   ("action_plan")
    transition→completed  → creator    ("action_plan_completed")
    notify_overdue_plans  → assignee + creator ("action_plan_overdue*")
All of them are non-fatal: a failed insert is logged and the parent
operation still applies.
"""
import logging
from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from careaudit.core.exceptions import ConcurrencyError, InvalidStateError, NotFoundError, ValidationError
from careaudit.models import db
from careaudit.models.action_plan import (
    ACTION_PLAN_STATUSES,
    PRIORITY_LEVELS,
    PRIORITY_ORDER,
    ActionPlan,
    ActionPlanStatusUpdate,
)
from careaudit.services.audit_run_service import get_run
from careaudit.services.category_policy import get_policy
from careaudit.services.notification import NotificationService
from careaudit.services.template_service import get_template
from careaudit.utils.helpers import ensure_utc, isoformat, parse_datetime, utcnow

logger = logging.getLogger(__name__)

_DETAIL_FIELDS = ("description", "assigned_to", "assigned_to_name", "priority", "due_date")


# ── Helpers ──────────────────────────────────────────────────────────────


def _validate_priority(priority):
    if priority not in PRIORITY_LEVELS:
        raise ValidationError(
            f"Invalid priority: {priority}",
            details={"priority": f"one of {', '.join(PRIORITY_LEVELS)}"},
        )


def _parse_due_date(value):
    if value is None or value == "":
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValidationError(f"Invalid due_date: {value!r}", details={"due_date": "invalid date"})
    return parsed


def _validate_status(plan_id, current, new_status):
    if new_status == "overdue":
        raise InvalidStateError(
            "ActionPlan", plan_id, current,
            "'overdue' is derived from due_date and cannot be set",
        )
    if new_status not in ACTION_PLAN_STATUSES:
        raise InvalidStateError(
            "ActionPlan", plan_id, current,
            f"unknown status '{new_status}'",
        )


def _get_plan_for_update(plan_id):
    plan = (
        ActionPlan.query
        .filter_by(id=plan_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if plan is None:
        raise NotFoundError(resource="ActionPlan", resource_id=plan_id)
    return plan


def _metadata(plan, **extra):
    meta = {
        "action_plan_id": plan.id,
        "audit_id": plan.run_id,
        "template_id": plan.template_id,
        "priority": plan.priority,
        "due_date": isoformat(plan.due_date),
        "audit_category": plan.category,
    }
    if plan.resident_id:
        meta["resident_id"] = plan.resident_id
    meta.update(extra)
    return meta


def _sort_key(plan, now):
    """Overdue first, then High > Medium > Low, then earliest due, then newest."""
    due = ensure_utc(plan.due_date)
    created = ensure_utc(plan.created_at)
    return (
        0 if plan.is_overdue(now) else 1,
        PRIORITY_ORDER.get(plan.priority, 3),
        0 if due else 1,
        due.timestamp() if due else 0,
        -(created.timestamp() if created else 0),
    )


# ── Create / update ──────────────────────────────────────────────────────


def create_action_plan(*, run_id, template_id, description, assigned_to, created_by,
                       assigned_to_name="", priority="Medium", due_date=None,
                       created_by_name="", item_id=None, team_id=None, resident_id=None):
    """Raise an action plan against a run and notify the assignee.

    Returns:
        ActionPlan instance (already flushed), ``pending`` and ``is_new``.

    Raises:
        ValidationError: missing description/assignee/creator, bad priority or
            due date, run/template mismatch, unknown item, missing resident.
        NotFoundError: run or template does not exist.
    """
    missing = {
        field: "required"
        for field, value in (("description", description), ("assigned_to", assigned_to),
                             ("created_by", created_by))
        if not (value or "").strip()
    }
    missing.update({field: "required" for field, value in (("run_id", run_id), ("template_id", template_id))
                    if value is None})
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(sorted(missing))}", details=missing)
    _validate_priority(priority)
    due = _parse_due_date(due_date)

    run = get_run(run_id)
    template = get_template(template_id)
    if run.template_id != template.id:
        raise ValidationError(
            f"AuditRun {run.id} does not belong to template {template.id}",
            details={"template_id": "does not match run"},
        )
    if item_id and item_id not in {i["item_id"] for i in (run.items or [])}:
        raise ValidationError(f"Run {run.id} has no item '{item_id}'", details={"item_id": "unknown"})

    policy = get_policy(template.category)
    resident_id = resident_id or run.resident_id
    if policy.requires_resident and not resident_id:
        raise ValidationError(
            f"resident_id is required for {template.category} action plans",
            details={"resident_id": "required"},
        )

    plan = ActionPlan(
        run_id=run.id,
        template_id=template.id,
        category=template.category,
        organization_id=run.organization_id,
        team_id=str(team_id) if team_id else run.team_id,
        resident_id=str(resident_id) if resident_id else None,
        item_id=item_id,
        description=description.strip(),
        assigned_to=assigned_to.strip(),
        assigned_to_name=assigned_to_name or "",
        priority=priority,
        due_date=due,
        status="pending",
        is_new=True,
        created_by=created_by.strip(),
        created_by_name=created_by_name or "",
    )
    db.session.add(plan)
    db.session.flush()

    NotificationService.create_non_fatal(
        user_id=plan.assigned_to,
        sender_id=plan.created_by,
        sender_name=plan.created_by_name or None,
        type="action_plan",
        title="New Action Plan Assigned",
        message=(
            f"{plan.created_by_name or 'A manager'} assigned you an action plan for "
            f"{template.name}: \"{plan.description}\""
        ),
        link=policy.run_link(run.id, plan.resident_id),
        metadata=_metadata(plan),
        organization_id=plan.organization_id,
        team_id=plan.team_id,
    )

    logger.info("Created action plan id=%s on run=%s (%s) for %s",
                plan.id, run.id, plan.category, plan.assigned_to)
    return plan


def update_action_plan(plan_id, data):
    """Patch description / assignee / priority / due date. Status is not patchable.

    Reassigning to someone else marks the plan unread again.
    """
    unknown = set(data) - set(_DETAIL_FIELDS)
    if unknown:
        raise ValidationError(
            f"Fields cannot be updated: {', '.join(sorted(unknown))}",
            details={f: "not updatable" for f in unknown},
        )
    if "description" in data and not (data["description"] or "").strip():
        raise ValidationError("description cannot be empty", details={"description": "required"})
    if "assigned_to" in data and not (data["assigned_to"] or "").strip():
        raise ValidationError("assigned_to cannot be empty", details={"assigned_to": "required"})
    if "priority" in data:
        _validate_priority(data["priority"])
    due = _parse_due_date(data["due_date"]) if "due_date" in data else None

    plan = _get_plan_for_update(plan_id)
    if "description" in data:
        plan.description = data["description"].strip()
    if "assigned_to" in data and data["assigned_to"].strip() != plan.assigned_to:
        plan.assigned_to = data["assigned_to"].strip()
        plan.is_new = True
        plan.viewed_at = None
    if "assigned_to_name" in data:
        plan.assigned_to_name = data["assigned_to_name"] or ""
    if "priority" in data:
        plan.priority = data["priority"]
    if "due_date" in data:
        plan.due_date = due
        plan.overdue_notified_at = None
    db.session.flush()
    return plan


# ── Lifecycle ────────────────────────────────────────────────────────────


def transition_action_plan(plan_id, new_status, *, updated_by, comment=None,
                           updated_by_name=None, now=None):
    """Move a plan to ``new_status`` and append the change to its history.

    Completing sets ``completed_at`` and notifies the plan's creator. Any
    other status only updates state.

    Raises:
        InvalidStateError: unknown status, 'overdue', or the plan is completed.
        ValidationError: ``updated_by`` missing.
        ConcurrencyError: another writer appended at the same history position.
    """
    if not (updated_by or "").strip():
        raise ValidationError("updated_by is required", details={"updated_by": "required"})

    plan = _get_plan_for_update(plan_id)
    _validate_status(plan.id, plan.status, new_status)
    if plan.status == "completed":
        raise InvalidStateError("ActionPlan", plan.id, plan.status, "plan is already completed")

    now = now or utcnow()
    last_seq = (
        db.session.query(func.max(ActionPlanStatusUpdate.seq))
        .filter(ActionPlanStatusUpdate.action_plan_id == plan.id)
        .scalar()
    ) or 0
    previous_status = plan.status

    try:
        with db.session.begin_nested():
            plan.status_updates.append(ActionPlanStatusUpdate(
                seq=last_seq + 1,
                status=new_status,
                comment=comment,
                updated_by=updated_by,
                updated_by_name=updated_by_name or "",
                updated_at=now,
            ))
            plan.status = new_status
            plan.latest_comment = comment
            if new_status == "completed":
                plan.completed_at = now
                plan.completed_by = updated_by
    except IntegrityError as exc:
        raise ConcurrencyError(
            "ActionPlan",
            f"status history position {last_seq + 1} of plan {plan_id} was written concurrently",
        ) from exc

    logger.info("Action plan id=%s %s → %s by %s", plan.id, previous_status, new_status, updated_by)

    if new_status == "completed":
        template_name = plan.template.name if plan.template else "audit"
        sender_name = updated_by_name or plan.assigned_to_name or "A staff member"
        NotificationService.create_non_fatal(
            user_id=plan.created_by,
            sender_id=updated_by,
            sender_name=updated_by_name or plan.assigned_to_name or None,
            type="action_plan_completed",
            title="Action Plan Completed",
            message=(
                f"{sender_name} completed the action plan for {template_name}: "
                f"\"{plan.description}\""
                + (f"\n\nComment: {comment}" if comment else "")
            ),
            link=get_policy(plan.category).run_link(plan.run_id, plan.resident_id),
            metadata=_metadata(plan, comment=comment),
            organization_id=plan.organization_id,
            team_id=plan.team_id,
        )
    return plan


def mark_viewed(plan_id, now=None):
    """Clear the unread flag on one plan."""
    plan = get_action_plan(plan_id)
    if plan.is_new:
        plan.is_new = False
        plan.viewed_at = now or utcnow()
        db.session.flush()
    return plan


def mark_all_viewed(assigned_to, now=None):
    """Clear the unread flag on every plan of an assignee. Returns the count."""
    now = now or utcnow()
    plans = ActionPlan.query.filter_by(assigned_to=assigned_to, is_new=True).all()
    for plan in plans:
        plan.is_new = False
        plan.viewed_at = now
    db.session.flush()
    return len(plans)


def delete_action_plan(plan_id):
    """Hard delete. Notifications already sent are left alone."""
    plan = get_action_plan(plan_id)
    db.session.delete(plan)
    db.session.flush()
    logger.info("Deleted action plan id=%s", plan_id)
    return plan_id


# ── Reads ────────────────────────────────────────────────────────────────


def get_action_plan(plan_id):
    plan = db.session.get(ActionPlan, plan_id)
    if plan is None:
        raise NotFoundError(resource="ActionPlan", resource_id=plan_id)
    return plan


def get_plan_detail(plan_id, now=None):
    """Plan dict enriched with template name and run completion time."""
    plan = get_action_plan(plan_id)
    d = plan.to_dict(now=now)
    d["template_name"] = plan.template.name if plan.template else "Unknown Audit"
    d["audit_completed_at"] = isoformat(plan.run.completed_at) if plan.run else None
    return d


def list_for_run(run_id):
    return ActionPlan.query.filter_by(run_id=run_id).order_by(ActionPlan.created_at, ActionPlan.id).all()


def list_for_template(template_id):
    return (
        ActionPlan.query.filter_by(template_id=template_id)
        .order_by(ActionPlan.created_at, ActionPlan.id).all()
    )


def list_for_team(team_id, category=None):
    q = ActionPlan.query.filter_by(team_id=str(team_id))
    if category:
        q = q.filter_by(category=category)
    return q.order_by(ActionPlan.created_at, ActionPlan.id).all()


def _filter_status(q, status):
    if status and status != "all":
        if status not in ACTION_PLAN_STATUSES:
            raise ValidationError(
                f"Invalid status filter: {status}",
                details={"status": f"one of all, {', '.join(ACTION_PLAN_STATUSES)}"},
            )
        q = q.filter_by(status=status)
    return q


def list_for_assignee(assigned_to, *, organization_id=None, status=None, now=None):
    """Plans assigned to a user: overdue first, then by priority and due date."""
    q = ActionPlan.query.filter_by(assigned_to=assigned_to)
    if organization_id:
        q = q.filter_by(organization_id=str(organization_id))
    plans = _filter_status(q, status).all()
    now = now or utcnow()
    return sorted(plans, key=lambda p: _sort_key(p, now))


def list_created_by(created_by, *, status=None, now=None):
    """Plans a reviewer raised, in the same order as the assignee view."""
    plans = _filter_status(ActionPlan.query.filter_by(created_by=created_by), status).all()
    now = now or utcnow()
    return sorted(plans, key=lambda p: _sort_key(p, now))


def count_for_run(run_id):
    return ActionPlan.query.filter_by(run_id=run_id).count()


def count_unread(assigned_to):
    return ActionPlan.query.filter_by(assigned_to=assigned_to, is_new=True).count()


# ── Maintenance (triggered externally, e.g. by the Flask CLI) ────────────


def notify_overdue_plans(now=None):
    """Notify assignees (and creators) about plans that have become overdue.

    Status is not changed. ``overdue_notified_at`` prevents repeat alerts
    until the due date is edited.

    Returns:
        Number of plans newly notified.
    """
    now = now or utcnow()
    candidates = (
        ActionPlan.query
        .filter(ActionPlan.status != "completed")
        .filter(ActionPlan.due_date.isnot(None))
        .filter(ActionPlan.overdue_notified_at.is_(None))
        .all()
    )
    notified = 0
    for plan in candidates:
        if not plan.is_overdue(now):
            continue
        template_name = plan.template.name if plan.template else "audit"
        NotificationService.create_non_fatal(
            user_id=plan.assigned_to,
            sender_id=plan.created_by,
            sender_name=plan.created_by_name or None,
            type="action_plan_overdue",
            title="Action Plan Overdue",
            message=f"Your action plan for \"{template_name}\" is now overdue: \"{plan.description}\"",
            link="/dashboard/action-plans",
            metadata=_metadata(plan),
            organization_id=plan.organization_id,
            team_id=plan.team_id,
        )
        if plan.created_by != plan.assigned_to:
            NotificationService.create_non_fatal(
                user_id=plan.created_by,
                sender_id=plan.assigned_to,
                sender_name=plan.assigned_to_name or None,
                type="action_plan_overdue_manager",
                title="Action Plan Overdue - Manager Alert",
                message=(
                    f"Action plan assigned to {plan.assigned_to_name or plan.assigned_to} "
                    f"is now overdue: \"{plan.description}\""
                ),
                link="/dashboard/action-plans",
                metadata=_metadata(plan),
                organization_id=plan.organization_id,
                team_id=plan.team_id,
            )
        plan.overdue_notified_at = now
        notified += 1
    db.session.flush()
    logger.info("Overdue action plan sweep: %d plan(s) notified", notified)
    return notified


def archive_completed_plans(older_than_days=90, now=None):
    """Delete completed plans whose completion is older than the threshold.

    Returns:
        Number of plans deleted.
    """
    now = now or utcnow()
    cutoff = now - timedelta(days=older_than_days)
    old = [
        p for p in ActionPlan.query.filter_by(status="completed").all()
        if p.completed_at is not None and ensure_utc(p.completed_at) < cutoff
    ]
    for plan in old:
        db.session.delete(plan)
    db.session.flush()
    logger.info("Archived %d completed action plan(s) older than %d days", len(old), older_than_days)
    return len(old)

"""Due-date and overdue accounting — read-only views over runs and plans.

Nothing here writes. "Overdue" and "upcoming" are computed on every call
from stored dates and the caller's ``now``; no result is cached.
"""
import logging
from datetime import timedelta

from sqlalchemy import and_, or_

from careaudit.core.exceptions import ValidationError
from careaudit.models.action_plan import ActionPlan
from careaudit.models.resident_audit_item import RESIDENT_ITEM_CLOSED_STATUSES, ResidentAuditItem
from careaudit.services.audit_run_service import latest_completed_per_template
from careaudit.services.category_policy import get_policy
from careaudit.utils.helpers import ensure_utc, parse_iso_day, utcnow

logger = logging.getLogger(__name__)


def _team_plans(team_id, category=None, organization_id=None):
    """Plans visible on a team dashboard.

    A plan's ``team_id`` comes from its run or from the caller, so plans on
    organization-scoped audits (clinical, governance, environment) raised
    without a team carry none. Passing ``organization_id`` adds those
    team-less plans of the organization; with no ``team_id`` every plan of
    the organization is returned.
    """
    if not team_id and not organization_id:
        raise ValidationError("team_id or organization_id is required", details={"team_id": "required"})
    q = ActionPlan.query
    if team_id and organization_id:
        q = q.filter(or_(
            ActionPlan.team_id == str(team_id),
            and_(ActionPlan.team_id.is_(None), ActionPlan.organization_id == str(organization_id)),
        ))
    elif team_id:
        q = q.filter_by(team_id=str(team_id))
    else:
        q = q.filter_by(organization_id=str(organization_id))
    if category:
        get_policy(category)
        q = q.filter_by(category=category)
    return q.all()


def overdue_action_plans(team_id, *, category=None, organization_id=None, now=None):
    """Open plans of a team whose due date has passed, earliest due first."""
    now = now or utcnow()
    plans = [p for p in _team_plans(team_id, category, organization_id) if p.is_overdue(now)]
    return sorted(plans, key=lambda p: (ensure_utc(p.due_date), p.id))


def action_plan_stats(team_id, *, category=None, organization_id=None, now=None):
    """Single-pass tally of a team's plans.

    Returns:
        {"total", "pending", "in_progress", "completed", "overdue",
         "high_priority_open"}
    """
    now = now or utcnow()
    stats = {
        "total": 0,
        "pending": 0,
        "in_progress": 0,
        "completed": 0,
        "overdue": 0,
        "high_priority_open": 0,
    }
    for plan in _team_plans(team_id, category, organization_id):
        stats["total"] += 1
        if plan.status in stats:
            stats[plan.status] += 1
        if plan.is_overdue(now):
            stats["overdue"] += 1
        if plan.priority == "High" and plan.status != "completed":
            stats["high_priority_open"] += 1
    return stats


def overdue_runs(organization_id, *, category=None, team_id=None, now=None):
    """Latest completed run per template whose next audit is already due."""
    now = now or utcnow()
    runs = [
        r for r in latest_completed_per_template(organization_id, category=category, team_id=team_id)
        if r.next_audit_due is not None and ensure_utc(r.next_audit_due) < now
    ]
    return sorted(runs, key=lambda r: (ensure_utc(r.next_audit_due), r.id))


def upcoming_runs(organization_id, *, category=None, team_id=None, window_days=7, now=None):
    """Latest completed run per template due within the next ``window_days``."""
    if window_days < 0:
        raise ValidationError("window_days must not be negative", details={"window_days": ">= 0"})
    now = now or utcnow()
    horizon = now + timedelta(days=window_days)
    runs = [
        r for r in latest_completed_per_template(organization_id, category=category, team_id=team_id)
        if r.next_audit_due is not None and now <= ensure_utc(r.next_audit_due) <= horizon
    ]
    return sorted(runs, key=lambda r: (ensure_utc(r.next_audit_due), r.id))


def item_overdue_count(resident_id, today=None):
    """Count a resident's audit items past due and not completed or n/a.

    ``due_date`` is compared to today's ``YYYY-MM-DD`` string; rows without
    a due date never count.
    """
    try:
        today_str = parse_iso_day(today or utcnow().date())
    except ValueError as exc:
        raise ValidationError(str(exc), details={"today": "YYYY-MM-DD"}) from exc
    items = ResidentAuditItem.query.filter_by(resident_id=str(resident_id)).all()
    return sum(
        1 for item in items
        if item.due_date
        and item.due_date < today_str
        and item.status not in RESIDENT_ITEM_CLOSED_STATUSES
    )

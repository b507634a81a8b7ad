"""Audit template catalog — one implementation for every audit category.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler, CLI command) is responsible for db.session.commit().

Operations:
- Template create / update with per-category item and frequency validation
- Active template listing by scope
- Archive (soft delete) and opt-in cascade delete, uniform across categories
- Deletion impact preview
"""
import logging

from sqlalchemy import and_, or_

from careaudit.core.exceptions import NotFoundError, ValidationError
from careaudit.models import db
from careaudit.models.action_plan import ActionPlan
from careaudit.models.audit import AuditRun, AuditTemplate
from careaudit.services.category_policy import CATEGORY_POLICIES, get_policy

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("name", "description", "items", "frequency", "is_active")


def _normalize_items(items, policy):
    """Validate template items and return them in canonical shape.

    Raises:
        ValidationError: empty list, missing/duplicate item ids, missing
            labels, or an item type the category does not support.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list", details={"items": "required"})

    seen = set()
    normalized = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", details={"items": "invalid"})
        item_id = str(raw.get("item_id") or "").strip()
        label = str(raw.get("label") or "").strip()
        item_type = raw.get("item_type") or "compliance"
        if not item_id:
            raise ValidationError("Every item needs an item_id", details={"items": "item_id required"})
        if item_id in seen:
            raise ValidationError(
                f"Duplicate item_id '{item_id}'",
                details={"items": f"item_id '{item_id}' is not unique"},
            )
        if not label:
            raise ValidationError(f"Item '{item_id}' needs a label", details={"items": "label required"})
        policy.validate_item_type(item_type, item_id)
        seen.add(item_id)
        normalized.append({"item_id": item_id, "label": label, "item_type": item_type})
    return normalized


def get_template(template_id):
    """Fetch a template by id.

    Raises:
        NotFoundError: no template with that id.
    """
    template = db.session.get(AuditTemplate, template_id)
    if template is None:
        raise NotFoundError(resource="AuditTemplate", resource_id=template_id)
    return template


def create_template(*, category, name, items, frequency, organization_id,
                    team_id=None, created_by="", description=""):
    """Create an active template for ``category``.

    Team-scoped categories (resident, carefile) require ``team_id``;
    organization-scoped ones require ``organization_id``. Both are stored
    when given.

    Returns:
        AuditTemplate instance (already flushed).
    """
    policy = get_policy(category)
    if not (name or "").strip():
        raise ValidationError("name is required", details={"name": "required"})
    if not organization_id:
        raise ValidationError("organization_id is required", details={"organization_id": "required"})
    policy.scope_key(organization_id=organization_id, team_id=team_id)
    policy.validate_frequency(frequency)
    normalized = _normalize_items(items, policy)

    template = AuditTemplate(
        name=name.strip(),
        description=description or "",
        category=category,
        organization_id=str(organization_id),
        team_id=str(team_id) if team_id else None,
        items=normalized,
        frequency=frequency,
        is_active=True,
        created_by=created_by or "",
    )
    db.session.add(template)
    db.session.flush()
    logger.info("Created %s audit template id=%s items=%d", category, template.id, len(normalized))
    return template


def update_template(template_id, data):
    """Patch template fields. Existing runs are never touched.

    Returns the updated AuditTemplate.
    """
    template = get_template(template_id)
    policy = get_policy(template.category)

    unknown = set(data) - set(_UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Fields cannot be updated: {', '.join(sorted(unknown))}",
            details={f: "not updatable" for f in unknown},
        )

    if "name" in data:
        if not (data["name"] or "").strip():
            raise ValidationError("name cannot be empty", details={"name": "required"})
        template.name = data["name"].strip()
    if "description" in data:
        template.description = data["description"] or ""
    if "frequency" in data:
        policy.validate_frequency(data["frequency"])
        template.frequency = data["frequency"]
    if "items" in data:
        template.items = _normalize_items(data["items"], policy)
    if "is_active" in data:
        template.is_active = bool(data["is_active"])

    db.session.flush()
    return template


def list_active_templates(*, organization_id=None, team_id=None, category=None):
    """List active templates, ordered by name.

    With ``category`` the category's scope rule decides whether the team or
    the organization filter applies. Without it, organization-scoped
    templates of ``organization_id`` and team-scoped templates of ``team_id``
    are returned together.
    """
    q = AuditTemplate.query.filter_by(is_active=True)
    if category:
        policy = get_policy(category)
        key = policy.scope_key(organization_id=organization_id, team_id=team_id)
        q = q.filter_by(category=category)
        if policy.team_scoped:
            q = q.filter_by(team_id=key)
        else:
            q = q.filter_by(organization_id=key)
    else:
        if not organization_id and not team_id:
            raise ValidationError(
                "organization_id or team_id is required",
                details={"organization_id": "required"},
            )
        team_categories = [c for c, p in CATEGORY_POLICIES.items() if p.team_scoped]
        conditions = []
        if organization_id:
            conditions.append(and_(
                AuditTemplate.organization_id == str(organization_id),
                AuditTemplate.category.notin_(team_categories),
            ))
        if team_id:
            conditions.append(and_(
                AuditTemplate.team_id == str(team_id),
                AuditTemplate.category.in_(team_categories),
            ))
        q = q.filter(or_(*conditions))
    return q.order_by(AuditTemplate.name, AuditTemplate.id).all()


def archive_template(template_id):
    """Soft delete: flip ``is_active`` off. Runs and action plans stay intact.

    Returns the archived AuditTemplate.
    """
    template = get_template(template_id)
    template.is_active = False
    db.session.flush()
    logger.info("Archived %s audit template id=%s", template.category, template.id)
    return template


def deletion_impact(template_id):
    """Count what a cascade delete of this template would remove."""
    get_template(template_id)
    return {
        "audit_count": AuditRun.query.filter_by(template_id=template_id).count(),
        "action_plan_count": ActionPlan.query.filter_by(template_id=template_id).count(),
    }


def delete_template_cascade(template_id):
    """Hard delete a template with every run and action plan referencing it.

    Returns:
        {"template_id", "deleted_action_plans", "deleted_runs"} with the
        number of rows actually removed.
    """
    template = get_template(template_id)

    plans = ActionPlan.query.filter_by(template_id=template_id).all()
    for plan in plans:
        db.session.delete(plan)
    db.session.flush()

    runs = AuditRun.query.filter_by(template_id=template_id).all()
    for run in runs:
        db.session.delete(run)
    db.session.flush()

    db.session.delete(template)
    db.session.flush()

    logger.info(
        "Cascade-deleted %s audit template id=%s (runs=%d, action_plans=%d)",
        template.category, template_id, len(runs), len(plans),
    )
    return {
        "template_id": template_id,
        "deleted_action_plans": len(plans),
        "deleted_runs": len(runs),
    }

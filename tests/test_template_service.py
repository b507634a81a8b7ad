"""
Care Audit Service
Tests — template catalog service.

Covers:
    - create / update with per-category validation
    - active listing by scope
    - archive vs cascade delete (uniform across categories)
    - deletion impact preview
"""

import pytest

from careaudit.core.exceptions import NotFoundError, ValidationError
from careaudit.models import db
from careaudit.models.action_plan import ActionPlan, ActionPlanStatusUpdate
from careaudit.models.audit import AuditRun, AuditTemplate
from careaudit.services import action_plan_service, audit_run_service, template_service

ORG = "org-1"
TEAM = "team-1"


def _items(*ids, item_type="compliance"):
    return [{"item_id": i, "label": f"Check {i}", "item_type": item_type} for i in ids]


def _create(category="governance", **kw):
    payload = {
        "category": category,
        "name": f"{category.title()} audit",
        "items": _items("1", "2"),
        "frequency": "quarterly",
        "organization_id": ORG,
        "team_id": TEAM,
        "created_by": "manager@x",
    }
    payload.update(kw)
    template = template_service.create_template(**payload)
    db.session.commit()
    return template


def _run_with_plan(template, *, resident_id=None):
    run = audit_run_service.get_or_create_draft(
        template.id, audited_by="manager@x", team_id=TEAM, resident_id=resident_id,
    )
    run = audit_run_service.complete_run(
        run.id, items=[{"item_id": "1", "status": "non-compliant"}],
    )
    plan = action_plan_service.create_action_plan(
        run_id=run.id, template_id=template.id, item_id="1",
        description="Fix it", assigned_to="nurse@x", created_by="manager@x",
    )
    action_plan_service.transition_action_plan(plan.id, "in_progress", updated_by="nurse@x")
    db.session.commit()
    return run, plan


# ═════════════════════════════════════════════════════════════════════════════
# CREATE / UPDATE
# ═════════════════════════════════════════════════════════════════════════════

class TestCreateTemplate:
    def test_create_is_active_with_normalized_items(self):
        t = _create(items=[{"item_id": " 1 ", "label": " Fire doors closed "}])
        assert t.is_active is True
        assert t.items == [{"item_id": "1", "label": "Fire doors closed", "item_type": "compliance"}]
        assert t.category == "governance"

    def test_unknown_category_rejected(self):
        with pytest.raises(ValidationError):
            _create(category="kitchen")

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            _create(name="   ")

    def test_empty_items_rejected(self):
        with pytest.raises(ValidationError):
            _create(items=[])

    def test_duplicate_item_ids_rejected(self):
        with pytest.raises(ValidationError) as exc:
            _create(items=_items("1", "1"))
        assert "Duplicate" in str(exc.value)

    def test_item_without_label_rejected(self):
        with pytest.raises(ValidationError):
            _create(items=[{"item_id": "1", "label": ""}])

    def test_item_type_checked_against_category(self):
        with pytest.raises(ValidationError):
            _create(category="governance", items=_items("1", item_type="yesno"))
        t = _create(category="resident", items=_items("1", item_type="yesno"), frequency="weekly")
        assert t.items[0]["item_type"] == "yesno"

    def test_frequency_checked_against_category(self):
        with pytest.raises(ValidationError):
            _create(category="clinical", frequency="weekly")

    def test_team_scoped_category_requires_team(self):
        with pytest.raises(ValidationError) as exc:
            _create(category="resident", team_id=None, frequency="daily")
        assert exc.value.details == {"team_id": "required"}

    def test_nothing_written_on_validation_failure(self):
        with pytest.raises(ValidationError):
            _create(items=[])
        db.session.rollback()
        assert AuditTemplate.query.count() == 0


class TestUpdateTemplate:
    def test_update_fields(self):
        t = _create()
        template_service.update_template(t.id, {"name": "Renamed", "frequency": "yearly"})
        db.session.commit()
        t = template_service.get_template(t.id)
        assert t.name == "Renamed"
        assert t.frequency == "yearly"

    def test_update_unknown_field_rejected(self):
        t = _create()
        with pytest.raises(ValidationError):
            template_service.update_template(t.id, {"category": "clinical"})

    def test_update_items_does_not_touch_existing_runs(self):
        t = _create()
        run = audit_run_service.get_or_create_draft(t.id, audited_by="a@x", team_id=TEAM)
        audit_run_service.update_run(run.id, items=[{"item_id": "1", "status": "compliant"}])
        db.session.commit()

        template_service.update_template(t.id, {"items": _items("9")})
        db.session.commit()

        run = audit_run_service.get_run(run.id)
        assert run.items[0]["item_name"] == "Check 1"

    def test_get_missing_template(self):
        with pytest.raises(NotFoundError):
            template_service.get_template(9999)


# ═════════════════════════════════════════════════════════════════════════════
# LISTING
# ═════════════════════════════════════════════════════════════════════════════

class TestListActive:
    def test_organization_scoped_category(self):
        _create(category="clinical", name="B clinical")
        _create(category="clinical", name="A clinical")
        _create(category="clinical", organization_id="org-2")
        archived = _create(category="clinical", name="Old")
        template_service.archive_template(archived.id)
        db.session.commit()

        result = template_service.list_active_templates(organization_id=ORG, category="clinical")
        assert [t.name for t in result] == ["A clinical", "B clinical"]

    def test_team_scoped_category_filters_by_team(self):
        _create(category="resident", frequency="daily", items=_items("1", item_type="yesno"))
        _create(category="resident", frequency="daily", team_id="team-2")
        result = template_service.list_active_templates(
            organization_id=ORG, team_id=TEAM, category="resident",
        )
        assert len(result) == 1
        assert result[0].team_id == TEAM

    def test_without_category_combines_scopes(self):
        _create(category="governance")
        _create(category="carefile", team_id=TEAM)
        _create(category="carefile", team_id="team-2")
        result = template_service.list_active_templates(organization_id=ORG, team_id=TEAM)
        assert sorted(t.category for t in result) == ["carefile", "governance"]

    def test_scope_required(self):
        with pytest.raises(ValidationError):
            template_service.list_active_templates()


# ═════════════════════════════════════════════════════════════════════════════
# DELETION
# ═════════════════════════════════════════════════════════════════════════════

class TestDeletion:
    def test_cascade_delete_environment_template(self):
        t = _create(category="environment")
        _run_with_plan(t)
        _run_with_plan(t)
        other = _create(category="environment", name="Other")
        _run_with_plan(other)

        assert template_service.deletion_impact(t.id) == {"audit_count": 2, "action_plan_count": 2}
        result = template_service.delete_template_cascade(t.id)
        db.session.commit()

        assert result == {"template_id": t.id, "deleted_action_plans": 2, "deleted_runs": 2}
        assert db.session.get(AuditTemplate, t.id) is None
        assert AuditRun.query.filter_by(template_id=t.id).count() == 0
        assert ActionPlan.query.filter_by(template_id=t.id).count() == 0
        # Status history goes with its plans; the other template is untouched.
        assert ActionPlanStatusUpdate.query.count() == 1
        assert AuditRun.query.filter_by(template_id=other.id).count() == 1

    def test_archive_governance_template_keeps_history(self):
        t = _create(category="governance")
        run, plan = _run_with_plan(t)

        template_service.archive_template(t.id)
        db.session.commit()

        t = template_service.get_template(t.id)
        assert t.is_active is False
        assert db.session.get(AuditRun, run.id) is not None
        assert db.session.get(ActionPlan, plan.id) is not None

    def test_cascade_available_for_every_category(self):
        t = _create(category="carefile")
        _run_with_plan(t, resident_id="res-1")
        result = template_service.delete_template_cascade(t.id)
        assert result["deleted_runs"] == 1
        assert result["deleted_action_plans"] == 1

    def test_deletion_impact_missing_template(self):
        with pytest.raises(NotFoundError):
            template_service.deletion_impact(42)

"""
Care Audit Service
Tests — per-category policy table.
"""

import pytest

from careaudit.core.exceptions import ValidationError
from careaudit.models.audit import AUDIT_CATEGORIES
from careaudit.services.category_policy import CATEGORY_POLICIES, get_policy


def test_every_category_has_a_policy():
    assert set(CATEGORY_POLICIES) == set(AUDIT_CATEGORIES)


@pytest.mark.parametrize("category,team_scoped", [
    ("resident", True),
    ("carefile", True),
    ("governance", False),
    ("clinical", False),
    ("environment", False),
])
def test_scope_rule(category, team_scoped):
    policy = get_policy(category)
    assert policy.team_scoped is team_scoped
    expected = "team-1" if team_scoped else "org-1"
    assert policy.scope_key(organization_id="org-1", team_id="team-1") == expected


def test_missing_scope_id():
    with pytest.raises(ValidationError) as exc:
        get_policy("clinical").scope_key(organization_id=None, team_id="team-1")
    assert exc.value.details == {"organization_id": "required"}


def test_only_carefile_requires_resident():
    assert [c for c, p in CATEGORY_POLICIES.items() if p.requires_resident] == ["carefile"]


def test_unknown_category():
    with pytest.raises(ValidationError):
        get_policy("kitchen")


def test_run_links():
    assert get_policy("environment").run_link(5) == "/dashboard/careo-audit/environment/5/view"
    assert get_policy("carefile").run_link(5, "res-1") == "/dashboard/careo-audit/res-1/carefileaudit/5/view"


def test_frequency_vocabulary():
    get_policy("resident").validate_frequency("daily")
    with pytest.raises(ValidationError):
        get_policy("governance").validate_frequency("daily")

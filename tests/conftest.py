"""
Shared pytest fixtures for the Care Audit Service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - clinical_template: Pre-created organization-scoped template (items A, B)
    - completed_run: Completed run of clinical_template with A non-compliant
"""

from datetime import datetime, timezone

import pytest

from careaudit import create_app
from careaudit.models import db as _db
from careaudit.services import audit_run_service, template_service

ORG_ID = "org-1"
TEAM_ID = "team-1"
REVIEWER = "manager@x"
NURSE = "nurse@x"

COMPLETED_AT = datetime(2025, 1, 1, tzinfo=timezone.utc)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def clinical_template():
    """Clinical (organization-scoped) monthly template with items A and B."""
    template = template_service.create_template(
        category="clinical",
        name="Medication Safety",
        items=[
            {"item_id": "A", "label": "Item A", "item_type": "compliance"},
            {"item_id": "B", "label": "Item B", "item_type": "compliance"},
        ],
        frequency="monthly",
        organization_id=ORG_ID,
        created_by=REVIEWER,
    )
    _db.session.commit()
    return template


@pytest.fixture()
def completed_run(clinical_template):
    """Run of clinical_template completed at 2025-01-01 with A non-compliant."""
    run = audit_run_service.get_or_create_draft(clinical_template.id, audited_by=REVIEWER, team_id=TEAM_ID)
    audit_run_service.update_run(
        run.id,
        items=[
            {"item_id": "A", "status": "non-compliant", "notes": "Fridge log missing"},
            {"item_id": "B", "status": "compliant"},
        ],
        status="in-progress",
    )
    run = audit_run_service.complete_run(run.id, now=COMPLETED_AT)
    _db.session.commit()
    return run

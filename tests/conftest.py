"""
Shared pytest fixtures for the Field Sync Service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - upload_dir: per-test UPLOAD_FOLDER under tmp_path (autouse)
    - client: Flask test client (function-scoped)
    - organization / user / teammate / team: identity rows
    - auth_headers: Bearer token headers for ``user``
    - template / work_item / execution: a work item with a started workflow
"""

from datetime import date, timedelta

import pytest

from fieldsync import create_app
from fieldsync.models import db as _db
from fieldsync.models.auth import Organization, Team, TeamMember, User
from fieldsync.models.work_item import WorkflowTemplate, WorkItem
from fieldsync.services.jwt_service import generate_access_token
from fieldsync.services.workflow_service import start_execution


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["JWT_SECRET_KEY"] = "test-jwt-secret"
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


@pytest.fixture(autouse=True)
def upload_dir(app, tmp_path, monkeypatch):
    """Point media storage at a throwaway directory."""
    folder = tmp_path / "uploads"
    monkeypatch.setitem(app.config, "UPLOAD_FOLDER", str(folder))
    return folder


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identity fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def organization():
    org = Organization(name="Northern Fibre", slug="northern-fibre")
    _db.session.add(org)
    _db.session.commit()
    return org


@pytest.fixture()
def other_organization():
    """Second organization for isolation tests."""
    org = Organization(name="Southern Fibre", slug="southern-fibre")
    _db.session.add(org)
    _db.session.commit()
    return org


@pytest.fixture()
def user(organization):
    u = User(organization_id=organization.id, email="tech@example.com", full_name="Field Tech")
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def teammate(organization):
    u = User(organization_id=organization.id, email="mate@example.com", full_name="Team Mate")
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def team(organization, user, teammate):
    """Team T with both the user and the teammate on it."""
    t = Team(organization_id=organization.id, name="Splicing Crew")
    _db.session.add(t)
    _db.session.flush()
    _db.session.add_all([
        TeamMember(team_id=t.id, user_id=user.id),
        TeamMember(team_id=t.id, user_id=teammate.id, role="lead"),
    ])
    _db.session.commit()
    return t


def _bearer(user_id, organization_id):
    token = generate_access_token(user_id, organization_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers(user):
    return _bearer(user.id, user.organization_id)


@pytest.fixture()
def headers_for():
    """Factory: Bearer headers for any (user_id, organization_id)."""
    return _bearer


# ── Work item fixtures ───────────────────────────────────────────────────


TEMPLATE_STEPS = [
    {
        "id": "arrive",
        "title": "Arrive on site",
        "type": "checklist",
        "required": True,
        "checklistItems": [{"id": "ppe", "label": "PPE worn"}, {"id": "cones", "label": "Cones placed"}],
    },
    {
        "id": "photos",
        "title": "Chamber photos",
        "type": "photo",
        "required": True,
        "photoConfig": {"minPhotos": 2},
    },
    {
        "id": "splice",
        "title": "Record splices",
        "type": "form",
        "formFields": [{"id": "tray", "label": "Tray number", "type": "number"}],
        "config": {"allowAudio": True},
    },
]


def _make_work_item(organization_id, **kwargs):
    defaults = {
        "title": "Inspect chamber",
        "status": "Ready",
        "due_date": date.today() + timedelta(days=2),
    }
    defaults.update(kwargs)
    item = WorkItem(organization_id=organization_id, **defaults)
    _db.session.add(item)
    _db.session.commit()
    return item


@pytest.fixture()
def make_item():
    """Factory: insert a WorkItem (title / status / due date defaulted)."""
    return _make_work_item


@pytest.fixture()
def template(organization):
    t = WorkflowTemplate(
        id="chamber-inspection-v1",
        organization_id=organization.id,
        name="Chamber inspection",
        steps=TEMPLATE_STEPS,
    )
    _db.session.add(t)
    _db.session.commit()
    return t


@pytest.fixture()
def work_item(organization, user, template):
    return _make_work_item(
        organization.id,
        assigned_to=user.id,
        workflow_template_id=template.id,
    )


@pytest.fixture()
def execution(work_item, organization):
    ex = start_execution(work_item, organization.id)
    _db.session.commit()
    return ex

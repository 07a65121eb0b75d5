"""
Shared pytest fixtures for the Issue Workflow Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project: Pre-created Project entity
    - standard_workflow: Open/InProgress/Resolved/Closed workflow with its step ids
    - make_issue: Factory for issues at an arbitrary status
"""

import pytest

from issueflow import create_app
from issueflow.models import db as _db
from issueflow.models.project import Issue, Project
from issueflow.services import workflow_service as ws
from issueflow.services.workflow_extensions import registry


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
        registry.clear()
        yield
        registry.clear()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM helper factories ─────────────────────────────────────────────────


def make_project(key="PROJ", name="Test Project", tenant_id=None) -> Project:
    """Create and commit a Project row."""
    p = Project(key=key, name=name, tenant_id=tenant_id)
    _db.session.add(p)
    _db.session.commit()
    return p


def insert_issue(project_id, status="Open", issue_type="Task", title="Test issue") -> Issue:
    """Insert an Issue at an arbitrary status (bypasses workflow placement)."""
    issue = Issue(project_id=project_id, title=title, type=issue_type, status=status)
    _db.session.add(issue)
    _db.session.commit()
    return issue


def build_workflow(project_id, steps, transitions, **workflow_data):
    """Create a workflow from compact step/transition tuples.

    steps:       [{"name", "status", ...}, ...]
    transitions: [(name, from_status, to_status, roles), ...]

    Returns (workflow_dict, {status: step_id}, {name: transition_id}).
    """
    data = {"name": "Test Workflow", "is_default": True}
    data.update(workflow_data)
    workflow = ws.create_workflow(project_id, data)
    step_ids = {}
    for i, step in enumerate(steps, start=1):
        created = ws.create_step(workflow["id"], {"order": i, **step})
        step_ids[created["status"]] = created["id"]
    transition_ids = {}
    for name, src, dst, roles in transitions:
        created = ws.create_transition(workflow["id"], {
            "name": name,
            "from_step_id": step_ids[src],
            "to_step_id": step_ids[dst],
            "required_roles": roles,
        })
        transition_ids[name] = created["id"]
    return workflow, step_ids, transition_ids


STANDARD_STEPS = [
    {"name": "Open", "status": "Open", "is_initial": True},
    {"name": "In Progress", "status": "InProgress"},
    {"name": "Resolved", "status": "Resolved"},
    {"name": "Closed", "status": "Closed", "is_final": True},
]

STANDARD_TRANSITIONS = [
    ("Start Progress", "Open", "InProgress", ["Developer", "Tester"]),
    ("Resolve Issue", "InProgress", "Resolved", ["Developer", "Tester"]),
    ("Close Issue", "Resolved", "Closed", ["Admin"]),
    ("Reopen Issue", "Closed", "Open", ["Admin"]),
    ("Stop Progress", "InProgress", "Open", ["Developer", "Tester"]),
]


@pytest.fixture()
def project():
    return make_project()


@pytest.fixture()
def standard_workflow(project):
    """Default workflow for ``project`` with the standard five transitions."""
    workflow, step_ids, transition_ids = build_workflow(
        project.id, STANDARD_STEPS, STANDARD_TRANSITIONS,
    )
    return {"workflow": workflow, "steps": step_ids, "transitions": transition_ids}


@pytest.fixture()
def make_issue(project):
    def _make(status="Open", issue_type="Task", project_id=None):
        return insert_issue(project_id or project.id, status=status, issue_type=issue_type)
    return _make


@pytest.fixture()
def workflow_factory():
    """Expose ``build_workflow`` to tests that need custom graphs."""
    return build_workflow


@pytest.fixture()
def project_factory():
    return make_project

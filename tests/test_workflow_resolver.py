"""Workflow resolution precedence tests."""

import pytest

from issueflow.core.exceptions import NotFoundError
from issueflow.models import db
from issueflow.models.workflow import Workflow
from issueflow.services import workflow_service as ws
from issueflow.services.workflow_resolver import get_workflow_for_issue, resolve_workflow


def test_type_specific_wins_over_default(project):
    default = ws.create_workflow(project.id, {"name": "Default", "is_default": True})
    bug = ws.create_workflow(project.id, {"name": "Bugs", "issue_type": "Bug"})

    assert resolve_workflow(project.id, "Bug").id == bug["id"]
    assert resolve_workflow(project.id, "Task").id == default["id"]


def test_inactive_workflows_ignored(project):
    default = ws.create_workflow(project.id, {"name": "Default", "is_default": True})
    bug = ws.create_workflow(project.id, {"name": "Bugs", "issue_type": "Bug"})
    ws.deactivate_workflow(bug["id"])

    assert resolve_workflow(project.id, "Bug").id == default["id"]


def test_untyped_non_default_never_resolves(project):
    ws.create_workflow(project.id, {"name": "Loose"})
    assert resolve_workflow(project.id, "Task") is None


def test_no_workflow(project):
    assert resolve_workflow(project.id, "Bug") is None


def test_other_project_not_consulted(project, project_factory):
    other = project_factory(key="OTHER")
    ws.create_workflow(other.id, {"name": "Default", "is_default": True})
    assert resolve_workflow(project.id, "Task") is None


def test_null_issue_type_uses_default(project):
    default = ws.create_workflow(project.id, {"name": "Default", "is_default": True})
    assert resolve_workflow(project.id, None).id == default["id"]


def test_legacy_duplicates_pick_lowest_id(project, caplog):
    # Rows inserted directly bypass the store's uniqueness checks.
    first = Workflow(project_id=project.id, name="A", issue_type="Bug")
    second = Workflow(project_id=project.id, name="B", issue_type="Bug")
    db.session.add_all([first, second])
    db.session.commit()

    with caplog.at_level("WARNING"):
        resolved = resolve_workflow(project.id, "Bug")
    assert resolved.id == min(first.id, second.id)
    assert "Ambiguous" in caplog.text


def test_workflow_for_issue(standard_workflow, make_issue):
    issue = make_issue(status="Open", issue_type="Story")
    assert get_workflow_for_issue(issue.id).id == standard_workflow["workflow"]["id"]


def test_workflow_for_missing_issue():
    with pytest.raises(NotFoundError):
        get_workflow_for_issue(999)

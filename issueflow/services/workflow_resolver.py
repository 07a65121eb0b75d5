"""
Workflow Resolver — maps (project_id, issue_type) to the applicable workflow.

Precedence, first match wins:
  1. active workflow of the project whose issue_type equals the issue's type
  2. active workflow of the project with issue_type NULL and is_default set
  3. None

The definition store rejects configurations that would make step 1 or 2
ambiguous; if legacy rows still collide, the lowest id wins.
"""

import logging

from issueflow.models.workflow import Workflow
from issueflow.services.issue_service import get_issue_workflow_context

logger = logging.getLogger(__name__)


def _first_unambiguous(query, label: str, project_id: int):
    rows = query.order_by(Workflow.id).limit(2).all()
    if len(rows) > 1:
        logger.warning(
            "Ambiguous %s workflows for project=%s (ids %s); using lowest id",
            label, project_id, [w.id for w in rows],
        )
    return rows[0] if rows else None


def resolve_workflow(project_id: int, issue_type: str | None) -> Workflow | None:
    """Return the workflow governing issues of ``issue_type`` in a project."""
    active = Workflow.query.filter_by(project_id=project_id, is_active=True)

    if issue_type:
        typed = _first_unambiguous(
            active.filter(Workflow.issue_type == issue_type),
            f"type={issue_type}",
            project_id,
        )
        if typed:
            return typed

    return _first_unambiguous(
        active.filter(Workflow.issue_type.is_(None), Workflow.is_default.is_(True)),
        "default",
        project_id,
    )


def get_workflow_for_issue(issue_id: int) -> Workflow | None:
    """Resolve the workflow of an existing issue.

    Raises:
        NotFoundError: If the issue does not exist.
    """
    ctx = get_issue_workflow_context(issue_id)
    return resolve_workflow(ctx["project_id"], ctx["issue_type"])

"""
Issue store collaborator for the workflow engine.

Exposes only what the engine consumes from issues:

  - get_issue_workflow_context(issue_id) -> {project_id, issue_type, current_status}
  - create_issue(...)                     -> new issue placed on its workflow's initial step
  - apply_status_change(...)              -> compare-and-swap status write

The status write is guarded on the status the caller last validated, so two
racing transitions cannot both succeed against a stale status.
"""

import logging

from sqlalchemy import update

from issueflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from issueflow.models import db
from issueflow.models.project import ISSUE_TYPES, Issue, Project

logger = logging.getLogger(__name__)


def get_issue(issue_id: int) -> Issue:
    """Fetch an issue row or raise NotFoundError."""
    issue = db.session.get(Issue, issue_id)
    if not issue:
        raise NotFoundError(resource="Issue", resource_id=issue_id)
    return issue


def get_issue_workflow_context(issue_id: int) -> dict:
    """Return the facts needed to resolve and validate an issue's workflow.

    Raises:
        NotFoundError: If the issue does not exist.
    """
    issue = get_issue(issue_id)
    return {
        "issue_id": issue.id,
        "project_id": issue.project_id,
        "issue_type": issue.type,
        "current_status": issue.status,
    }


def create_issue(
    project_id: int,
    title: str,
    issue_type: str = "Task",
    status: str | None = None,
    key: str | None = None,
) -> dict:
    """Persist a new issue.

    When ``status`` is omitted the issue starts on the initial step of the
    workflow that resolves for (project, type).

    Raises:
        NotFoundError: Unknown project.
        ValidationError: Bad title/type, or no status given and no initial
            step can be resolved.
    """
    from issueflow.services.workflow_resolver import resolve_workflow
    from issueflow.services.workflow_service import get_initial_step

    project = db.session.get(Project, project_id)
    if not project:
        raise NotFoundError(resource="Project", resource_id=project_id)

    errors = {}
    if not title or not str(title).strip():
        errors["title"] = "title is required"
    if issue_type not in ISSUE_TYPES:
        errors["type"] = f"type must be one of {', '.join(ISSUE_TYPES)}"
    if errors:
        raise ValidationError("Invalid issue", details=errors)

    if status is None:
        workflow = resolve_workflow(project_id, issue_type)
        initial = get_initial_step(workflow.id) if workflow else None
        if not initial:
            raise ValidationError(
                "No initial workflow step configured for this issue type",
                details={"status": "status is required when no workflow initial step exists"},
            )
        status = initial["status"]

    issue = Issue(
        project_id=project_id,
        title=str(title).strip(),
        type=issue_type,
        status=status,
        key=key,
    )
    db.session.add(issue)
    db.session.commit()
    logger.info("Issue created id=%s project=%s type=%s status=%s",
                issue.id, project_id, issue_type, status)
    return issue.to_dict()


def apply_status_change(issue_id: int, expected_status: str, new_status: str) -> dict:
    """Write ``new_status`` only if the issue still has ``expected_status``.

    Raises:
        NotFoundError: If the issue does not exist.
        ConflictError: If the status changed since it was validated.
    """
    result = db.session.execute(
        update(Issue)
        .where(Issue.id == issue_id, Issue.status == expected_status)
        .values(status=new_status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        issue = get_issue(issue_id)
        logger.warning(
            "Lost status update issue=%s expected=%r actual=%r target=%r",
            issue_id, expected_status, issue.status, new_status,
        )
        raise ConflictError(
            resource="Issue",
            field="status",
            value=issue.status,
            reason=(
                f"Issue {issue_id} status changed from '{expected_status}' "
                f"to '{issue.status}' before the update was applied"
            ),
        )
    db.session.commit()
    issue = get_issue(issue_id)
    db.session.refresh(issue)
    logger.info("Issue status changed id=%s %r -> %r", issue_id, expected_status, new_status)
    return issue.to_dict()

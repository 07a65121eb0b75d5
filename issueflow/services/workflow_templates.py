"""
Default workflow template.

Seeds the standard issue workflow as a project's default:

    Open ──Start Progress──▶ In Progress ──Resolve Issue──▶ Resolved ──Close Issue──▶ Closed
      ▲                          │                                                    │
      └──────Stop Progress───────┘                                                    │
      └────────────────────────────────Reopen Issue───────────────────────────────────┘
"""

import logging

from issueflow.models import db
from issueflow.models.workflow import Workflow, WorkflowTransition
from issueflow.services.workflow_service import (
    create_step,
    create_transition,
    create_workflow,
)

logger = logging.getLogger(__name__)


DEFAULT_WORKFLOW_NAME = "Default Workflow"

DEFAULT_STEPS = [
    {"name": "Open", "status": "Open", "order": 1, "is_initial": True},
    {"name": "In Progress", "status": "In Progress", "order": 2},
    {"name": "Resolved", "status": "Resolved", "order": 3},
    {"name": "Closed", "status": "Closed", "order": 4, "is_final": True},
]

# (name, from status, to status, required roles)
DEFAULT_TRANSITIONS = [
    ("Start Progress", "Open", "In Progress", ["Developer", "Tester"]),
    ("Resolve Issue", "In Progress", "Resolved", ["Developer", "Tester"]),
    ("Close Issue", "Resolved", "Closed", ["Admin"]),
    ("Reopen Issue", "Closed", "Open", ["Admin"]),
    ("Stop Progress", "In Progress", "Open", ["Developer", "Tester"]),
]


def _discard_partial(workflow_id: int) -> None:
    """Remove a half-seeded workflow so the next seed run starts clean."""
    db.session.rollback()
    WorkflowTransition.query.filter_by(workflow_id=workflow_id).delete(synchronize_session=False)
    workflow = db.session.get(Workflow, workflow_id)
    if workflow is not None:
        db.session.delete(workflow)
    db.session.commit()
    logger.warning("Discarded partially seeded workflow id=%s", workflow_id)


def seed_default_workflow(project_id: int, name: str = DEFAULT_WORKFLOW_NAME) -> dict:
    """Create the default workflow for a project unless one is already active.

    Returns:
        {"workflow": dict, "created": bool, "steps": int, "transitions": int}
    """
    existing = Workflow.query.filter_by(
        project_id=project_id, issue_type=None, is_default=True, is_active=True,
    ).first()
    if existing:
        logger.info("Default workflow already present project=%s id=%s", project_id, existing.id)
        return {"workflow": existing.to_dict(), "created": False, "steps": 0, "transitions": 0}

    workflow = create_workflow(project_id, {
        "name": name,
        "description": "Standard issue lifecycle",
        "is_default": True,
    })

    try:
        step_ids = {}
        for step in DEFAULT_STEPS:
            created = create_step(workflow["id"], step)
            step_ids[created["status"]] = created["id"]

        for t_name, src, dst, roles in DEFAULT_TRANSITIONS:
            create_transition(workflow["id"], {
                "name": t_name,
                "from_step_id": step_ids[src],
                "to_step_id": step_ids[dst],
                "required_roles": roles,
            })
    except Exception:
        _discard_partial(workflow["id"])
        raise

    logger.info("Default workflow seeded project=%s id=%s", project_id, workflow["id"])
    return {
        "workflow": workflow,
        "created": True,
        "steps": len(DEFAULT_STEPS),
        "transitions": len(DEFAULT_TRANSITIONS),
    }

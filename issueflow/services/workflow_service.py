"""
Workflow Definition Store — service layer.

Centralises all ORM queries and mutations for Workflow, WorkflowStep and
WorkflowTransition so that blueprints remain HTTP-only. Every
db.session.commit() in this module is intentional and constitutes the single
source of truth for transaction ownership.

Create/update calls validate the whole payload and raise
DefinitionValidationError listing every violated field. Write-time
uniqueness rules (one active workflow per issue type, one active default per
project) and in-use deletion guards raise ConflictError.
"""

import logging

from sqlalchemy import or_

from issueflow.core.exceptions import (
    ConflictError,
    DefinitionValidationError,
    NotFoundError,
)
from issueflow.models import db
from issueflow.models.project import ISSUE_TYPES, Issue, Project
from issueflow.models.workflow import (
    TRANSITION_KINDS,
    Workflow,
    WorkflowStep,
    WorkflowTransition,
)
from issueflow.services.workflow_graph import WorkflowGraph
from issueflow.services.workflow_resolver import (
    get_workflow_for_issue as _resolve_for_issue,
    resolve_workflow,
)

logger = logging.getLogger(__name__)


_WORKFLOW_NAME_MAX = 100
_STEP_STATUS_MAX = 50


# ──────────────────────────────────────────────────────────────────────────────
# Field checks
# ──────────────────────────────────────────────────────────────────────────────

def _check_name(errors: dict, data: dict, field: str = "name", max_len: int = 100) -> None:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        errors[field] = f"{field} is required"
    elif len(value) > max_len:
        errors[field] = f"{field} must be <= {max_len} chars"


def _check_bool(errors: dict, data: dict, field: str) -> None:
    if field in data and not isinstance(data[field], bool):
        errors[field] = f"{field} must be a boolean"


def _check_dict(errors: dict, data: dict, field: str) -> None:
    if field in data and data[field] is not None and not isinstance(data[field], dict):
        errors[field] = f"{field} must be an object"


def _check_str_list(errors: dict, data: dict, field: str) -> None:
    if field not in data or data[field] is None:
        return
    value = data[field]
    if not isinstance(value, (list, tuple, set, frozenset)):
        errors[field] = f"{field} must be a list of strings"
    elif not all(isinstance(v, str) and v.strip() for v in value):
        errors[field] = f"{field} must contain only non-empty strings"


def _unique_ordered(values) -> list[str]:
    seen = []
    for v in values or []:
        v = v.strip()
        if v not in seen:
            seen.append(v)
    return seen


# ──────────────────────────────────────────────────────────────────────────────
# Lookups
# ──────────────────────────────────────────────────────────────────────────────

def _get_workflow(workflow_id: int) -> Workflow:
    workflow = db.session.get(Workflow, workflow_id)
    if not workflow:
        raise NotFoundError(resource="Workflow", resource_id=workflow_id)
    return workflow


def _get_step(step_id: int) -> WorkflowStep:
    step = db.session.get(WorkflowStep, step_id)
    if not step:
        raise NotFoundError(resource="WorkflowStep", resource_id=step_id)
    return step


def _get_transition(transition_id: int) -> WorkflowTransition:
    transition = db.session.get(WorkflowTransition, transition_id)
    if not transition:
        raise NotFoundError(resource="WorkflowTransition", resource_id=transition_id)
    return transition


# ──────────────────────────────────────────────────────────────────────────────
# Workflows
# ──────────────────────────────────────────────────────────────────────────────

def _validate_workflow(data: dict, partial: bool = False) -> dict:
    errors: dict[str, str] = {}
    if not partial or "name" in data:
        _check_name(errors, data, "name", _WORKFLOW_NAME_MAX)
    if "description" in data and data["description"] is not None and not isinstance(data["description"], str):
        errors["description"] = "description must be a string"
    if "issue_type" in data and data["issue_type"] is not None and data["issue_type"] not in ISSUE_TYPES:
        errors["issue_type"] = f"issue_type must be one of {', '.join(ISSUE_TYPES)} or null"
    _check_bool(errors, data, "is_default")
    _check_bool(errors, data, "is_active")
    return errors


def _check_active_uniqueness(
    project_id: int,
    issue_type: str | None,
    is_default: bool,
    is_active: bool,
    exclude_id: int | None = None,
) -> None:
    """Keep resolution deterministic among a project's active workflows."""
    if not is_active:
        return
    q = Workflow.query.filter_by(project_id=project_id, is_active=True)
    if exclude_id is not None:
        q = q.filter(Workflow.id != exclude_id)

    if issue_type is not None:
        clash = q.filter(Workflow.issue_type == issue_type).first()
        if clash:
            raise ConflictError(
                resource="Workflow",
                field="issue_type",
                value=issue_type,
                reason=(
                    f"Project {project_id} already has active workflow "
                    f"'{clash.name}' for issue type '{issue_type}'"
                ),
            )
    elif is_default:
        clash = q.filter(Workflow.issue_type.is_(None), Workflow.is_default.is_(True)).first()
        if clash:
            raise ConflictError(
                resource="Workflow",
                field="is_default",
                value=True,
                reason=f"Project {project_id} already has active default workflow '{clash.name}'",
            )


def create_workflow(project_id: int, data: dict) -> dict:
    """Create a workflow for a project.

    Args:
        project_id: PK of the owning Project.
        data: name (required), description, issue_type, is_default, is_active.

    Returns:
        Serialized workflow dict.

    Raises:
        NotFoundError: Unknown project.
        DefinitionValidationError: One or more invalid fields.
        ConflictError: Would make workflow resolution ambiguous.
    """
    project = db.session.get(Project, project_id)
    if not project:
        raise NotFoundError(resource="Project", resource_id=project_id)

    errors = _validate_workflow(data)
    if errors:
        raise DefinitionValidationError("Workflow", errors)

    issue_type = data.get("issue_type")
    is_default = data.get("is_default", False)
    is_active = data.get("is_active", True)
    _check_active_uniqueness(project_id, issue_type, is_default, is_active)

    workflow = Workflow(
        project_id=project_id,
        tenant_id=project.tenant_id,
        name=data["name"].strip(),
        description=data.get("description") or "",
        issue_type=issue_type,
        is_default=is_default,
        is_active=is_active,
    )
    db.session.add(workflow)
    db.session.commit()
    logger.info("Workflow created id=%s project=%s type=%s default=%s",
                workflow.id, project_id, issue_type, is_default)
    return workflow.to_dict()


def get_workflows_by_project(project_id: int, include_inactive: bool = True) -> list[dict]:
    """Return a project's workflows, defaults first."""
    q = Workflow.query.filter_by(project_id=project_id)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    q = q.order_by(Workflow.is_default.desc(), Workflow.name, Workflow.id)
    return [w.to_dict() for w in q.all()]


def get_workflow_by_id(workflow_id: int) -> dict:
    """Fetch a single workflow.

    Raises:
        NotFoundError: If no record with that PK exists.
    """
    return _get_workflow(workflow_id).to_dict()


def update_workflow(workflow_id: int, data: dict) -> dict:
    """Apply a partial update to a workflow.

    Raises:
        NotFoundError, DefinitionValidationError, ConflictError
    """
    workflow = _get_workflow(workflow_id)

    errors = _validate_workflow(data, partial=True)
    if errors:
        raise DefinitionValidationError("Workflow", errors)

    issue_type = data["issue_type"] if "issue_type" in data else workflow.issue_type
    is_default = data.get("is_default", workflow.is_default)
    is_active = data.get("is_active", workflow.is_active)
    _check_active_uniqueness(
        workflow.project_id, issue_type, is_default, is_active, exclude_id=workflow.id,
    )

    for attr in ("name", "description", "issue_type", "is_default", "is_active"):
        if attr in data:
            value = data[attr]
            if attr == "name":
                value = value.strip()
            elif attr == "description":
                value = value or ""
            setattr(workflow, attr, value)

    db.session.commit()
    logger.info("Workflow updated id=%s", workflow_id)
    return workflow.to_dict()


def deactivate_workflow(workflow_id: int) -> dict:
    """Retire a workflow without deleting its history."""
    workflow = _get_workflow(workflow_id)
    workflow.is_active = False
    db.session.commit()
    logger.info("Workflow deactivated id=%s", workflow_id)
    return workflow.to_dict()


def _issues_using(workflow: Workflow) -> int:
    """Count issues that currently resolve to ``workflow``."""
    if not workflow.is_active:
        return 0
    q = db.session.query(Issue.type, db.func.count(Issue.id)).filter(
        Issue.project_id == workflow.project_id
    )
    if workflow.issue_type is not None:
        q = q.filter(Issue.type == workflow.issue_type)
    in_use = 0
    for issue_type, count in q.group_by(Issue.type).all():
        resolved = resolve_workflow(workflow.project_id, issue_type)
        if resolved is not None and resolved.id == workflow.id:
            in_use += count
    return in_use


def delete_workflow(workflow_id: int) -> None:
    """Physically delete a workflow that no live issue resolves to.

    Raises:
        NotFoundError: Unknown workflow.
        ConflictError: Issues still resolve to this workflow; deactivate it instead.
    """
    workflow = _get_workflow(workflow_id)
    in_use = _issues_using(workflow)
    if in_use:
        raise ConflictError(
            resource="Workflow",
            field="id",
            value=workflow_id,
            reason=(
                f"Workflow {workflow_id} is in use by {in_use} issue(s); "
                "deactivate it instead of deleting"
            ),
        )
    # Transitions reference steps without ON DELETE; drop them first.
    WorkflowTransition.query.filter_by(workflow_id=workflow_id).delete(synchronize_session=False)
    db.session.delete(workflow)
    db.session.commit()
    logger.info("Workflow deleted id=%s", workflow_id)


def get_workflow_for_issue(issue_id: int) -> dict | None:
    """Serialized workflow that governs an issue, or None if unresolvable."""
    workflow = _resolve_for_issue(issue_id)
    return workflow.to_dict() if workflow else None


# ──────────────────────────────────────────────────────────────────────────────
# Steps
# ──────────────────────────────────────────────────────────────────────────────

def _validate_step(data: dict, partial: bool = False) -> dict:
    errors: dict[str, str] = {}
    if not partial or "name" in data:
        _check_name(errors, data, "name", 100)
    if not partial or "status" in data:
        _check_name(errors, data, "status", _STEP_STATUS_MAX)
    if "order" in data and (not isinstance(data["order"], int) or isinstance(data["order"], bool)):
        errors["order"] = "order must be an integer"
    _check_bool(errors, data, "is_initial")
    _check_bool(errors, data, "is_final")
    _check_dict(errors, data, "properties")
    return errors


def _check_step_constraints(errors: dict, workflow_id: int, data: dict, exclude_id: int | None = None) -> None:
    q = WorkflowStep.query.filter_by(workflow_id=workflow_id)
    if exclude_id is not None:
        q = q.filter(WorkflowStep.id != exclude_id)
    if "status" in data and "status" not in errors:
        if q.filter(WorkflowStep.status == data["status"].strip()).first():
            errors["status"] = f"status '{data['status'].strip()}' already exists in this workflow"
    if data.get("is_initial") is True and "is_initial" not in errors:
        if q.filter(WorkflowStep.is_initial.is_(True)).first():
            errors["is_initial"] = "workflow already has an initial step"


def create_step(workflow_id: int, data: dict) -> dict:
    """Add a step to a workflow.

    Raises:
        NotFoundError: Unknown workflow.
        DefinitionValidationError: Invalid fields, duplicate status or a
            second initial step.
    """
    _get_workflow(workflow_id)

    errors = _validate_step(data)
    _check_step_constraints(errors, workflow_id, data)
    if errors:
        raise DefinitionValidationError("WorkflowStep", errors)

    step = WorkflowStep(
        workflow_id=workflow_id,
        name=data["name"].strip(),
        status=data["status"].strip(),
        order=data.get("order", 0),
        is_initial=data.get("is_initial", False),
        is_final=data.get("is_final", False),
        properties=data.get("properties") or {},
    )
    db.session.add(step)
    db.session.commit()
    logger.info("WorkflowStep created id=%s workflow=%s status=%s",
                step.id, workflow_id, step.status)
    return step.to_dict()


def get_steps(workflow_id: int) -> list[dict]:
    """Return a workflow's steps ordered by ``order`` then id."""
    _get_workflow(workflow_id)
    steps = (
        WorkflowStep.query
        .filter_by(workflow_id=workflow_id)
        .order_by(WorkflowStep.order, WorkflowStep.id)
        .all()
    )
    return [s.to_dict() for s in steps]


def get_initial_step(workflow_id: int) -> dict | None:
    """The step new issues start on, or None if none is marked initial."""
    step = (
        WorkflowStep.query
        .filter_by(workflow_id=workflow_id, is_initial=True)
        .order_by(WorkflowStep.id)
        .first()
    )
    return step.to_dict() if step else None


def update_step(step_id: int, data: dict) -> dict:
    """Apply a partial update to a step.

    Renaming ``status`` does not rewrite issues already holding the old
    label; such issues surface as unknown-state on their next validation.
    """
    step = _get_step(step_id)

    errors = _validate_step(data, partial=True)
    _check_step_constraints(errors, step.workflow_id, data, exclude_id=step.id)
    if errors:
        raise DefinitionValidationError("WorkflowStep", errors)

    for attr in ("name", "status", "order", "is_initial", "is_final", "properties"):
        if attr in data:
            value = data[attr]
            if attr in ("name", "status"):
                value = value.strip()
            elif attr == "properties":
                value = value or {}
            setattr(step, attr, value)

    db.session.commit()
    logger.info("WorkflowStep updated id=%s", step_id)
    return step.to_dict()


def delete_step(step_id: int) -> None:
    """Delete a step that no transition references.

    Raises:
        NotFoundError: Unknown step.
        ConflictError: Transitions still start or end at this step.
    """
    step = _get_step(step_id)
    referenced = WorkflowTransition.query.filter(
        or_(WorkflowTransition.from_step_id == step_id, WorkflowTransition.to_step_id == step_id)
    ).count()
    if referenced:
        raise ConflictError(
            resource="WorkflowStep",
            field="id",
            value=step_id,
            reason=f"WorkflowStep {step_id} is used by {referenced} transition(s)",
        )
    db.session.delete(step)
    db.session.commit()
    logger.info("WorkflowStep deleted id=%s", step_id)


# ──────────────────────────────────────────────────────────────────────────────
# Transitions
# ──────────────────────────────────────────────────────────────────────────────

def _validate_transition(workflow_id: int, data: dict, partial: bool = False) -> dict:
    errors: dict[str, str] = {}
    if not partial or "name" in data:
        _check_name(errors, data, "name", 100)
    if "kind" in data and data["kind"] not in TRANSITION_KINDS:
        errors["kind"] = f"kind must be one of {', '.join(TRANSITION_KINDS)}"
    _check_str_list(errors, data, "required_roles")
    _check_str_list(errors, data, "validators")
    _check_str_list(errors, data, "post_functions")
    _check_dict(errors, data, "conditions")
    _check_dict(errors, data, "properties")
    if "screen_id" in data and data["screen_id"] is not None and (
        not isinstance(data["screen_id"], int) or isinstance(data["screen_id"], bool)
    ):
        errors["screen_id"] = "screen_id must be an integer or null"

    for field in ("from_step_id", "to_step_id"):
        if partial and field not in data:
            continue
        step_id = data.get(field)
        if not isinstance(step_id, int) or isinstance(step_id, bool):
            errors[field] = f"{field} is required"
            continue
        step = db.session.get(WorkflowStep, step_id)
        if not step:
            errors[field] = f"step {step_id} does not exist"
        elif step.workflow_id != workflow_id:
            errors[field] = f"step {step_id} belongs to workflow {step.workflow_id}, not {workflow_id}"
    return errors


def create_transition(workflow_id: int, data: dict) -> dict:
    """Add a transition between two steps of the same workflow.

    Raises:
        NotFoundError: Unknown workflow.
        DefinitionValidationError: Invalid fields or cross-workflow step references.
    """
    _get_workflow(workflow_id)

    errors = _validate_transition(workflow_id, data)
    if errors:
        raise DefinitionValidationError("WorkflowTransition", errors)

    transition = WorkflowTransition(
        workflow_id=workflow_id,
        from_step_id=data["from_step_id"],
        to_step_id=data["to_step_id"],
        name=data["name"].strip(),
        kind=data.get("kind", "global"),
        conditions=data.get("conditions") or {},
        required_roles=_unique_ordered(data.get("required_roles")),
        screen_id=data.get("screen_id"),
        validators=list(data.get("validators") or []),
        post_functions=list(data.get("post_functions") or []),
        properties=data.get("properties") or {},
    )
    db.session.add(transition)
    db.session.commit()
    logger.info("WorkflowTransition created id=%s workflow=%s %s->%s",
                transition.id, workflow_id, transition.from_step_id, transition.to_step_id)
    return transition.to_dict()


def get_transitions(workflow_id: int) -> list[dict]:
    """Return all transitions of a workflow ordered by id."""
    _get_workflow(workflow_id)
    transitions = (
        WorkflowTransition.query
        .filter_by(workflow_id=workflow_id)
        .order_by(WorkflowTransition.id)
        .all()
    )
    return [t.to_dict() for t in transitions]


def update_transition(transition_id: int, data: dict) -> dict:
    """Apply a partial update to a transition."""
    transition = _get_transition(transition_id)

    errors = _validate_transition(transition.workflow_id, data, partial=True)
    if errors:
        raise DefinitionValidationError("WorkflowTransition", errors)

    for attr in (
        "name", "from_step_id", "to_step_id", "kind", "conditions",
        "screen_id", "validators", "post_functions", "properties",
    ):
        if attr in data:
            value = data[attr]
            if attr == "name":
                value = value.strip()
            elif attr in ("conditions", "properties"):
                value = value or {}
            elif attr in ("validators", "post_functions"):
                value = list(value or [])
            setattr(transition, attr, value)
    if "required_roles" in data:
        transition.required_roles = _unique_ordered(data["required_roles"])

    db.session.commit()
    logger.info("WorkflowTransition updated id=%s", transition_id)
    return transition.to_dict()


def delete_transition(transition_id: int) -> None:
    """Delete a transition."""
    transition = _get_transition(transition_id)
    db.session.delete(transition)
    db.session.commit()
    logger.info("WorkflowTransition deleted id=%s", transition_id)


# ──────────────────────────────────────────────────────────────────────────────
# Snapshot
# ──────────────────────────────────────────────────────────────────────────────

def load_graph(workflow_id: int) -> WorkflowGraph:
    """Load a workflow's steps and transitions as one consistent snapshot.

    Both reads run inside the same session transaction; admin edits committed
    afterwards only affect the next call.

    Raises:
        NotFoundError: Unknown workflow.
    """
    workflow = _get_workflow(workflow_id)
    steps = WorkflowStep.query.filter_by(workflow_id=workflow_id).all()
    transitions = WorkflowTransition.query.filter_by(workflow_id=workflow_id).all()
    return WorkflowGraph.from_rows(workflow, steps, transitions)

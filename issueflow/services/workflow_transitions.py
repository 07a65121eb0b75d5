"""
Workflow Transitions — validation, allowed-transition query, guarded apply.

Decides whether an issue may move from one status to another, who may make
the move, and what alternatives exist when it is rejected.

Rejections are returned as WorkflowValidationResult values, never raised,
so callers can show the alternatives:

    configuration_error     no workflow resolves for the issue
    unknown_state           current or target status has no step (data drift)
    transition_not_allowed  no edge between the two steps; carries alternatives
    permission_denied       edge exists, requester lacks every required role
    condition_failed        a registered condition evaluator returned False
    validator_rejected      a registered validator rejected the move
    internal_error          the store failed while loading the workflow

Usage:
    from issueflow.services.workflow_transitions import validate_transition

    result = validate_transition(
        issue_id=12,
        current_status="Open",
        new_status="In Progress",
        user_id="u-7",
        user_roles=["developer"],
    )
    if not result.is_valid:
        return result.to_dict()

validate_transition never writes the status. transition_issue() is the
issue-update path: validate, then a compare-and-swap write keyed on the
validated status, then post-functions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from issueflow.services.issue_service import apply_status_change, get_issue_workflow_context
from issueflow.services.workflow_extensions import ExtensionRegistry, registry
from issueflow.services.workflow_graph import TransitionView, WorkflowGraph
from issueflow.services.workflow_resolver import resolve_workflow
from issueflow.services.workflow_service import load_graph

logger = logging.getLogger(__name__)


class TransitionErrorCode(str, Enum):
    CONFIGURATION = "configuration_error"
    UNKNOWN_STATE = "unknown_state"
    NOT_ALLOWED = "transition_not_allowed"
    PERMISSION = "permission_denied"
    CONDITION_FAILED = "condition_failed"
    VALIDATOR_REJECTED = "validator_rejected"
    INTERNAL = "internal_error"


@dataclass
class WorkflowValidationResult:
    """Verdict of a transition validation."""
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    allowed_transitions: list[dict] = field(default_factory=list)
    error_code: TransitionErrorCode | None = None
    transition: TransitionView | None = None
    workflow_id: int | None = None

    @classmethod
    def valid(cls, transition: TransitionView, workflow_id: int) -> "WorkflowValidationResult":
        return cls(is_valid=True, transition=transition, workflow_id=workflow_id)

    @classmethod
    def reject(
        cls,
        code: TransitionErrorCode,
        message: str,
        allowed: list[dict] | None = None,
        **kwargs,
    ) -> "WorkflowValidationResult":
        return cls(
            is_valid=False,
            errors=[message],
            allowed_transitions=allowed or [],
            error_code=code,
            **kwargs,
        )

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "allowed_transitions": list(self.allowed_transitions),
            "error_code": self.error_code.value if self.error_code else None,
            "transition": self.transition.to_dict() if self.transition else None,
            "workflow_id": self.workflow_id,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Pure evaluation (no I/O)
# ═════════════════════════════════════════════════════════════════════════════

def evaluate_transition(
    graph: WorkflowGraph,
    current_status: str,
    new_status: str,
    user_roles: Iterable[str] | None,
    context: dict | None = None,
    extensions: ExtensionRegistry | None = None,
) -> WorkflowValidationResult:
    """Decide a status change against an already-loaded workflow graph."""
    extensions = extensions or registry
    wid = graph.workflow_id

    current = graph.step_for_status(current_status)
    if current is None:
        return WorkflowValidationResult.reject(
            TransitionErrorCode.UNKNOWN_STATE,
            f"Current status '{current_status}' not found in workflow",
            workflow_id=wid,
        )

    target = graph.step_for_status(new_status)
    if target is None:
        return WorkflowValidationResult.reject(
            TransitionErrorCode.UNKNOWN_STATE,
            f"Target status '{new_status}' not found in workflow",
            workflow_id=wid,
        )

    candidates = graph.outgoing(current.id)
    transition = graph.find_transition(current.id, target.id)
    if transition is None:
        # Alternatives are listed regardless of the requester's roles.
        return WorkflowValidationResult.reject(
            TransitionErrorCode.NOT_ALLOWED,
            f"Transition from '{current_status}' to '{new_status}' is not allowed",
            allowed=[graph.describe(t) for t in candidates],
            workflow_id=wid,
        )

    if not transition.permits(user_roles):
        return WorkflowValidationResult.reject(
            TransitionErrorCode.PERMISSION,
            "User does not have required role for this transition",
            transition=transition,
            workflow_id=wid,
        )

    hook_context = dict(context or {})
    # Hooks judge the move being validated, not the stored status.
    hook_context["current_status"] = current_status
    hook_context["new_status"] = new_status
    hook_context.setdefault("user_roles", sorted(user_roles or []))
    outcome = extensions.run_pre_transition(transition, hook_context)
    if not outcome.passed:
        code = (
            TransitionErrorCode.CONDITION_FAILED
            if outcome.kind == "condition"
            else TransitionErrorCode.VALIDATOR_REJECTED
        )
        return WorkflowValidationResult.reject(
            code, outcome.message, transition=transition, workflow_id=wid,
        )

    return WorkflowValidationResult.valid(transition, wid)


# ═════════════════════════════════════════════════════════════════════════════
# Service entry points
# ═════════════════════════════════════════════════════════════════════════════

def _log_rejection(issue_id, result: WorkflowValidationResult, user_id) -> None:
    level = logging.INFO
    if result.error_code in (
        TransitionErrorCode.CONFIGURATION,
        TransitionErrorCode.UNKNOWN_STATE,
        TransitionErrorCode.INTERNAL,
    ):
        level = logging.WARNING
    logger.log(
        level,
        "Transition rejected issue=%s user=%s code=%s: %s",
        issue_id, user_id, result.error_code.value, "; ".join(result.errors),
        extra={"issue_id": issue_id, "workflow_id": result.workflow_id},
    )


def validate_transition(
    issue_id: int,
    current_status: str,
    new_status: str,
    user_id: int | str | None,
    user_roles: Iterable[str] | None,
    context: dict | None = None,
) -> WorkflowValidationResult:
    """Check whether ``issue_id`` may move from ``current_status`` to ``new_status``.

    Args:
        issue_id: Issue being changed; its project and type select the workflow.
        current_status: Status the caller believes the issue has.
        new_status: Requested status.
        user_id: Requester, for logging and hook context.
        user_roles: Requester's roles; compared case-insensitively.
        context: Extra ambient state handed to condition/validator hooks.

    Returns:
        WorkflowValidationResult (rejections are values, not exceptions).

    Raises:
        NotFoundError: The issue does not exist.
    """
    ctx = get_issue_workflow_context(issue_id)

    workflow = resolve_workflow(ctx["project_id"], ctx["issue_type"])
    if workflow is None:
        result = WorkflowValidationResult.reject(
            TransitionErrorCode.CONFIGURATION,
            "No workflow found for this issue",
        )
        _log_rejection(issue_id, result, user_id)
        return result

    try:
        graph = load_graph(workflow.id)
    except Exception as exc:
        logger.exception("Workflow load failed issue=%s workflow=%s", issue_id, workflow.id)
        result = WorkflowValidationResult.reject(
            TransitionErrorCode.INTERNAL,
            f"Workflow validation error: {exc}",
            workflow_id=workflow.id,
        )
        return result

    hook_context = {
        "issue_id": ctx["issue_id"],
        "project_id": ctx["project_id"],
        "issue_type": ctx["issue_type"],
        "persisted_status": ctx["current_status"],
        **(context or {}),
        "user_id": user_id,
    }
    result = evaluate_transition(graph, current_status, new_status, user_roles, hook_context)
    if result.is_valid:
        logger.debug("Transition allowed issue=%s %r -> %r via %s",
                     issue_id, current_status, new_status, result.transition.name)
    else:
        _log_rejection(issue_id, result, user_id)
    return result


def _allowed_from_snapshot(
    issue_id: int, user_roles: Iterable[str] | None,
) -> tuple[WorkflowGraph | None, list[TransitionView]]:
    """Load one snapshot and filter the current step's edges against it."""
    ctx = get_issue_workflow_context(issue_id)
    workflow = resolve_workflow(ctx["project_id"], ctx["issue_type"])
    if workflow is None:
        logger.warning("No workflow for issue=%s project=%s type=%s",
                       issue_id, ctx["project_id"], ctx["issue_type"])
        return None, []

    try:
        graph = load_graph(workflow.id)
    except Exception:
        logger.warning("Workflow load failed issue=%s workflow=%s",
                       issue_id, workflow.id, exc_info=True)
        return None, []

    current = graph.step_for_status(ctx["current_status"])
    if current is None:
        logger.warning("Issue %s status %r not found in workflow %s",
                       issue_id, ctx["current_status"], workflow.id)
        return graph, []

    return graph, [t for t in graph.outgoing(current.id) if t.permits(user_roles)]


def get_allowed_transitions(issue_id: int, user_roles: Iterable[str] | None) -> list[TransitionView]:
    """Transitions out of the issue's current step that the requester may take.

    Returns an empty list when no workflow resolves, the workflow cannot be
    loaded, or the issue's status is not a step of it.

    Raises:
        NotFoundError: The issue does not exist.
    """
    _, allowed = _allowed_from_snapshot(issue_id, user_roles)
    return allowed


def describe_allowed_transitions(issue_id: int, user_roles: Iterable[str] | None) -> list[dict]:
    """Allowed transitions with their destination status, for UI rendering."""
    graph, allowed = _allowed_from_snapshot(issue_id, user_roles)
    return [{**t.to_dict(), "to_status": graph.to_status(t)} for t in allowed]


def transition_issue(
    issue_id: int,
    new_status: str,
    user_id: int | str | None,
    user_roles: Iterable[str] | None,
    expected_status: str | None = None,
    context: dict | None = None,
) -> tuple[WorkflowValidationResult, dict | None]:
    """Validate and apply a status change for an issue.

    ``expected_status`` is the status the client last saw; it defaults to the
    persisted one. The write only succeeds if the issue still holds the
    validated status.

    Returns:
        (result, updated issue dict) on success, (result, None) on rejection.

    Raises:
        NotFoundError: The issue does not exist.
        ConflictError: The status changed between validation and write.
    """
    ctx = get_issue_workflow_context(issue_id)
    current_status = expected_status if expected_status is not None else ctx["current_status"]

    result = validate_transition(issue_id, current_status, new_status, user_id, user_roles, context)
    if not result.is_valid:
        return result, None

    issue = apply_status_change(issue_id, current_status, new_status)

    post_context = {
        **ctx,
        **(context or {}),
        "issue": issue,
        "previous_status": current_status,
        "new_status": new_status,
        "user_id": user_id,
    }
    registry.run_post_functions(result.transition, post_context)
    logger.info("Issue %s transitioned %r -> %r via '%s' by user=%s",
                issue_id, current_status, new_status, result.transition.name, user_id,
                extra={"issue_id": issue_id, "workflow_id": result.workflow_id})
    return result, issue

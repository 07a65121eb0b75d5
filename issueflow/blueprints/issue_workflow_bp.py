"""
Issue-facing workflow endpoints.

Blueprint: issue_workflow_bp
Prefix: /api/v1

Endpoints:
    GET   /issues/<iid>/workflow               -- Workflow that governs the issue
    GET   /issues/<iid>/transitions            -- Transitions the caller may take now
    POST  /issues/<iid>/transitions/validate   -- Dry-run a status change
    POST  /issues/<iid>/transition             -- Validate + guarded status write

The caller's roles come from the identity middleware (JWT or gateway
headers); request bodies cannot supply them.
"""

import logging

from flask import Blueprint, jsonify

from issueflow.blueprints import json_body, request_identity
from issueflow.core.exceptions import ConflictError, NotFoundError
from issueflow.services.issue_service import get_issue_workflow_context
from issueflow.services.workflow_service import get_workflow_for_issue
from issueflow.services.workflow_transitions import (
    TransitionErrorCode,
    describe_allowed_transitions,
    transition_issue,
    validate_transition,
)
from issueflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

issue_workflow_bp = Blueprint("issue_workflow", __name__, url_prefix="/api/v1")


_MISCONFIGURED = (TransitionErrorCode.CONFIGURATION, TransitionErrorCode.UNKNOWN_STATE)


@issue_workflow_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@issue_workflow_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_STATE, str(error))


def _rejection_response(result):
    """Map a rejected verdict onto an HTTP error with the full result attached."""
    if result.error_code == TransitionErrorCode.PERMISSION:
        code = E.FORBIDDEN
    elif result.error_code in _MISCONFIGURED:
        code = E.WORKFLOW_MISCONFIGURED
    elif result.error_code == TransitionErrorCode.INTERNAL:
        code = E.INTERNAL
    else:
        code = E.TRANSITION_REJECTED
    return api_error(code, result.errors[0], details=result.to_dict())


@issue_workflow_bp.route("/issues/<int:iid>/workflow", methods=["GET"])
def get_issue_workflow(iid):
    workflow = get_workflow_for_issue(iid)
    if workflow is None:
        return api_error(E.WORKFLOW_MISCONFIGURED, "No workflow found for this issue", status=404)
    return jsonify({"workflow": workflow}), 200


@issue_workflow_bp.route("/issues/<int:iid>/transitions", methods=["GET"])
def list_allowed_transitions(iid):
    """Transitions out of the issue's current status, filtered by the caller's roles."""
    _, roles = request_identity()
    ctx = get_issue_workflow_context(iid)
    transitions = describe_allowed_transitions(iid, roles)
    return jsonify({
        "issue_id": iid,
        "current_status": ctx["current_status"],
        "transitions": transitions,
    }), 200


@issue_workflow_bp.route("/issues/<int:iid>/transitions/validate", methods=["POST"])
def validate_issue_transition(iid):
    """Dry-run: always 200, the verdict is in the body."""
    data = json_body()
    new_status = data.get("new_status")
    if not isinstance(new_status, str) or not new_status:
        return api_error(E.VALIDATION_REQUIRED, "new_status is required")

    user_id, roles = request_identity()
    current_status = data.get("current_status")
    if not isinstance(current_status, str) or not current_status:
        current_status = get_issue_workflow_context(iid)["current_status"]

    result = validate_transition(iid, current_status, new_status, user_id, roles)
    return jsonify({"result": result.to_dict()}), 200


@issue_workflow_bp.route("/issues/<int:iid>/transition", methods=["POST"])
def apply_issue_transition(iid):
    """Move an issue to ``new_status``.

    Body: {"new_status": str, "expected_status": str (optional)}
    409 when the move is rejected or the status changed concurrently,
    403 on missing role, 422 when the workflow cannot judge the issue.
    """
    data = json_body()
    new_status = data.get("new_status")
    if not isinstance(new_status, str) or not new_status:
        return api_error(E.VALIDATION_REQUIRED, "new_status is required")

    user_id, roles = request_identity()
    result, issue = transition_issue(
        iid,
        new_status,
        user_id,
        roles,
        expected_status=data.get("expected_status") or None,
    )
    if not result.is_valid:
        return _rejection_response(result)
    return jsonify({"issue": issue, "result": result.to_dict()}), 200

"""
Workflow definition administration.

Blueprint: workflow_bp
Prefix: /api/v1

Endpoints:
  Workflows:
    GET/POST       /projects/<pid>/workflows            -- List/create workflows
    GET            /projects/<pid>/workflows/resolve    -- Workflow for ?issue_type=
    GET/PUT/DELETE /workflows/<wid>                     -- Single workflow CRUD
    POST           /workflows/<wid>/deactivate          -- Soft retirement
    GET            /workflows/<wid>/graph               -- Steps + transitions snapshot

  Steps:
    GET/POST       /workflows/<wid>/steps               -- List/create steps
    PUT/DELETE     /workflow-steps/<sid>                -- Update/delete step

  Transitions:
    GET/POST       /workflows/<wid>/transitions         -- List/create transitions
    PUT/DELETE     /workflow-transitions/<tid>          -- Update/delete transition

Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from issueflow.blueprints import json_body
from issueflow.core.exceptions import (
    ConflictError,
    DefinitionValidationError,
    NotFoundError,
    ValidationError,
)
from issueflow.models import db
from issueflow.models.project import Project
from issueflow.services import workflow_service as ws
from issueflow.services.workflow_resolver import resolve_workflow
from issueflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")


# ── Error handlers ────────────────────────────────────────────────────────────


@workflow_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@workflow_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    details = {"fields": error.details}
    if isinstance(error, DefinitionValidationError):
        details["violations"] = error.violations
    return api_error(E.VALIDATION_INVALID, str(error), details=details)


@workflow_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_STATE, str(error))


# ------------------------------------------------------------------
#  Workflows
# ------------------------------------------------------------------

@workflow_bp.route("/projects/<int:pid>/workflows", methods=["GET"])
def list_workflows(pid):
    """List a project's workflows; ?active=true hides retired ones."""
    include_inactive = request.args.get("active", "").lower() != "true"
    workflows = ws.get_workflows_by_project(pid, include_inactive=include_inactive)
    return jsonify({"workflows": workflows, "total": len(workflows)}), 200


@workflow_bp.route("/projects/<int:pid>/workflows", methods=["POST"])
def create_workflow(pid):
    """Create a workflow for a project."""
    workflow = ws.create_workflow(pid, json_body())
    return jsonify({"workflow": workflow}), 201


@workflow_bp.route("/projects/<int:pid>/workflows/resolve", methods=["GET"])
def resolve_project_workflow(pid):
    """Return the workflow that issues of ?issue_type= would follow."""
    if not db.session.get(Project, pid):
        raise NotFoundError(resource="Project", resource_id=pid)
    issue_type = request.args.get("issue_type") or None
    workflow = resolve_workflow(pid, issue_type)
    if workflow is None:
        return api_error(
            E.WORKFLOW_MISCONFIGURED,
            "No workflow found for this issue type",
            status=404,
            details={"project_id": pid, "issue_type": issue_type},
        )
    return jsonify({"workflow": workflow.to_dict()}), 200


@workflow_bp.route("/workflows/<int:wid>", methods=["GET"])
def get_workflow(wid):
    return jsonify({"workflow": ws.get_workflow_by_id(wid)}), 200


@workflow_bp.route("/workflows/<int:wid>", methods=["PUT"])
def update_workflow(wid):
    return jsonify({"workflow": ws.update_workflow(wid, json_body())}), 200


@workflow_bp.route("/workflows/<int:wid>", methods=["DELETE"])
def delete_workflow(wid):
    ws.delete_workflow(wid)
    return jsonify({"deleted": True, "id": wid}), 200


@workflow_bp.route("/workflows/<int:wid>/deactivate", methods=["POST"])
def deactivate_workflow(wid):
    return jsonify({"workflow": ws.deactivate_workflow(wid)}), 200


@workflow_bp.route("/workflows/<int:wid>/graph", methods=["GET"])
def get_workflow_graph(wid):
    """Steps and transitions of one workflow, as the validator sees them."""
    graph = ws.load_graph(wid)
    return jsonify({"graph": graph.to_dict()}), 200


# ------------------------------------------------------------------
#  Steps
# ------------------------------------------------------------------

@workflow_bp.route("/workflows/<int:wid>/steps", methods=["GET"])
def list_steps(wid):
    steps = ws.get_steps(wid)
    return jsonify({"steps": steps, "total": len(steps)}), 200


@workflow_bp.route("/workflows/<int:wid>/steps", methods=["POST"])
def create_step(wid):
    return jsonify({"step": ws.create_step(wid, json_body())}), 201


@workflow_bp.route("/workflow-steps/<int:sid>", methods=["PUT"])
def update_step(sid):
    return jsonify({"step": ws.update_step(sid, json_body())}), 200


@workflow_bp.route("/workflow-steps/<int:sid>", methods=["DELETE"])
def delete_step(sid):
    ws.delete_step(sid)
    return jsonify({"deleted": True, "id": sid}), 200


# ------------------------------------------------------------------
#  Transitions
# ------------------------------------------------------------------

@workflow_bp.route("/workflows/<int:wid>/transitions", methods=["GET"])
def list_transitions(wid):
    transitions = ws.get_transitions(wid)
    return jsonify({"transitions": transitions, "total": len(transitions)}), 200


@workflow_bp.route("/workflows/<int:wid>/transitions", methods=["POST"])
def create_transition(wid):
    return jsonify({"transition": ws.create_transition(wid, json_body())}), 201


@workflow_bp.route("/workflow-transitions/<int:tid>", methods=["PUT"])
def update_transition(tid):
    return jsonify({"transition": ws.update_transition(tid, json_body())}), 200


@workflow_bp.route("/workflow-transitions/<int:tid>", methods=["DELETE"])
def delete_transition(tid):
    ws.delete_transition(tid)
    return jsonify({"deleted": True, "id": tid}), 200

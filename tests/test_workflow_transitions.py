"""
Transition validation, allowed-transition and guarded-apply tests.

Uses the standard workflow from conftest:

    Open ─Start Progress─▶ InProgress ─Resolve Issue─▶ Resolved ─Close Issue─▶ Closed
    InProgress ─Stop Progress─▶ Open            Closed ─Reopen Issue─▶ Open

Start/Resolve/Stop need Developer or Tester; Close/Reopen need Admin.
"""

import pytest

from issueflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from issueflow.models import db
from issueflow.models.project import Issue
from issueflow.services import workflow_service as ws
from issueflow.services.issue_service import create_issue
from issueflow.services.workflow_extensions import registry
from issueflow.services.workflow_transitions import (
    TransitionErrorCode,
    describe_allowed_transitions,
    evaluate_transition,
    get_allowed_transitions,
    transition_issue,
    validate_transition,
)


# ═════════════════════════════════════════════════════════════════════════════
# validate_transition
# ═════════════════════════════════════════════════════════════════════════════


class TestValidateTransition:
    def test_developer_can_start_progress(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        result = validate_transition(issue.id, "Open", "InProgress", 1, ["Developer"])
        assert result.is_valid
        assert result.errors == []
        assert result.error_code is None
        assert result.transition.name == "Start Progress"
        assert result.workflow_id == standard_workflow["workflow"]["id"]

    def test_missing_edge_lists_alternatives(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        result = validate_transition(issue.id, "Open", "Resolved", 1, ["Developer"])
        assert not result.is_valid
        assert result.error_code == TransitionErrorCode.NOT_ALLOWED
        assert result.errors == ["Transition from 'Open' to 'Resolved' is not allowed"]
        assert result.allowed_transitions == [{
            "transition_id": standard_workflow["transitions"]["Start Progress"],
            "name": "Start Progress",
            "to_status": "InProgress",
        }]

    def test_alternatives_ignore_requester_roles(self, standard_workflow, make_issue):
        issue = make_issue(status="InProgress")
        result = validate_transition(issue.id, "InProgress", "Closed", 1, [])
        assert result.error_code == TransitionErrorCode.NOT_ALLOWED
        names = sorted(a["name"] for a in result.allowed_transitions)
        assert names == ["Resolve Issue", "Stop Progress"]

    def test_developer_cannot_close(self, standard_workflow, make_issue):
        issue = make_issue(status="Resolved")
        result = validate_transition(issue.id, "Resolved", "Closed", 1, ["Developer"])
        assert not result.is_valid
        assert result.error_code == TransitionErrorCode.PERMISSION
        assert result.errors == ["User does not have required role for this transition"]
        assert result.allowed_transitions == []

    def test_admin_can_reopen(self, standard_workflow, make_issue):
        issue = make_issue(status="Closed")
        result = validate_transition(issue.id, "Closed", "Open", 1, ["Admin"])
        assert result.is_valid
        assert result.transition.name == "Reopen Issue"

    def test_role_match_ignores_case(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        result = validate_transition(issue.id, "Open", "InProgress", 1, ["developer"])
        assert result.is_valid

    def test_no_roles_on_restricted_transition(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        result = validate_transition(issue.id, "Open", "InProgress", 1, [])
        assert result.error_code == TransitionErrorCode.PERMISSION

    def test_unrestricted_transition_needs_no_role(self, workflow_factory, project, make_issue):
        workflow_factory(
            project.id,
            [{"name": "A", "status": "A", "is_initial": True}, {"name": "B", "status": "B"}],
            [("Go", "A", "B", [])],
        )
        issue = make_issue(status="A")
        assert validate_transition(issue.id, "A", "B", None, []).is_valid

    def test_unknown_current_status(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        result = validate_transition(issue.id, "Legacy", "Open", 1, ["Admin"])
        assert result.error_code == TransitionErrorCode.UNKNOWN_STATE
        assert "not found in workflow" in result.errors[0]
        assert "Current status 'Legacy'" in result.errors[0]

    def test_unknown_target_status(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        result = validate_transition(issue.id, "Open", "Done", 1, ["Admin"])
        assert result.error_code == TransitionErrorCode.UNKNOWN_STATE
        assert result.errors == ["Target status 'Done' not found in workflow"]

    def test_status_match_is_case_sensitive(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        result = validate_transition(issue.id, "open", "InProgress", 1, ["Developer"])
        assert result.error_code == TransitionErrorCode.UNKNOWN_STATE

    def test_no_workflow_is_configuration_error(self, project, make_issue):
        issue = make_issue(status="Open")
        result = validate_transition(issue.id, "Open", "InProgress", 1, ["Developer"])
        assert not result.is_valid
        assert result.error_code == TransitionErrorCode.CONFIGURATION
        assert result.errors == ["No workflow found for this issue"]

    def test_type_specific_workflow_used(self, project, standard_workflow, workflow_factory, make_issue):
        workflow_factory(
            project.id,
            [{"name": "New", "status": "New", "is_initial": True}, {"name": "Fixed", "status": "Fixed"}],
            [("Fix", "New", "Fixed", ["Developer"])],
            name="Bugs", issue_type="Bug", is_default=False,
        )
        bug = make_issue(status="New", issue_type="Bug")
        assert validate_transition(bug.id, "New", "Fixed", 1, ["Developer"]).is_valid
        assert validate_transition(bug.id, "Open", "InProgress", 1, ["Developer"]).error_code == (
            TransitionErrorCode.UNKNOWN_STATE
        )

    def test_missing_issue_raises(self, standard_workflow):
        with pytest.raises(NotFoundError):
            validate_transition(404, "Open", "InProgress", 1, ["Developer"])

    def test_store_failure_is_internal_error(self, standard_workflow, make_issue, monkeypatch):
        issue = make_issue(status="Open")

        def _boom(workflow_id):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr("issueflow.services.workflow_transitions.load_graph", _boom)
        result = validate_transition(issue.id, "Open", "InProgress", 1, ["Developer"])
        assert result.error_code == TransitionErrorCode.INTERNAL
        assert "database unavailable" in result.errors[0]

    def test_does_not_write_status(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        validate_transition(issue.id, "Open", "InProgress", 1, ["Developer"])
        db.session.expire_all()
        assert db.session.get(Issue, issue.id).status == "Open"

    def test_result_serialises(self, standard_workflow, make_issue):
        issue = make_issue(status="Resolved")
        data = validate_transition(issue.id, "Resolved", "Closed", 1, ["Tester"]).to_dict()
        assert data["is_valid"] is False
        assert data["error_code"] == "permission_denied"
        assert data["transition"]["name"] == "Close Issue"
        assert data["warnings"] == []


# ═════════════════════════════════════════════════════════════════════════════
# get_allowed_transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestAllowedTransitions:
    def test_tester_in_progress(self, standard_workflow, make_issue):
        issue = make_issue(status="InProgress")
        allowed = get_allowed_transitions(issue.id, ["Tester"])
        assert {t.name for t in allowed} == {"Resolve Issue", "Stop Progress"}

    def test_only_current_step_is_considered(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        allowed = get_allowed_transitions(issue.id, ["Developer", "Admin"])
        assert [t.name for t in allowed] == ["Start Progress"]

    def test_admin_on_resolved(self, standard_workflow, make_issue):
        issue = make_issue(status="Resolved")
        assert [t.name for t in get_allowed_transitions(issue.id, ["ADMIN"])] == ["Close Issue"]
        assert get_allowed_transitions(issue.id, ["Developer"]) == []

    def test_no_workflow_returns_empty(self, project, make_issue):
        issue = make_issue(status="Open")
        assert get_allowed_transitions(issue.id, ["Admin"]) == []

    def test_unknown_status_returns_empty(self, standard_workflow, make_issue):
        issue = make_issue(status="Archived")
        assert get_allowed_transitions(issue.id, ["Admin"]) == []

    def test_describe_includes_destination(self, standard_workflow, make_issue):
        issue = make_issue(status="Closed")
        described = describe_allowed_transitions(issue.id, ["admin"])
        assert len(described) == 1
        assert described[0]["name"] == "Reopen Issue"
        assert described[0]["to_status"] == "Open"

    def test_describe_reads_one_snapshot(self, standard_workflow, make_issue, monkeypatch):
        loads = []

        def _counting_load(workflow_id):
            loads.append(workflow_id)
            return ws.load_graph(workflow_id)

        monkeypatch.setattr("issueflow.services.workflow_transitions.load_graph", _counting_load)
        issue = make_issue(status="InProgress")
        described = describe_allowed_transitions(issue.id, ["Developer"])
        assert {d["to_status"] for d in described} == {"Resolved", "Open"}
        assert loads == [standard_workflow["workflow"]["id"]]

    def test_load_failure_returns_empty(self, standard_workflow, make_issue, monkeypatch, caplog):
        issue = make_issue(status="Open")

        def _boom(workflow_id):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr("issueflow.services.workflow_transitions.load_graph", _boom)
        with caplog.at_level("WARNING"):
            assert get_allowed_transitions(issue.id, ["Developer"]) == []
            assert describe_allowed_transitions(issue.id, ["Developer"]) == []
        assert "Workflow load failed" in caplog.text


# ═════════════════════════════════════════════════════════════════════════════
# transition_issue / create_issue
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionIssue:
    def test_applies_status(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        result, updated = transition_issue(issue.id, "InProgress", 1, ["Developer"])
        assert result.is_valid
        assert updated["status"] == "InProgress"
        db.session.expire_all()
        assert db.session.get(Issue, issue.id).status == "InProgress"

    def test_rejection_leaves_status(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        result, updated = transition_issue(issue.id, "Closed", 1, ["Admin"])
        assert not result.is_valid
        assert updated is None
        db.session.expire_all()
        assert db.session.get(Issue, issue.id).status == "Open"

    def test_stale_expected_status_conflicts(self, standard_workflow, make_issue):
        issue = make_issue(status="InProgress")
        with pytest.raises(ConflictError):
            transition_issue(issue.id, "InProgress", 1, ["Developer"], expected_status="Open")
        db.session.expire_all()
        assert db.session.get(Issue, issue.id).status == "InProgress"

    def test_full_lifecycle(self, standard_workflow, make_issue):
        issue = make_issue(status="Open")
        for target, roles in (
            ("InProgress", ["Developer"]),
            ("Resolved", ["Tester"]),
            ("Closed", ["Admin"]),
            ("Open", ["Admin"]),
        ):
            result, updated = transition_issue(issue.id, target, 1, roles)
            assert result.is_valid, result.errors
            assert updated["status"] == target


class TestCreateIssue:
    def test_starts_on_initial_step(self, project, standard_workflow):
        issue = create_issue(project.id, "New bug", issue_type="Bug")
        assert issue["status"] == "Open"

    def test_explicit_status_kept(self, project, standard_workflow):
        issue = create_issue(project.id, "Imported", status="Resolved")
        assert issue["status"] == "Resolved"

    def test_no_initial_step(self, project):
        with pytest.raises(ValidationError):
            create_issue(project.id, "Orphan")

    def test_invalid_fields(self, project, standard_workflow):
        with pytest.raises(ValidationError) as exc:
            create_issue(project.id, " ", issue_type="Feature")
        assert set(exc.value.details) == {"title", "type"}


# ═════════════════════════════════════════════════════════════════════════════
# Extension hooks
# ═════════════════════════════════════════════════════════════════════════════


class TestExtensions:
    def test_unregistered_hooks_are_noops(self, standard_workflow, make_issue):
        ws.update_transition(standard_workflow["transitions"]["Start Progress"], {
            "kind": "conditional",
            "conditions": {"sprint_open": True},
            "validators": ["estimate_set"],
            "post_functions": ["notify_watchers"],
        })
        issue = make_issue(status="Open")
        result, updated = transition_issue(issue.id, "InProgress", 1, ["Developer"])
        assert result.is_valid
        assert updated["status"] == "InProgress"

    def test_failing_condition(self, standard_workflow, make_issue):
        ws.update_transition(standard_workflow["transitions"]["Start Progress"], {
            "kind": "conditional",
            "conditions": {"sprint_open": {"sprint": 4}},
        })
        seen = {}

        @registry.condition("sprint_open")
        def _sprint_open(transition, context, config):
            seen["config"] = config
            seen["user_id"] = context.get("user_id")
            return False

        issue = make_issue(status="Open")
        result = validate_transition(issue.id, "Open", "InProgress", "u-1", ["Developer"])
        assert result.error_code == TransitionErrorCode.CONDITION_FAILED
        assert "sprint_open" in result.errors[0]
        assert seen == {"config": {"sprint": 4}, "user_id": "u-1"}

    def test_conditions_skipped_on_global_transition(self, standard_workflow, make_issue):
        ws.update_transition(standard_workflow["transitions"]["Start Progress"], {
            "conditions": {"sprint_open": True},
        })

        @registry.condition("sprint_open")
        def _never(transition, context, config):
            return False

        issue = make_issue(status="Open")
        assert validate_transition(issue.id, "Open", "InProgress", 1, ["Developer"]).is_valid

    def test_validator_rejects_with_message(self, standard_workflow, make_issue):
        ws.update_transition(standard_workflow["transitions"]["Resolve Issue"], {
            "validators": ["resolution_required"],
        })

        @registry.validator("resolution_required")
        def _needs_resolution(transition, context):
            return None if context.get("resolution") else "Resolution is required"

        issue = make_issue(status="InProgress")
        rejected = validate_transition(issue.id, "InProgress", "Resolved", 1, ["Developer"])
        assert rejected.error_code == TransitionErrorCode.VALIDATOR_REJECTED
        assert rejected.errors == ["Resolution is required"]

        accepted = validate_transition(
            issue.id, "InProgress", "Resolved", 1, ["Developer"],
            context={"resolution": "Fixed"},
        )
        assert accepted.is_valid

    def test_permission_checked_before_hooks(self, standard_workflow, make_issue):
        ws.update_transition(standard_workflow["transitions"]["Close Issue"], {
            "validators": ["counted"],
        })
        calls = []

        @registry.validator("counted")
        def _counted(transition, context):
            calls.append(transition.id)
            return None

        issue = make_issue(status="Resolved")
        result = validate_transition(issue.id, "Resolved", "Closed", 1, ["Developer"])
        assert result.error_code == TransitionErrorCode.PERMISSION
        assert calls == []

    def test_post_functions_run_after_write(self, standard_workflow, make_issue):
        ws.update_transition(standard_workflow["transitions"]["Start Progress"], {
            "post_functions": ["record"],
        })
        recorded = []

        @registry.post_function("record")
        def _record(transition, context):
            recorded.append((context["previous_status"], context["issue"]["status"]))

        issue = make_issue(status="Open")
        transition_issue(issue.id, "InProgress", 1, ["Developer"])
        assert recorded == [("Open", "InProgress")]

    def test_failing_post_function_is_logged_not_raised(self, standard_workflow, make_issue, caplog):
        ws.update_transition(standard_workflow["transitions"]["Start Progress"], {
            "post_functions": ["explode", "record"],
        })
        recorded = []

        @registry.post_function("explode")
        def _explode(transition, context):
            raise RuntimeError("mail server down")

        @registry.post_function("record")
        def _record(transition, context):
            recorded.append(context["new_status"])

        issue = make_issue(status="Open")
        with caplog.at_level("ERROR"):
            result, updated = transition_issue(issue.id, "InProgress", 1, ["Developer"])
        assert result.is_valid
        assert updated["status"] == "InProgress"
        assert recorded == ["InProgress"]
        assert "Post-function explode failed" in caplog.text

    def test_hooks_see_the_status_being_validated(self, standard_workflow, make_issue):
        ws.update_transition(standard_workflow["transitions"]["Start Progress"], {
            "validators": ["spy"],
        })
        seen = {}

        @registry.validator("spy")
        def _spy(transition, context):
            seen.update(context)
            return None

        issue = make_issue(status="Resolved")
        result = validate_transition(issue.id, "Open", "InProgress", 1, ["Developer"])
        assert result.is_valid
        assert seen["current_status"] == "Open"
        assert seen["new_status"] == "InProgress"
        assert seen["persisted_status"] == "Resolved"
        assert seen["issue_id"] == issue.id

    def test_expected_status_reaches_hooks(self, standard_workflow, make_issue):
        ws.update_transition(standard_workflow["transitions"]["Start Progress"], {
            "validators": ["spy"],
        })
        seen = []

        @registry.validator("spy")
        def _spy(transition, context):
            seen.append(context["current_status"])
            return None

        issue = make_issue(status="InProgress")
        with pytest.raises(ConflictError):
            transition_issue(issue.id, "InProgress", 1, ["Developer"], expected_status="Open")
        assert seen == ["Open"]

    def test_raising_validator_is_a_rejection(self, standard_workflow, make_issue, caplog):
        ws.update_transition(standard_workflow["transitions"]["Start Progress"], {
            "validators": ["crashes"],
        })

        @registry.validator("crashes")
        def _crashes(transition, context):
            raise RuntimeError("validator crashed")

        issue = make_issue(status="Open")
        with caplog.at_level("ERROR"):
            result = validate_transition(issue.id, "Open", "InProgress", 1, ["Developer"])
        assert not result.is_valid
        assert result.error_code == TransitionErrorCode.VALIDATOR_REJECTED
        assert "crashes" in result.errors[0]
        assert "Validator crashes raised" in caplog.text

    def test_raising_condition_is_a_failure(self, standard_workflow, make_issue):
        ws.update_transition(standard_workflow["transitions"]["Start Progress"], {
            "kind": "conditional",
            "conditions": {"sprint_open": True},
        })

        @registry.condition("sprint_open")
        def _crashes(transition, context, config):
            raise KeyError("sprint")

        issue = make_issue(status="Open")
        result, updated = transition_issue(issue.id, "InProgress", 1, ["Developer"])
        assert result.error_code == TransitionErrorCode.CONDITION_FAILED
        assert "sprint_open" in result.errors[0]
        assert updated is None

    def test_raising_validator_over_http(self, client, standard_workflow, make_issue):
        ws.update_transition(standard_workflow["transitions"]["Start Progress"], {
            "validators": ["crashes"],
        })

        @registry.validator("crashes")
        def _crashes(transition, context):
            raise RuntimeError("validator crashed")

        issue = make_issue(status="Open")
        res = client.post(f"/api/v1/issues/{issue.id}/transition",
                          json={"new_status": "InProgress"},
                          headers={"X-User-Roles": "Developer"})
        assert res.status_code == 409
        assert res.get_json()["details"]["error_code"] == "validator_rejected"


class TestEvaluateTransition:
    def test_pure_evaluation_on_loaded_graph(self, standard_workflow):
        graph = ws.load_graph(standard_workflow["workflow"]["id"])
        assert evaluate_transition(graph, "Open", "InProgress", ["Tester"]).is_valid
        assert evaluate_transition(graph, "Closed", "Open", ["Tester"]).error_code == (
            TransitionErrorCode.PERMISSION
        )

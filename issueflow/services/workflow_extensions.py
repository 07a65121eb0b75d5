"""
Workflow extension registry — conditions, validators and post-functions.

Transitions carry opaque extension fields:
    conditions      {name: config}   evaluated for kind == "conditional"
    validators      [name, ...]      run in order, first rejection wins
    post_functions  [name, ...]      run after the status write, fire-and-forget

This module maps those names to callables (strategy pattern). No evaluator
ships with the engine: until one is registered, a conditional transition
behaves exactly like a global one and validators/post-functions are no-ops.
Unregistered names are skipped with a debug log, never treated as failures.

Usage:
    from issueflow.services.workflow_extensions import registry

    @registry.validator("resolution_required")
    def _needs_resolution(transition, context):
        if not context.get("resolution"):
            return "Resolution is required"
        return None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from issueflow.services.workflow_graph import TransitionView

logger = logging.getLogger(__name__)


ConditionFn = Callable[[TransitionView, dict, Any], bool]
ValidatorFn = Callable[[TransitionView, dict], "str | None"]
PostFunctionFn = Callable[[TransitionView, dict], None]


@dataclass
class HookOutcome:
    """Result of running the pre-transition hooks."""
    passed: bool = True
    hook: str | None = None
    kind: str | None = None         # "condition" | "validator"
    message: str | None = None
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "hook": self.hook,
            "kind": self.kind,
            "message": self.message,
            "skipped": list(self.skipped),
        }


def _failed(outcome: HookOutcome, hook: str, kind: str, message: str) -> HookOutcome:
    outcome.passed = False
    outcome.hook = hook
    outcome.kind = kind
    outcome.message = message
    return outcome


class ExtensionRegistry:
    """Named evaluators for transition extension points."""

    def __init__(self) -> None:
        self._conditions: dict[str, ConditionFn] = {}
        self._validators: dict[str, ValidatorFn] = {}
        self._post_functions: dict[str, PostFunctionFn] = {}

    # ── Registration ─────────────────────────────────────────────

    def condition(self, name: str):
        """Register ``fn(transition, context, config) -> bool``."""
        def decorator(fn):
            self._conditions[name] = fn
            return fn
        return decorator

    def validator(self, name: str):
        """Register ``fn(transition, context) -> str | None`` (rejection message)."""
        def decorator(fn):
            self._validators[name] = fn
            return fn
        return decorator

    def post_function(self, name: str):
        """Register ``fn(transition, context) -> None``."""
        def decorator(fn):
            self._post_functions[name] = fn
            return fn
        return decorator

    def unregister(self, name: str) -> None:
        for table in (self._conditions, self._validators, self._post_functions):
            table.pop(name, None)

    def clear(self) -> None:
        self._conditions.clear()
        self._validators.clear()
        self._post_functions.clear()

    def registered(self) -> dict:
        return {
            "conditions": sorted(self._conditions),
            "validators": sorted(self._validators),
            "post_functions": sorted(self._post_functions),
        }

    # ── Evaluation ───────────────────────────────────────────────

    def run_pre_transition(self, transition: TransitionView, context: dict) -> HookOutcome:
        """Evaluate conditions (conditional kind only), then validators in order.

        Stops at the first failing condition or rejecting validator. A hook
        that raises is logged and counts as a failure of its kind.
        """
        outcome = HookOutcome()

        if transition.is_conditional:
            for name, config in transition.conditions.items():
                fn = self._conditions.get(name)
                if fn is None:
                    outcome.skipped.append(name)
                    continue
                try:
                    satisfied = fn(transition, context, config)
                except Exception:
                    logger.exception("Condition %s raised for transition %s issue=%s",
                                     name, transition.id, context.get("issue_id"))
                    return _failed(outcome, name, "condition",
                                   f"Condition '{name}' could not be evaluated")
                if not satisfied:
                    return _failed(outcome, name, "condition",
                                   f"Condition '{name}' is not satisfied")

        for name in transition.validators:
            fn = self._validators.get(name)
            if fn is None:
                outcome.skipped.append(name)
                continue
            try:
                message = fn(transition, context)
            except Exception:
                logger.exception("Validator %s raised for transition %s issue=%s",
                                 name, transition.id, context.get("issue_id"))
                return _failed(outcome, name, "validator",
                               f"Validator '{name}' could not be evaluated")
            if message:
                return _failed(outcome, name, "validator", str(message))

        if outcome.skipped:
            logger.debug("Transition %s: no evaluator registered for %s",
                         transition.id, outcome.skipped)
        return outcome

    def run_post_functions(self, transition: TransitionView, context: dict) -> list[str]:
        """Run post-functions in order after a successful status write.

        A failing post-function is logged and does not stop the rest or undo
        the transition. Returns the names that ran successfully.
        """
        ran = []
        for name in transition.post_functions:
            fn = self._post_functions.get(name)
            if fn is None:
                logger.debug("Transition %s: no post-function registered for %s",
                             transition.id, name)
                continue
            try:
                fn(transition, context)
                ran.append(name)
            except Exception:
                logger.exception("Post-function %s failed for transition %s issue=%s",
                                 name, transition.id, context.get("issue_id"))
        return ran


registry = ExtensionRegistry()

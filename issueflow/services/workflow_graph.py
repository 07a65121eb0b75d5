"""
Workflow Graph Model — immutable in-memory snapshot of one workflow.

Built once per validation call from the workflow's steps and transitions
(loaded together), then queried without further I/O:

    graph = WorkflowGraph.from_rows(workflow, steps, transitions)
    step = graph.step_for_status("Open")
    for t in graph.outgoing(step.id):
        ...

Steps are indexed by id and by status label; transitions are indexed by
``from_step_id`` so candidate enumeration is O(out-degree).
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping


def normalize_role(role: str) -> str:
    """Canonical comparison form of a role name."""
    return str(role).strip().casefold()


def normalize_roles(roles: Iterable[str] | None) -> frozenset[str]:
    """Normalise a role collection at the boundary; blanks are dropped."""
    if not roles:
        return frozenset()
    if isinstance(roles, str):
        roles = [roles]
    return frozenset(r for r in (normalize_role(x) for x in roles) if r)


class GraphIntegrityError(ValueError):
    """Raised when step/transition rows cannot form a consistent graph."""


@dataclass(frozen=True)
class StepView:
    id: int
    workflow_id: int
    name: str
    status: str
    order: int = 0
    is_initial: bool = False
    is_final: bool = False
    properties: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "name": self.name,
            "status": self.status,
            "order": self.order,
            "is_initial": self.is_initial,
            "is_final": self.is_final,
            "properties": dict(self.properties),
        }


@dataclass(frozen=True)
class TransitionView:
    id: int
    workflow_id: int
    from_step_id: int
    to_step_id: int
    name: str
    kind: str = "global"
    conditions: Mapping[str, Any] = field(default_factory=dict)
    required_roles: tuple[str, ...] = ()
    validators: tuple[str, ...] = ()
    post_functions: tuple[str, ...] = ()
    screen_id: int | None = None
    properties: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_conditional(self) -> bool:
        return self.kind == "conditional"

    @property
    def is_restricted(self) -> bool:
        return bool(normalize_roles(self.required_roles))

    def permits(self, user_roles: Iterable[str] | None) -> bool:
        """True when the transition is unrestricted or shares a role with the caller."""
        required = normalize_roles(self.required_roles)
        if not required:
            return True
        return not required.isdisjoint(normalize_roles(user_roles))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "from_step_id": self.from_step_id,
            "to_step_id": self.to_step_id,
            "name": self.name,
            "kind": self.kind,
            "conditions": dict(self.conditions),
            "required_roles": list(self.required_roles),
            "validators": list(self.validators),
            "post_functions": list(self.post_functions),
            "screen_id": self.screen_id,
            "properties": dict(self.properties),
        }


class WorkflowGraph:
    """Read-only adjacency-list view of a workflow."""

    def __init__(
        self,
        workflow_id: int,
        steps: Iterable[StepView],
        transitions: Iterable[TransitionView],
        name: str = "",
    ) -> None:
        self.workflow_id = workflow_id
        self.name = name

        by_id: dict[int, StepView] = {}
        by_status: dict[str, StepView] = {}
        for step in sorted(steps, key=lambda s: (s.order, s.id)):
            if step.workflow_id != workflow_id:
                raise GraphIntegrityError(
                    f"Step {step.id} belongs to workflow {step.workflow_id}, not {workflow_id}"
                )
            if step.status in by_status:
                raise GraphIntegrityError(
                    f"Duplicate status '{step.status}' in workflow {workflow_id}"
                )
            by_id[step.id] = step
            by_status[step.status] = step

        adjacency: dict[int, list[TransitionView]] = defaultdict(list)
        by_tid: dict[int, TransitionView] = {}
        for t in sorted(transitions, key=lambda t: t.id):
            if t.workflow_id != workflow_id:
                raise GraphIntegrityError(
                    f"Transition {t.id} belongs to workflow {t.workflow_id}, not {workflow_id}"
                )
            if t.from_step_id not in by_id or t.to_step_id not in by_id:
                raise GraphIntegrityError(
                    f"Transition {t.id} references a step outside workflow {workflow_id}"
                )
            adjacency[t.from_step_id].append(t)
            by_tid[t.id] = t

        self._steps = tuple(by_id.values())
        self._by_id = MappingProxyType(by_id)
        self._by_status = MappingProxyType(by_status)
        self._transitions = tuple(by_tid.values())
        self._by_tid = MappingProxyType(by_tid)
        self._adjacency = MappingProxyType({k: tuple(v) for k, v in adjacency.items()})

    # ── Construction ─────────────────────────────────────────────

    @classmethod
    def from_rows(cls, workflow, steps, transitions) -> "WorkflowGraph":
        """Build a graph from ORM rows (Workflow, WorkflowStep, WorkflowTransition)."""
        return cls(
            workflow_id=workflow.id,
            name=workflow.name,
            steps=[
                StepView(
                    id=s.id,
                    workflow_id=s.workflow_id,
                    name=s.name,
                    status=s.status,
                    order=s.order or 0,
                    is_initial=bool(s.is_initial),
                    is_final=bool(s.is_final),
                    properties=MappingProxyType(dict(s.properties or {})),
                )
                for s in steps
            ],
            transitions=[
                TransitionView(
                    id=t.id,
                    workflow_id=t.workflow_id,
                    from_step_id=t.from_step_id,
                    to_step_id=t.to_step_id,
                    name=t.name,
                    kind=t.kind or "global",
                    conditions=MappingProxyType(dict(t.conditions or {})),
                    required_roles=tuple(t.required_roles or ()),
                    validators=tuple(t.validators or ()),
                    post_functions=tuple(t.post_functions or ()),
                    screen_id=t.screen_id,
                    properties=MappingProxyType(dict(t.properties or {})),
                )
                for t in transitions
            ],
        )

    # ── Queries ──────────────────────────────────────────────────

    @property
    def steps(self) -> tuple[StepView, ...]:
        return self._steps

    @property
    def transitions(self) -> tuple[TransitionView, ...]:
        return self._transitions

    def step(self, step_id: int) -> StepView | None:
        return self._by_id.get(step_id)

    def step_for_status(self, status: str) -> StepView | None:
        return self._by_status.get(status)

    def transition(self, transition_id: int) -> TransitionView | None:
        return self._by_tid.get(transition_id)

    def outgoing(self, step_id: int) -> tuple[TransitionView, ...]:
        return self._adjacency.get(step_id, ())

    def find_transition(self, from_step_id: int, to_step_id: int) -> TransitionView | None:
        """First transition (lowest id) between two steps, if any."""
        for t in self.outgoing(from_step_id):
            if t.to_step_id == to_step_id:
                return t
        return None

    def initial_step(self) -> StepView | None:
        for step in self._steps:
            if step.is_initial:
                return step
        return None

    def to_status(self, transition: TransitionView) -> str:
        step = self._by_id.get(transition.to_step_id)
        return step.status if step else ""

    def describe(self, transition: TransitionView) -> dict:
        """Alternative-transition entry as rendered to clients."""
        return {
            "transition_id": transition.id,
            "name": transition.name,
            "to_status": self.to_status(transition),
        }

    def to_dict(self) -> dict:
        return {
            "workflow_id": self.workflow_id,
            "name": self.name,
            "steps": [s.to_dict() for s in self._steps],
            "transitions": [t.to_dict() for t in self._transitions],
        }

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        return (
            f"<WorkflowGraph {self.workflow_id}: "
            f"{len(self._steps)} steps, {len(self._transitions)} transitions>"
        )

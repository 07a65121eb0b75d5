"""Workflow definition models: workflows, steps and transitions."""

from datetime import datetime, timezone

from sqlalchemy import JSON

from issueflow.models import db


TRANSITION_KINDS = ("global", "conditional")


def _utcnow():
    return datetime.now(timezone.utc)


# ── Workflow ─────────────────────────────────────────────────────

class Workflow(db.Model):
    """Named state machine scoped to a project, optionally to one issue type.

    ``issue_type = NULL`` applies to every type in the project; such a
    workflow is picked by the resolver only when ``is_default`` is set.
    Workflows in use are retired with ``is_active = False`` instead of being
    deleted.
    """

    __tablename__ = "workflows"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=True, index=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    issue_type = db.Column(db.String(20), nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    steps = db.relationship(
        "WorkflowStep",
        backref="workflow",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )
    transitions = db.relationship(
        "WorkflowTransition",
        backref="workflow",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )

    __table_args__ = (
        db.Index("ix_workflows_project_type_active", "project_id", "issue_type", "is_active"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description or "",
            "issue_type": self.issue_type,
            "is_default": bool(self.is_default),
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Workflow {self.id}: {self.name} project={self.project_id} type={self.issue_type}>"


# ── Step ─────────────────────────────────────────────────────────

class WorkflowStep(db.Model):
    """A state in a workflow, exposed to issues as its ``status`` label."""

    __tablename__ = "workflow_steps"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer,
        db.ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(50), nullable=False)
    order = db.Column(db.Integer, default=0)
    is_initial = db.Column(db.Boolean, nullable=False, default=False)
    # Hint only: a final step may still have outgoing transitions (Reopen).
    is_final = db.Column(db.Boolean, nullable=False, default=False)
    properties = db.Column(JSON, default=dict)

    __table_args__ = (
        db.UniqueConstraint("workflow_id", "status", name="uq_workflow_steps_workflow_status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "name": self.name,
            "status": self.status,
            "order": self.order or 0,
            "is_initial": bool(self.is_initial),
            "is_final": bool(self.is_final),
            "properties": self.properties or {},
        }

    def __repr__(self):
        return f"<WorkflowStep {self.id}: {self.status}>"


# ── Transition ───────────────────────────────────────────────────

class WorkflowTransition(db.Model):
    """Directed, role-gated edge between two steps of the same workflow."""

    __tablename__ = "workflow_transitions"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer,
        db.ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_step_id = db.Column(db.Integer, db.ForeignKey("workflow_steps.id"), nullable=False)
    to_step_id = db.Column(db.Integer, db.ForeignKey("workflow_steps.id"), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    kind = db.Column(db.String(20), nullable=False, default="global")  # global | conditional
    conditions = db.Column(JSON, default=dict)
    required_roles = db.Column(JSON, default=list)
    screen_id = db.Column(db.Integer, nullable=True)
    validators = db.Column(JSON, default=list)
    post_functions = db.Column(JSON, default=list)
    properties = db.Column(JSON, default=dict)

    from_step = db.relationship("WorkflowStep", foreign_keys=[from_step_id])
    to_step = db.relationship("WorkflowStep", foreign_keys=[to_step_id])

    __table_args__ = (
        db.CheckConstraint("kind IN ('global', 'conditional')", name="ck_workflow_transitions_kind"),
        db.Index("ix_workflow_transitions_from", "workflow_id", "from_step_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "from_step_id": self.from_step_id,
            "to_step_id": self.to_step_id,
            "name": self.name,
            "kind": self.kind,
            "conditions": self.conditions or {},
            "required_roles": list(self.required_roles or []),
            "screen_id": self.screen_id,
            "validators": list(self.validators or []),
            "post_functions": list(self.post_functions or []),
            "properties": self.properties or {},
        }

    def __repr__(self):
        return f"<WorkflowTransition {self.id}: {self.name} {self.from_step_id}->{self.to_step_id}>"

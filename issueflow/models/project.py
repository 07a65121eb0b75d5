"""Project and Issue records consumed by the workflow engine.

Only the columns the engine reads are modelled here; the full issue CRUD
surface (comments, attachments, versions, ...) lives outside this package.
"""

from datetime import datetime, timezone

from issueflow.models import db


ISSUE_TYPES = ("Bug", "Task", "Story", "Epic", "Subtask")


def _utcnow():
    return datetime.now(timezone.utc)


class Project(db.Model):
    """Container that owns issues and their workflows."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=True, index=True)
    key = db.Column(db.String(20), nullable=False, unique=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.key}>"


class Issue(db.Model):
    """Work item whose status is governed by its project's workflow.

    ``status`` is the only link to workflow state; it is re-resolved against
    the workflow graph on every validation call.
    """

    __tablename__ = "issues"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(30), nullable=True, unique=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(20), nullable=False, default="Task")  # Bug | Task | Story | Epic | Subtask
    status = db.Column(db.String(50), nullable=False, default="Open")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    project = db.relationship("Project", backref=db.backref("issues", lazy="dynamic"))

    __table_args__ = (
        db.Index("ix_issues_project_type", "project_id", "type"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "project_id": self.project_id,
            "title": self.title,
            "type": self.type,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Issue {self.id}: {self.key or self.title} [{self.status}]>"

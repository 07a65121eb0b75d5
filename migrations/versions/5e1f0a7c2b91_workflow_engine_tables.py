"""workflow_engine_tables

Creates the workflow engine tables:
  - projects              — issue containers
  - issues                — work items (status governed by workflows)
  - workflows             — per-project, optionally per-issue-type state machines
  - workflow_steps        — states; status label unique within a workflow
  - workflow_transitions  — role-gated edges between steps

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() in a development environment.

Revision ID: 5e1f0a7c2b91
Revises:
Create Date: 2026-10-19 09:30:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5e1f0a7c2b91"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=True),
            sa.Column("key", sa.String(length=20), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("key"),
        )
        op.create_index("ix_projects_tenant_id", "projects", ["tenant_id"])

    if "issues" not in existing_tables:
        op.create_table(
            "issues",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=30), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False, server_default="Task"),
            sa.Column("status", sa.String(length=50), nullable=False, server_default="Open"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("key"),
        )
        op.create_index("ix_issues_project_id", "issues", ["project_id"])
        op.create_index("ix_issues_project_type", "issues", ["project_id", "type"])

    if "workflows" not in existing_tables:
        op.create_table(
            "workflows",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("issue_type", sa.String(length=20), nullable=True),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflows_tenant_id", "workflows", ["tenant_id"])
        op.create_index("ix_workflows_project_id", "workflows", ["project_id"])
        op.create_index(
            "ix_workflows_project_type_active", "workflows",
            ["project_id", "issue_type", "is_active"],
        )

    if "workflow_steps" not in existing_tables:
        op.create_table(
            "workflow_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("status", sa.String(length=50), nullable=False),
            sa.Column("order", sa.Integer(), nullable=True),
            sa.Column("is_initial", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_final", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("properties", sa.JSON(), nullable=True),
            sa.ForeignKeyConstraint(["workflow_id"], ["workflows.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_id", "status", name="uq_workflow_steps_workflow_status"),
        )
        op.create_index("ix_workflow_steps_workflow_id", "workflow_steps", ["workflow_id"])

    if "workflow_transitions" not in existing_tables:
        op.create_table(
            "workflow_transitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("workflow_id", sa.Integer(), nullable=False),
            sa.Column("from_step_id", sa.Integer(), nullable=False),
            sa.Column("to_step_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("kind", sa.String(length=20), nullable=False, server_default="global"),
            sa.Column("conditions", sa.JSON(), nullable=True),
            sa.Column("required_roles", sa.JSON(), nullable=True),
            sa.Column("screen_id", sa.Integer(), nullable=True),
            sa.Column("validators", sa.JSON(), nullable=True),
            sa.Column("post_functions", sa.JSON(), nullable=True),
            sa.Column("properties", sa.JSON(), nullable=True),
            sa.CheckConstraint("kind IN ('global', 'conditional')", name="ck_workflow_transitions_kind"),
            sa.ForeignKeyConstraint(["workflow_id"], ["workflows.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["from_step_id"], ["workflow_steps.id"]),
            sa.ForeignKeyConstraint(["to_step_id"], ["workflow_steps.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_transitions_workflow_id", "workflow_transitions", ["workflow_id"])
        op.create_index(
            "ix_workflow_transitions_from", "workflow_transitions",
            ["workflow_id", "from_step_id"],
        )


def downgrade():
    op.drop_table("workflow_transitions")
    op.drop_table("workflow_steps")
    op.drop_table("workflows")
    op.drop_table("issues")
    op.drop_table("projects")

"""Baseline schema.

This revision captures the SQLAlchemy models in `spec_companion/database.py`.
Databases created by `create_tables()` before Alembic should be stamped to it.
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Projects
    op.create_table(
        "projects",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("codebase_path", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    # Specs
    op.create_table(
        "specs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("filename", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("parsed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_specs_project_id", "specs", ["project_id"])

    # Requirements
    op.create_table(
        "requirements",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("spec_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("section", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("req_type", sa.String(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["spec_id"], ["specs.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_requirements_spec_id", "requirements", ["spec_id"])

    # Generated tests
    op.create_table(
        "generated_tests",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("requirement_id", sa.String(), nullable=False),
        sa.Column("framework", sa.String(), nullable=False),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("generation_mode", sa.String(), nullable=False),
        sa.Column("file_path", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["requirement_id"], ["requirements.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_generated_tests_requirement_id", "generated_tests", ["requirement_id"])

    # Test results
    op.create_table(
        "test_results",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("generated_test_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("execution_time_ms", sa.Integer(), nullable=True),
        sa.Column("stdout", sa.Text(), nullable=True),
        sa.Column("stderr", sa.Text(), nullable=True),
        sa.Column("executed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["generated_test_id"], ["generated_tests.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_test_results_generated_test_id", "test_results", ["generated_test_id"])

    # Alignment reports
    op.create_table(
        "alignment_reports",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("coverage_percent", sa.Float(), nullable=False),
        sa.Column("total_requirements", sa.Integer(), nullable=False),
        sa.Column("covered_requirements", sa.Integer(), nullable=False),
        sa.Column("generated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_alignment_reports_project_id", "alignment_reports", ["project_id"])

    # Mismatches (requirement_id is a copied value, not a foreign key)
    op.create_table(
        "mismatches",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("report_id", sa.String(), nullable=False),
        sa.Column("requirement_id", sa.String(), nullable=False),
        sa.Column("spec_section", sa.String(), nullable=False),
        sa.Column("code_element", sa.String(), nullable=True),
        sa.Column("mismatch_type", sa.String(), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["report_id"], ["alignment_reports.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_mismatches_report_id", "mismatches", ["report_id"])


def downgrade() -> None:
    op.drop_table("mismatches")
    op.drop_table("alignment_reports")
    op.drop_table("test_results")
    op.drop_table("generated_tests")
    op.drop_table("requirements")
    op.drop_table("specs")
    op.drop_table("projects")

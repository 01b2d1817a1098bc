"""add homework and activities

Revision ID: 20260315_0002
Revises: 20260301_0001
Create Date: 2026-03-15 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20260315_0002"
down_revision = "20260301_0001"
branch_labels = None
depends_on = None


submission_status_enum = sa.Enum("submitted", "graded", name="submission_status")
activity_status_enum = sa.Enum("active", "archived", name="activity_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _index(table: str, *columns: str) -> None:
    for column in columns:
        op.create_index(f"ix_{table}_{column}", table, [column])


def upgrade() -> None:
    op.create_table(
        "homework",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=150), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("class_id", sa.Integer(), nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("establishment_id", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    _index("homework", "class_id", "created_by_id", "establishment_id")

    op.create_table(
        "homework_submissions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("homework_id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", submission_status_enum, nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("graded_by_id", sa.Integer(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("graded_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("homework_id", "student_id", name="uq_homework_submissions_homework_student"),
    )
    _index("homework_submissions", "homework_id", "student_id")

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=50), nullable=True),
        sa.Column("location", sa.String(length=150), nullable=True),
        sa.Column("starts_on", sa.Date(), nullable=True),
        sa.Column("ends_on", sa.Date(), nullable=True),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column("responsible_user_id", sa.Integer(), nullable=False),
        sa.Column("status", activity_status_enum, nullable=False),
        sa.Column("academic_year_id", sa.Integer(), nullable=True),
        sa.Column("establishment_id", sa.Integer(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    _index("activities", "responsible_user_id", "establishment_id")

    op.create_table(
        "activity_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("activity_id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("activity_id", "student_id", name="uq_activity_participants_activity_student"),
    )
    _index("activity_participants", "activity_id", "student_id")


def downgrade() -> None:
    for table in ("activity_participants", "activities", "homework_submissions", "homework"):
        op.drop_table(table)
    bind = op.get_bind()
    activity_status_enum.drop(bind, checkfirst=True)
    submission_status_enum.drop(bind, checkfirst=True)

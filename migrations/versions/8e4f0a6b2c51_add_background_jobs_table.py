"""add background jobs table

Revision ID: 8e4f0a6b2c51
Revises: 3b7d1c2e9a10
Create Date: 2026-10-19 09:31:05.540917

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8e4f0a6b2c51"
down_revision: Union[str, Sequence[str], None] = "3b7d1c2e9a10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "background_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("type", sa.String(50), nullable=False, comment="Job type identifier"),
        sa.Column(
            "user_id", sa.Uuid(), nullable=False, comment="Owning user, rate limit scope"
        ),
        sa.Column(
            "parent_id",
            sa.Uuid(),
            nullable=True,
            comment="Job whose fan-out created this job",
        ),
        sa.Column(
            "payload", sa.JSON, nullable=False, comment="Job-specific parameters"
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="pending",
            comment="Job status: pending|processing|completed|failed",
        ),
        sa.Column(
            "priority",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Lower is scheduled sooner",
        ),
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Number of attempts made",
        ),
        sa.Column(
            "max_attempts",
            sa.Integer,
            nullable=False,
            server_default="3",
            comment="Attempts before failing",
        ),
        sa.Column(
            "next_retry_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Not claimable before this time",
        ),
        sa.Column("result", sa.JSON, nullable=True, comment="Job result data"),
        sa.Column("error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="background_jobs_status_check",
        ),
        sa.CheckConstraint(
            "attempts >= 0 AND attempts <= max_attempts",
            name="background_jobs_attempts_check",
        ),
    )

    # Claim query: pending jobs by priority then age
    op.create_index(
        "ix_background_jobs_claim",
        "background_jobs",
        ["status", "priority", "created_at"],
    )
    # Rate limit window count
    op.create_index(
        "ix_background_jobs_user_type_created",
        "background_jobs",
        ["user_id", "type", "created_at"],
    )
    op.create_index("ix_background_jobs_parent_id", "background_jobs", ["parent_id"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_background_jobs_parent_id", table_name="background_jobs")
    op.drop_index("ix_background_jobs_user_type_created", table_name="background_jobs")
    op.drop_index("ix_background_jobs_claim", table_name="background_jobs")
    op.drop_table("background_jobs")

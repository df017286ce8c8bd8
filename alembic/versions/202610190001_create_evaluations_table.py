"""Create evaluations table

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "evaluations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("challenge_id", sa.String(length=64), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("category_scores", sa.JSON(), nullable=False),
        sa.Column("overall_feedback", sa.Text(), nullable=True),
        sa.Column("strengths", sa.JSON(), nullable=True),
        sa.Column("strength_analysis", sa.JSON(), nullable=True),
        sa.Column("areas_for_improvement", sa.JSON(), nullable=True),
        sa.Column("improvement_plans", sa.JSON(), nullable=True),
        sa.Column("next_steps", sa.Text(), nullable=True),
        sa.Column("recommended_resources", sa.JSON(), nullable=True),
        sa.Column("recommended_challenges", sa.JSON(), nullable=True),
        sa.Column("user_context", sa.JSON(), nullable=True),
        sa.Column("challenge_context", sa.JSON(), nullable=True),
        sa.Column("growth_metrics", sa.JSON(), nullable=True),
        sa.Column("relevant_categories", sa.JSON(), nullable=True),
        sa.Column("response_id", sa.String(length=128), nullable=True),
        sa.Column("thread_id", sa.String(length=128), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    # Finder paths: by challenge (optionally per user) and per-user listings
    op.create_index(
        "ix_evaluations_challenge_user", "evaluations", ["challenge_id", "user_id"]
    )
    op.create_index("ix_evaluations_user_created", "evaluations", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_evaluations_user_created", table_name="evaluations")
    op.drop_index("ix_evaluations_challenge_user", table_name="evaluations")
    op.drop_table("evaluations")

"""add campaign projects and project history

Revision ID: 0002_add_campaign_projects
Revises: 0001_add_campaigns
Create Date: 2026-10-05 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_add_campaign_projects"
down_revision = "0001_add_campaigns"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "campaign_projects",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "campaign_id",
            sa.Integer,
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("parent_id", sa.Integer, sa.ForeignKey("campaign_projects.id")),
        sa.Column(
            "character_id",
            sa.Integer,
            sa.ForeignKey("characters.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("goal_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("current_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("display_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_completed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_by_user_id", sa.Integer, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("goal_points >= 0", name="chk_goal_points_non_negative"),
        sa.CheckConstraint("current_points >= 0", name="chk_current_points_non_negative"),
        sa.CheckConstraint(
            "current_points <= goal_points", name="chk_progress_not_exceed_goal"
        ),
    )
    op.create_index(
        "idx_campaign_active",
        "campaign_projects",
        ["campaign_id", "is_deleted", "is_completed"],
    )
    op.create_index(
        "idx_campaign_hierarchy",
        "campaign_projects",
        ["campaign_id", "parent_id", "display_order"],
    )
    op.create_index(
        "idx_character_projects",
        "campaign_projects",
        ["character_id", "is_deleted", "is_completed"],
    )

    op.create_table(
        "campaign_project_history",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "project_id",
            sa.Integer,
            sa.ForeignKey("campaign_projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("previous_points", sa.Integer),
        sa.Column("new_points", sa.Integer),
        sa.Column("notes", sa.Text),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "action IN ('created', 'updated_progress', 'updated_goal', 'completed', 'deleted')",
            name="chk_history_action",
        ),
    )
    op.create_index(
        "ix_campaign_project_history_project_id", "campaign_project_history", ["project_id"]
    )
    op.create_index(
        "ix_campaign_project_history_user_id", "campaign_project_history", ["user_id"]
    )
    op.create_index(
        "ix_campaign_project_history_created_at", "campaign_project_history", ["created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_campaign_project_history_created_at", table_name="campaign_project_history")
    op.drop_index("ix_campaign_project_history_user_id", table_name="campaign_project_history")
    op.drop_index("ix_campaign_project_history_project_id", table_name="campaign_project_history")
    op.drop_table("campaign_project_history")
    op.drop_index("idx_character_projects", table_name="campaign_projects")
    op.drop_index("idx_campaign_hierarchy", table_name="campaign_projects")
    op.drop_index("idx_campaign_active", table_name="campaign_projects")
    op.drop_table("campaign_projects")

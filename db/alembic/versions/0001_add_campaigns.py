"""add campaigns, members and characters

Revision ID: 0001_add_campaigns
Revises:
Create Date: 2026-10-05 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_add_campaigns"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "campaigns",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "campaign_members",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "campaign_id",
            sa.Integer,
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="player"),
        sa.UniqueConstraint("campaign_id", "user_id", name="uq_campaign_member"),
        sa.CheckConstraint("role IN ('gm', 'player')", name="chk_member_role"),
    )
    op.create_index("ix_campaign_members_campaign_id", "campaign_members", ["campaign_id"])
    op.create_index("ix_campaign_members_user_id", "campaign_members", ["user_id"])

    op.create_table(
        "characters",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("campaign_id", sa.Integer, sa.ForeignKey("campaigns.id")),
        sa.Column("owner_user_id", sa.Integer, nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
    )
    op.create_index("ix_characters_owner_user_id", "characters", ["owner_user_id"])


def downgrade() -> None:
    op.drop_index("ix_characters_owner_user_id", table_name="characters")
    op.drop_table("characters")
    op.drop_index("ix_campaign_members_user_id", table_name="campaign_members")
    op.drop_index("ix_campaign_members_campaign_id", table_name="campaign_members")
    op.drop_table("campaign_members")
    op.drop_table("campaigns")

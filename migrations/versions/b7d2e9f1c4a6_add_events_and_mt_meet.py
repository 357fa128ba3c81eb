"""Add API registration events and MT Meet tables.

Revision ID: b7d2e9f1c4a6
Revises: a1f0c2d3e4b5
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "b7d2e9f1c4a6"
down_revision: Union[str, Sequence[str], None] = "a1f0c2d3e4b5"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "api_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("event_time", sa.String(5), nullable=False),
        sa.Column("venue", sa.String(255), nullable=False),
        sa.Column("brand", sa.String(32), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("current_participants", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(16), nullable=False, server_default="upcoming"),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_api_events_date", "api_events", ["event_date"])
    op.create_index("idx_api_events_status", "api_events", ["status"])

    op.create_table(
        "api_participants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("phone", sa.String(16), nullable=False),
        sa.Column("dealer_code", sa.String(32), nullable=False),
        sa.Column("designation", sa.String(128), nullable=True),
        sa.Column("brand", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("registered_by_user_id", sa.Integer(), nullable=True),
        sa.Column("registered_at", sa.DateTime(), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("attended_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["event_id"], ["api_events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["registered_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("event_id", "email", name="uq_api_participants_event_email"),
    )
    op.create_index("idx_api_participants_status", "api_participants", ["status"])

    op.create_table(
        "mt_meets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("meet_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(5), nullable=False),
        sa.Column("end_time", sa.String(5), nullable=False),
        sa.Column("venue", sa.String(255), nullable=False),
        sa.Column("city", sa.String(128), nullable=False),
        sa.Column("brand", sa.String(32), nullable=False),
        sa.Column("agenda", sa.JSON(), nullable=True),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("current_participants", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(16), nullable=False, server_default="scheduled"),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_mt_meets_date", "mt_meets", ["meet_date"])
    op.create_index("idx_mt_meets_city", "mt_meets", ["city"])

    op.create_table(
        "mt_participants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("meet_id", sa.Integer(), nullable=False),
        sa.Column("technician_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("phone", sa.String(16), nullable=False),
        sa.Column("dealer_code", sa.String(32), nullable=False),
        sa.Column("dealer_name", sa.String(255), nullable=False),
        sa.Column("designation", sa.String(128), nullable=True),
        sa.Column("years_of_experience", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("specialization", sa.String(128), nullable=True),
        sa.Column("brand", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="registered"),
        sa.Column("registered_at", sa.DateTime(), nullable=False),
        sa.Column("feedback_submitted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.ForeignKeyConstraint(["meet_id"], ["mt_meets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["technician_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("meet_id", "email", name="uq_mt_participants_meet_email"),
    )
    op.create_index("idx_mt_participants_meet", "mt_participants", ["meet_id"])

    op.create_table(
        "mt_feedback",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("meet_id", sa.Integer(), nullable=False),
        sa.Column("participant_id", sa.Integer(), nullable=False),
        sa.Column("overall_rating", sa.Integer(), nullable=False),
        sa.Column("content_quality", sa.Integer(), nullable=False),
        sa.Column("venue_rating", sa.Integer(), nullable=False),
        sa.Column("organization_rating", sa.Integer(), nullable=False),
        sa.Column("speaker_rating", sa.Integer(), nullable=False),
        sa.Column("key_takeaways", sa.Text(), nullable=True),
        sa.Column("suggestions", sa.Text(), nullable=True),
        sa.Column("would_recommend", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("submitted_by_user_id", sa.Integer(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["meet_id"], ["mt_meets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["participant_id"], ["mt_participants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["submitted_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("participant_id", name="uq_mt_feedback_participant"),
    )
    op.create_index("idx_mt_feedback_meet", "mt_feedback", ["meet_id"])


def downgrade() -> None:
    op.drop_index("idx_mt_feedback_meet", table_name="mt_feedback")
    op.drop_table("mt_feedback")
    op.drop_index("idx_mt_participants_meet", table_name="mt_participants")
    op.drop_table("mt_participants")
    op.drop_index("idx_mt_meets_city", table_name="mt_meets")
    op.drop_index("idx_mt_meets_date", table_name="mt_meets")
    op.drop_table("mt_meets")
    op.drop_index("idx_api_participants_status", table_name="api_participants")
    op.drop_table("api_participants")
    op.drop_index("idx_api_events_status", table_name="api_events")
    op.drop_index("idx_api_events_date", table_name="api_events")
    op.drop_table("api_events")

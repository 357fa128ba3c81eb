"""Initial PCC portal schema.

Revision ID: a1f0c2d3e4b5
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1f0c2d3e4b5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "dealers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("contact_person", sa.String(255), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("employee_id", sa.String(64), nullable=True),
        sa.Column("role", sa.String(64), nullable=False),
        sa.Column("dealer_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["dealer_id"], ["dealers.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("idx_users_role", "users", ["role"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("actor_role", sa.String(64), nullable=True),
        sa.Column("module", sa.String(64), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("notes", sa.String(1024), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_audit_module", "audit_events", ["module"])
    op.create_index("idx_audit_action", "audit_events", ["action"])
    op.create_index("idx_audit_entity", "audit_events", ["entity_type", "entity_id"])
    op.create_index("idx_audit_created_at", "audit_events", ["created_at"])

    op.create_table(
        "config_records",
        sa.Column("key", sa.String(128), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "pcc_submissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("reference_number", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="submitted"),
        sa.Column("dealer_id", sa.Integer(), nullable=True),
        sa.Column("dealer_code", sa.String(32), nullable=True),
        sa.Column("dealer_name", sa.String(255), nullable=True),
        sa.Column("contact_person", sa.String(255), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("brand", sa.String(32), nullable=False),
        sa.Column("model", sa.String(128), nullable=False),
        sa.Column("vin", sa.String(17), nullable=False),
        sa.Column("registration_no", sa.String(16), nullable=False),
        sa.Column("production_date", sa.Date(), nullable=False),
        sa.Column("condition_type", sa.String(64), nullable=False),
        sa.Column("warranty_period", sa.String(16), nullable=False, server_default="any"),
        sa.Column("number_of_claims", sa.Integer(), nullable=True),
        sa.Column("number_of_repairs", sa.Integer(), nullable=True),
        sa.Column("fault_code", sa.String(32), nullable=False),
        sa.Column("countermeasure_date", sa.Date(), nullable=True),
        sa.Column("sale_date", sa.Date(), nullable=True),
        sa.Column("tpi_result", sa.Integer(), nullable=True),
        sa.Column("repair_success", sa.Integer(), nullable=True),
        sa.Column("topic", sa.String(32), nullable=False, server_default="dealer_pcc"),
        sa.Column("subtopic", sa.String(32), nullable=False),
        sa.Column("escalated_to_brand", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("escalation_notes", sa.Text(), nullable=True),
        sa.Column("engine_code", sa.String(32), nullable=False),
        sa.Column("gearbox_code", sa.String(32), nullable=False),
        sa.Column("mileage", sa.Integer(), nullable=False),
        sa.Column("repair_date", sa.Date(), nullable=False),
        sa.Column("diss_ticket_no", sa.String(32), nullable=True),
        sa.Column("warranty_claim_no", sa.String(64), nullable=True),
        sa.Column("part_description", sa.String(512), nullable=False),
        sa.Column("damage_part_number", sa.String(64), nullable=False),
        sa.Column("repeated_repair", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("breakdown", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("attachments", sa.JSON(), nullable=True),
        sa.Column("declaration_accepted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("last_updated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["dealer_id"], ["dealers.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["last_updated_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("reference_number"),
    )
    op.create_index("idx_pcc_status", "pcc_submissions", ["status"])
    op.create_index("idx_pcc_dealer", "pcc_submissions", ["dealer_id"])
    op.create_index("idx_pcc_created_at", "pcc_submissions", ["created_at"])

    op.create_table(
        "pcc_status_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("submission_id", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("changed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("changed_at", sa.DateTime(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["submission_id"], ["pcc_submissions.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["changed_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("submission_id", "sequence", name="uq_pcc_history_submission_sequence"),
    )

    op.create_table(
        "pcc_reference_sequences",
        sa.Column("year", sa.Integer(), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False),
    )

    op.create_table(
        "access_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("dealer_code", sa.String(32), nullable=False),
        sa.Column("dealer_name", sa.String(255), nullable=False),
        sa.Column("city", sa.String(128), nullable=False),
        sa.Column("contact_person", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("phone", sa.String(16), nullable=False),
        sa.Column("requested_role", sa.String(64), nullable=False),
        sa.Column("employee_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("processed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["processed_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_access_requests_status", "access_requests", ["status"])
    op.create_index("idx_access_requests_email", "access_requests", ["email"])


def downgrade() -> None:
    op.drop_index("idx_access_requests_email", table_name="access_requests")
    op.drop_index("idx_access_requests_status", table_name="access_requests")
    op.drop_table("access_requests")
    op.drop_table("pcc_reference_sequences")
    op.drop_table("pcc_status_history")
    op.drop_index("idx_pcc_created_at", table_name="pcc_submissions")
    op.drop_index("idx_pcc_dealer", table_name="pcc_submissions")
    op.drop_index("idx_pcc_status", table_name="pcc_submissions")
    op.drop_table("pcc_submissions")
    op.drop_table("config_records")
    op.drop_index("idx_audit_created_at", table_name="audit_events")
    op.drop_index("idx_audit_entity", table_name="audit_events")
    op.drop_index("idx_audit_action", table_name="audit_events")
    op.drop_index("idx_audit_module", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("idx_users_role", table_name="users")
    op.drop_table("users")
    op.drop_table("dealers")

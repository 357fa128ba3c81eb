from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.pccportal.models import Base


class PCCSubmission(Base):
    __tablename__ = "pcc_submissions"
    __table_args__ = (
        Index("idx_pcc_status", "status"),
        Index("idx_pcc_dealer", "dealer_id"),
        Index("idx_pcc_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reference_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # PCC-IN-2024-1001
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="submitted")

    # Dealer snapshot at submission time
    dealer_id: Mapped[int | None] = mapped_column(ForeignKey("dealers.id", ondelete="SET NULL"), nullable=True)
    dealer_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    dealer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_person: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # Vehicle
    brand: Mapped[str] = mapped_column(String(32), nullable=False)  # volkswagen, skoda
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    vin: Mapped[str] = mapped_column(String(17), nullable=False)
    registration_no: Mapped[str] = mapped_column(String(16), nullable=False)
    production_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Condition classification
    condition_type: Mapped[str] = mapped_column(String(64), nullable=False)
    warranty_period: Mapped[str] = mapped_column(String(16), nullable=False, default="any")  # lte_2_years, gt_2_years, any
    number_of_claims: Mapped[int | None] = mapped_column(Integer, nullable=True)
    number_of_repairs: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fault_code: Mapped[str] = mapped_column(String(32), nullable=False)
    countermeasure_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    sale_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    tpi_result: Mapped[int | None] = mapped_column(Integer, nullable=True)
    repair_success: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Details
    topic: Mapped[str] = mapped_column(String(32), nullable=False, default="dealer_pcc")  # dealer_pcc, long_term_pcc
    subtopic: Mapped[str] = mapped_column(String(32), nullable=False)
    escalated_to_brand: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Engine & technical
    engine_code: Mapped[str] = mapped_column(String(32), nullable=False)
    gearbox_code: Mapped[str] = mapped_column(String(32), nullable=False)
    mileage: Mapped[int] = mapped_column(Integer, nullable=False)
    repair_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Complaint & breakdown
    diss_ticket_no: Mapped[str | None] = mapped_column(String(32), nullable=True)
    warranty_claim_no: Mapped[str | None] = mapped_column(String(64), nullable=True)
    part_description: Mapped[str] = mapped_column(String(512), nullable=False)
    damage_part_number: Mapped[str] = mapped_column(String(64), nullable=False)
    repeated_repair: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    breakdown: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Attachment metadata only: [{"name", "size", "type", "uploaded_at"}]
    attachments: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    declaration_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Optimistic lock: concurrent status changes on one submission must not interleave.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status_history: Mapped[list["PCCStatusHistory"]] = relationship(
        "PCCStatusHistory",
        back_populates="submission",
        order_by="PCCStatusHistory.sequence",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class PCCStatusHistory(Base):
    """Append-only status trail; one row per transition."""

    __tablename__ = "pcc_status_history"
    __table_args__ = (
        UniqueConstraint("submission_id", "sequence", name="uq_pcc_history_submission_sequence"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    submission_id: Mapped[int] = mapped_column(ForeignKey("pcc_submissions.id", ondelete="RESTRICT"), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    submission: Mapped[PCCSubmission] = relationship("PCCSubmission", back_populates="status_history")


class PCCReferenceSequence(Base):
    """Per-year counter behind PCC-IN-<year>-<NNNN> reference numbers."""

    __tablename__ = "pcc_reference_sequences"

    year: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False)

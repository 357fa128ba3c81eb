from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.pccportal.models import Base


class Meet(Base):
    __tablename__ = "mt_meets"
    __table_args__ = (
        Index("idx_mt_meets_date", "meet_date"),
        Index("idx_mt_meets_city", "city"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    meet_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    venue: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(128), nullable=False)
    brand: Mapped[str] = mapped_column(String(32), nullable=False)  # volkswagen, skoda, both

    # [{"time", "title", "speaker", "duration"}], duration in minutes
    agenda: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    current_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled")

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class MeetParticipant(Base):
    __tablename__ = "mt_participants"
    __table_args__ = (
        UniqueConstraint("meet_id", "email", name="uq_mt_participants_meet_email"),
        Index("idx_mt_participants_meet", "meet_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    meet_id: Mapped[int] = mapped_column(ForeignKey("mt_meets.id", ondelete="CASCADE"), nullable=False)
    # Portal account of the technician when they registered themselves
    technician_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[str] = mapped_column(String(16), nullable=False)
    dealer_code: Mapped[str] = mapped_column(String(32), nullable=False)
    dealer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    designation: Mapped[str | None] = mapped_column(String(128), nullable=True)
    years_of_experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    specialization: Mapped[str | None] = mapped_column(String(128), nullable=True)
    brand: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="registered")
    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    feedback_submitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    meet: Mapped[Meet] = relationship("Meet")


class MeetFeedback(Base):
    """One feedback form per participant; ratings are 1-5."""

    __tablename__ = "mt_feedback"
    __table_args__ = (
        UniqueConstraint("participant_id", name="uq_mt_feedback_participant"),
        Index("idx_mt_feedback_meet", "meet_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    meet_id: Mapped[int] = mapped_column(ForeignKey("mt_meets.id", ondelete="CASCADE"), nullable=False)
    participant_id: Mapped[int] = mapped_column(ForeignKey("mt_participants.id", ondelete="CASCADE"), nullable=False)
    overall_rating: Mapped[int] = mapped_column(Integer, nullable=False)
    content_quality: Mapped[int] = mapped_column(Integer, nullable=False)
    venue_rating: Mapped[int] = mapped_column(Integer, nullable=False)
    organization_rating: Mapped[int] = mapped_column(Integer, nullable=False)
    speaker_rating: Mapped[int] = mapped_column(Integer, nullable=False)
    key_takeaways: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggestions: Mapped[str | None] = mapped_column(Text, nullable=True)
    would_recommend: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    submitted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.pccportal.models import Base


class Event(Base):
    __tablename__ = "api_events"
    __table_args__ = (
        Index("idx_api_events_date", "event_date"),
        Index("idx_api_events_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)  # training, meeting, conference, workshop
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    event_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM
    venue: Mapped[str] = mapped_column(String(255), nullable=False)
    brand: Mapped[str] = mapped_column(String(32), nullable=False)  # volkswagen, skoda, both
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    current_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="upcoming")

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    participants: Mapped[list["Participant"]] = relationship(
        "Participant",
        back_populates="event",
        order_by="Participant.registered_at",
        lazy="selectin",
    )


class Participant(Base):
    __tablename__ = "api_participants"
    __table_args__ = (
        UniqueConstraint("event_id", "email", name="uq_api_participants_event_email"),
        Index("idx_api_participants_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("api_events.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[str] = mapped_column(String(16), nullable=False)
    dealer_code: Mapped[str] = mapped_column(String(32), nullable=False)
    designation: Mapped[str | None] = mapped_column(String(128), nullable=True)
    brand: Mapped[str] = mapped_column(String(32), nullable=False)  # volkswagen, skoda
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    registered_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    attended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    event: Mapped[Event] = relationship("Event", back_populates="participants")

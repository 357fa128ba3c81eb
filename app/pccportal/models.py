from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Dealer(Base):
    __tablename__ = "dealers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # e.g. "DLR001"
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    contact_person: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list["User"]] = relationship(back_populates="dealer", lazy="selectin")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (Index("idx_users_role", "role"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    employee_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str] = mapped_column(String(64), nullable=False)  # one of constants.ALL_ROLES
    dealer_id: Mapped[int | None] = mapped_column(ForeignKey("dealers.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    dealer: Mapped[Dealer | None] = relationship(back_populates="users", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "employee_id": self.employee_id,
            "role": self.role,
            "dealer_id": self.dealer_id,
            "dealer_name": self.dealer.name if self.dealer else None,
            "is_active": self.is_active,
        }


class AuditEvent(Base):
    """
    Append-only audit trail event.
    One row per state-changing call; rows are never updated or deleted.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_module", "module"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(64), nullable=True)

    module: Mapped[str] = mapped_column(String(64), nullable=False)  # module key, "auth" or "system"
    action: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "status_change"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "pcc_submission"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)  # string for flexibility

    notes: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    details_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON object
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


class ConfigRecord(Base):
    """Key/value JSON config (feature flag config, etc.)."""

    __tablename__ = "config_records"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.pccportal.modules.pcc.models import (  # noqa: E402,F401
    PCCReferenceSequence,
    PCCStatusHistory,
    PCCSubmission,
)
from app.pccportal.modules.access_requests.models import AccessRequest  # noqa: E402,F401

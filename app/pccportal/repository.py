"""
Persistence adapter.

Each entity collection is addressed by a string key ("pcc_submissions",
"audit_logs", ...) and exposes the same small CRUD surface regardless of the
underlying table. Services keep using the SQLAlchemy session for anything
richer (ordering, row locks); the adapter is the common denominator.
"""
from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.sql.elements import ColumnElement

T = TypeVar("T")


class StorageError(RuntimeError):
    pass


@contextmanager
def _guard(what: str) -> Iterator[None]:
    try:
        yield
    except StaleDataError:
        # optimistic-lock conflicts are handled by the caller
        raise
    except SQLAlchemyError as e:
        raise StorageError(f"{what} failed: {e}") from e


class Repository(Generic[T]):
    def __init__(self, s: Session, model: type[T], *, key: str, append_only: bool = False) -> None:
        self.s = s
        self.model = model
        self.key = key
        self.append_only = append_only

    def _pk(self):
        return self.model.__mapper__.primary_key[0]  # type: ignore[attr-defined]

    def get_all(self) -> list[T]:
        with _guard(f"{self.key}.get_all"):
            return list(self.s.scalars(select(self.model).order_by(self._pk())))

    def get_by_id(self, id: Any) -> T | None:
        with _guard(f"{self.key}.get_by_id"):
            return self.s.get(self.model, id)

    def create(self, item: T) -> T:
        with _guard(f"{self.key}.create"):
            self.s.add(item)
            self.s.flush()
        return item

    def update(self, id: Any, patch: dict[str, Any]) -> T | None:
        if self.append_only:
            raise StorageError(f"{self.key} is append-only")
        obj = self.get_by_id(id)
        if obj is None:
            return None
        for field, value in patch.items():
            if not hasattr(obj, field):
                raise StorageError(f"{self.key} has no field {field!r}")
            setattr(obj, field, value)
        with _guard(f"{self.key}.update"):
            self.s.flush()
        return obj

    def delete(self, id: Any) -> bool:
        if self.append_only:
            raise StorageError(f"{self.key} is append-only")
        obj = self.get_by_id(id)
        if obj is None:
            return False
        with _guard(f"{self.key}.delete"):
            self.s.delete(obj)
            self.s.flush()
        return True

    def query(self, predicate: Callable[[T], bool] | ColumnElement) -> list[T]:
        """Filter by a SQL criterion, or by a Python callable over every row."""
        if isinstance(predicate, ColumnElement):
            with _guard(f"{self.key}.query"):
                return list(self.s.scalars(select(self.model).where(predicate).order_by(self._pk())))
        return [item for item in self.get_all() if predicate(item)]


def _collections() -> dict[str, tuple[type, bool]]:
    from app.pccportal.models import AuditEvent, Dealer, User
    from app.pccportal.modules.access_requests.models import AccessRequest
    from app.pccportal.modules.api_registration.models import Event, Participant
    from app.pccportal.modules.mt_meet.models import Meet, MeetFeedback, MeetParticipant
    from app.pccportal.modules.pcc.models import PCCSubmission

    return {
        "users": (User, False),
        "dealers": (Dealer, False),
        "pcc_submissions": (PCCSubmission, False),
        "audit_logs": (AuditEvent, True),
        "access_requests": (AccessRequest, False),
        "api_events": (Event, False),
        "api_participants": (Participant, False),
        "mt_meets": (Meet, False),
        "mt_participants": (MeetParticipant, False),
        "mt_feedback": (MeetFeedback, False),
    }


def repository_for(s: Session, key: str) -> Repository:
    try:
        model, append_only = _collections()[key]
    except KeyError:
        raise StorageError(f"Unknown collection: {key!r}") from None
    return Repository(s, model, key=key, append_only=append_only)


class ConfigStore:
    """JSON key/value store backed by config_records."""

    def __init__(self, s: Session) -> None:
        self.s = s

    def get(self, key: str) -> Any | None:
        from app.pccportal.models import ConfigRecord

        with _guard(f"config.get({key})"):
            rec = self.s.get(ConfigRecord, key)
        if rec is None:
            return None
        return json.loads(rec.value_json)

    def set(self, key: str, value: Any) -> None:
        from app.pccportal.models import ConfigRecord

        payload = json.dumps(value, sort_keys=True)
        with _guard(f"config.set({key})"):
            rec = self.s.get(ConfigRecord, key)
            if rec is None:
                self.s.add(ConfigRecord(key=key, value_json=payload, updated_at=datetime.utcnow()))
            else:
                rec.value_json = payload
                rec.updated_at = datetime.utcnow()
            self.s.flush()

    def remove(self, key: str) -> None:
        from app.pccportal.models import ConfigRecord

        with _guard(f"config.remove({key})"):
            rec = self.s.get(ConfigRecord, key)
            if rec is not None:
                self.s.delete(rec)
                self.s.flush()

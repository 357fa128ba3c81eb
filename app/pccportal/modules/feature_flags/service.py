from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from flask import current_app
from sqlalchemy import event
from sqlalchemy.orm import Session

from app.pccportal.audit import record_event
from app.pccportal.constants import ALWAYS_ON_MODULES, MODULE_KEYS, SYSTEM_ACTOR
from app.pccportal.models import User
from app.pccportal.repository import ConfigStore

logger = logging.getLogger(__name__)

FLAGS_CONFIG_KEY = "feature_flags"

# Bump when DEFAULT_FLAGS changes; stored configs below this version get migrated on load.
FLAGS_SCHEMA_VERSION = 1

DEFAULT_FLAGS: dict[str, bool] = {key: key in ALWAYS_ON_MODULES for key in MODULE_KEYS}

DEFAULT_REASONS: dict[str, str] = {"dealer_pcc": "Default module"}

MODULE_INFO: dict[str, dict[str, str]] = {
    "dealer_pcc": {
        "name": "Dealer PCC",
        "description": "Product Concern Capture submission and tracking system",
    },
    "api_registration": {
        "name": "API Registration",
        "description": "Event-based participant registration management",
    },
    "mt_meet": {
        "name": "MT Meet",
        "description": "Master Technician meeting and event management",
    },
    "workshop_survey": {
        "name": "Workshop System Survey",
        "description": "ElsaPro, ODIS, and tools feedback collection",
    },
    "warranty_survey": {
        "name": "Warranty Survey",
        "description": "Warranty process feedback and improvement",
    },
    "technical_awareness_survey": {
        "name": "Technical Awareness Survey",
        "description": "Technical knowledge assessment surveys",
    },
}

FlagMap = dict[str, dict[str, Any]]
FlagChangeCallback = Callable[[FlagMap], None]

_PENDING_KEY = "feature_flag_notifications"


class ProtectedModuleError(ValueError):
    pass


def _now() -> str:
    return datetime.utcnow().isoformat()


def make_flag(key: str, enabled: bool, modified_by: str, modified_at: str, reason: str | None = None) -> dict[str, Any]:
    flag: dict[str, Any] = {
        "moduleKey": key,
        "enabled": bool(enabled),
        "lastModifiedBy": modified_by,
        "lastModifiedAt": modified_at,
    }
    if reason:
        flag["reason"] = reason
    return flag


def get_module_info(key: str) -> dict[str, str] | None:
    return MODULE_INFO.get(key)


class FeatureFlagRegistry:
    """
    One boolean flag per module key, persisted as a single versioned config
    record. Subscribers registered with on_change() receive the full flag map
    after each committed set_flag(), in registration order.
    """

    def __init__(
        self,
        defaults: Mapping[str, bool] | None = None,
        *,
        version: int = FLAGS_SCHEMA_VERSION,
        default_reasons: Mapping[str, str] | None = None,
    ) -> None:
        self.defaults = dict(DEFAULT_FLAGS if defaults is None else defaults)
        self.default_reasons = dict(DEFAULT_REASONS if default_reasons is None else default_reasons)
        self.version = version
        self._listeners: list[FlagChangeCallback] = []
        self._notifying = False

    # ---------- defaults / migration ----------
    def default_flags(self, now: str | None = None) -> FlagMap:
        ts = now or _now()
        return {
            key: make_flag(key, enabled, SYSTEM_ACTOR, ts, self.default_reasons.get(key))
            for key, enabled in self.defaults.items()
        }

    def migrate(self, stored: Mapping[str, Any], now: str | None = None) -> dict[str, Any]:
        """
        Bring a stored config up to the current defaults.

        Missing keys are inserted. A flag still owned by "system" follows a
        changed default; a flag a human has touched is left alone.
        """
        ts = now or _now()
        flags: FlagMap = {k: dict(v) for k, v in (stored.get("flags") or {}).items()}
        for key, enabled in self.defaults.items():
            current = flags.get(key)
            if current is None:
                flags[key] = make_flag(key, enabled, SYSTEM_ACTOR, ts, self.default_reasons.get(key))
                continue
            if current.get("lastModifiedBy") == SYSTEM_ACTOR and bool(current.get("enabled")) != enabled:
                current["enabled"] = enabled
                current["lastModifiedAt"] = ts
                if not current.get("reason") and self.default_reasons.get(key):
                    current["reason"] = self.default_reasons[key]
        for key in ALWAYS_ON_MODULES:
            if key in flags and not flags[key].get("enabled"):
                flags[key].update(enabled=True, lastModifiedBy=SYSTEM_ACTOR, lastModifiedAt=ts)
        return {"version": self.version, "flags": flags}

    def load(self, s: Session) -> dict[str, Any]:
        store = ConfigStore(s)
        config = store.get(FLAGS_CONFIG_KEY)
        if config is None:
            config = {"version": self.version, "flags": self.default_flags()}
            store.set(FLAGS_CONFIG_KEY, config)
            logger.info("Seeded feature flags at version %s", self.version)
            return config
        stored_version = int(config.get("version") or 0)
        if stored_version < self.version:
            config = self.migrate(config)
            store.set(FLAGS_CONFIG_KEY, config)
            logger.info("Migrated feature flags from version %s to %s", stored_version, self.version)
        return config

    # ---------- reads ----------
    def get_all_flags(self, s: Session) -> FlagMap:
        return self._merged(self.load(s))

    def get_flag(self, s: Session, key: str) -> bool:
        if key in ALWAYS_ON_MODULES:
            return True
        return bool(self.get_all_flags(s).get(key, {}).get("enabled", False))

    # ---------- writes ----------
    def set_flag(self, s: Session, key: str, enabled: bool, actor: User, reason: str | None = None) -> dict[str, Any]:
        if self._notifying:
            raise RuntimeError("set_flag() must not be called from a flag-change callback")
        if key not in self.defaults:
            raise ValueError(f"Unknown module key: {key!r}")
        if not enabled and key in ALWAYS_ON_MODULES:
            raise ProtectedModuleError(f"Module {key} cannot be disabled.")

        config = self.load(s)
        previous = (config["flags"].get(key) or {}).get("enabled")
        config["flags"][key] = make_flag(key, enabled, str(actor.id), _now(), reason)
        ConfigStore(s).set(FLAGS_CONFIG_KEY, config)

        record_event(
            s,
            actor=actor,
            module=key,
            action="flag_toggle",
            entity_type="feature_flag",
            entity_id=key,
            details={"previous_state": previous, "new_state": bool(enabled), "reason": reason},
            notes=f"Module {key} {'enabled' if enabled else 'disabled'}",
        )
        logger.info("Flag %s set to %s by user %s", key, enabled, actor.id)
        self._queue_notification(s, self._merged(config))
        return config["flags"][key]

    # ---------- subscriptions ----------
    def on_change(self, callback: FlagChangeCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _queue_notification(self, s: Session, flags: FlagMap) -> None:
        s.info.setdefault(_PENDING_KEY, []).append((self, flags))
        if not event.contains(s, "after_commit", _deliver_pending):
            event.listen(s, "after_commit", _deliver_pending)
            event.listen(s, "after_rollback", _drop_pending)

    def _notify(self, flags: FlagMap) -> None:
        self._notifying = True
        try:
            for callback in list(self._listeners):
                callback(copy.deepcopy(flags))
        finally:
            self._notifying = False

    def _merged(self, config: Mapping[str, Any]) -> FlagMap:
        merged = self.default_flags()
        merged.update(copy.deepcopy(config.get("flags") or {}))
        for key in ALWAYS_ON_MODULES:
            if key in merged:
                merged[key]["enabled"] = True
        return merged


def _deliver_pending(s: Session) -> None:
    # No SQL may be emitted here; deliver the maps captured at set_flag() time.
    for registry, flags in s.info.pop(_PENDING_KEY, []):
        registry._notify(flags)


def _drop_pending(s: Session) -> None:
    s.info.pop(_PENDING_KEY, None)


def get_registry() -> FeatureFlagRegistry:
    return current_app.extensions["feature_flags"]

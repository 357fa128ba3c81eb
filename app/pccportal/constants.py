"""
Central constants for the PCC portal.
"""
from __future__ import annotations

# Dealer-side roles (workshop staff at a dealership)
DEALER_ROLES = ("master_technician", "service_manager", "service_head", "warranty_manager")

# Manufacturer-side roles
MANUFACTURER_ROLES = ("admin", "super_admin")

# Top administrative role: manages modules, sees disabled-module notices
SUPER_ADMIN = "super_admin"

ALL_ROLES = DEALER_ROLES + MANUFACTURER_ROLES

# Roles that must complete a one-time-code step after the password check
OTP_ROLES = frozenset(MANUFACTURER_ROLES)

# Feature-flagged module keys
MODULE_KEYS = (
    "dealer_pcc",
    "api_registration",
    "mt_meet",
    "workshop_survey",
    "warranty_survey",
    "technical_awareness_survey",
)

# Modules that can never be switched off
ALWAYS_ON_MODULES = frozenset({"dealer_pcc"})

# Audit "module" values that are not feature modules
AUDIT_SYSTEM_MODULES = ("auth", "system")

# Sentinel actor for defaults written by the application itself
SYSTEM_ACTOR = "system"

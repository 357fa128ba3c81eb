"""
Feature flags (module management).

- One flag per module key, stored as a single versioned config record
- Defaults follow code changes only while untouched by a human
- Toggles are super-admin only and land in the audit trail
"""

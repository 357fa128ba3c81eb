"""
Feature modules live under this package.

Keep module boundaries clean: each module owns its models, services and routes,
while reusing platform primitives (auth, RBAC, access gate, audit, DB session).
"""

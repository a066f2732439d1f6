"""
Capability-based authorization.

Catalog of roles and capabilities, the authorization gate that enforces them,
and the startup invariants that keep the catalog safe to change.
"""

"""
Audit feature module.

Append-only record of every authorization decision and role change.
"""

"""
Members feature module.

Read-only access to member accounts and resolution of session tokens into
authorization actors.
"""

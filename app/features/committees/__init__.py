"""
Committees feature module.

Committees scope delegated authority: role assignments bind a member to a role
inside one committee, and the delegation engine decides who may create them.
"""

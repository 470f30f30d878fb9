"""rbac/ -- Roles, permissions, and the links between them.

Layer rule: rbac/ imports only core/ and third-party libraries.
It does NOT import from api/ or auth/.
"""

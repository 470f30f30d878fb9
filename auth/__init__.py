"""auth/ -- Authentication package for Gatekeeper.

Users, session (access/refresh) tokens, single-use action tokens, OTP email
verification and OAuth login.

Layer rule: auth/ imports only core/, stdlib, and third-party libraries.
It does NOT import from api/ or rbac/. api/ imports from auth/, not the
other way around.
"""

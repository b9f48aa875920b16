"""auth/ -- Authentication core for Gatehouse.

Credential verification, token issuance, refresh session storage, lockout and
the SessionService that composes them.

Layer rule: auth/ imports only stdlib + third-party libraries, plus core/ for
Settings. It does NOT import from api/. api/ imports from auth/, not the other
way around.
"""

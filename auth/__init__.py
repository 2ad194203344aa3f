"""auth/ -- Credential hashing, token issuing, session storage and the auth orchestrator.

Layer rule: auth/ imports only stdlib + third-party libraries (and core/config
for type hints). It does NOT import from api/. api/ imports from auth/, not
the other way around.
"""

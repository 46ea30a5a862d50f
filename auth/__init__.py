"""auth/ -- Per-domain secrets, tokens, accounts and sign-in flows for HostAuth.

Layer rule: auth/ imports from core/, stdlib and third-party libraries.
It does NOT import from api/. auth/dependencies.py (HostAuth itself) and
auth/client.py (tenant apps) are the only modules that
know about FastAPI request objects.
"""

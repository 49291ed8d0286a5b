"""auth/ -- Hub identity: users, hub sessions, identity providers, kill switch.

Layer rule: auth/ imports from core/ and security/ plus third-party
libraries. It does NOT import from projects/, oauth2/, api/, or web/;
where it needs a project store it receives one from the caller.
api/ and web/ import from auth/, not the other way around.
"""

"""Identity, session, token and MFA engine for multi-tenant backends."""

__version__ = "0.1.0"

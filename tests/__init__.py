"""authcore test suite.

Service tests run against a real in-memory SQLite database; only the OAuth2
provider and the wall clock are replaced.
"""

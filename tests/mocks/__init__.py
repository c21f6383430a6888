"""Test doubles for collaborators outside the database."""

"""Core collaborators shared by every service."""

"""Configuration module for authcore."""

from authcore.config.base import Settings
from authcore.config.loader import get_settings
from authcore.config.policy import OAuthProviderConfig, ProjectPolicy

__all__ = ["OAuthProviderConfig", "ProjectPolicy", "Settings", "get_settings"]

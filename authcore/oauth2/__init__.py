"""OAuth2 provider adapters."""

from authcore.oauth2.base import OAuth2Adapter
from authcore.oauth2.registry import OAuth2Registry, default_registry

__all__ = ["OAuth2Adapter", "OAuth2Registry", "default_registry"]

"""Static table of OAuth2 provider adapters."""

from typing import Any, Dict, Optional, Type

from authcore.oauth2.base import OAuth2Adapter
from authcore.oauth2.github import GitHubOAuth2
from authcore.oauth2.google import GoogleOAuth2
from authcore.utils.exceptions import NotFoundException


class OAuth2Registry:
    """Maps a provider key to its adapter class."""

    def __init__(self, adapters: Optional[Dict[str, Type[OAuth2Adapter]]] = None):
        """Start from ``adapters`` (copied)."""
        self._adapters: Dict[str, Type[OAuth2Adapter]] = dict(adapters or {})

    def register(self, key: str, adapter: Type[OAuth2Adapter]) -> None:
        self._adapters[key] = adapter

    def keys(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, key: object) -> bool:
        return key in self._adapters

    def create(self, key: str, app_id: str, app_secret: str, **kwargs: Any) -> OAuth2Adapter:
        """Instantiate the adapter registered under ``key``."""
        adapter = self._adapters.get(key)
        if adapter is None:
            raise NotFoundException(
                f"OAuth2 provider {key} is not supported", "project_provider_unsupported"
            )
        return adapter(app_id, app_secret, **kwargs)


def default_registry() -> OAuth2Registry:
    """Registry with every bundled adapter."""
    return OAuth2Registry({"github": GitHubOAuth2, "google": GoogleOAuth2})

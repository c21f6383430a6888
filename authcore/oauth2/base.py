"""OAuth2 adapter contract.

An adapter knows one provider's endpoints and payload shapes. The identity
linker only sequences these calls and never talks HTTP itself.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from authcore.utils.exceptions import OAuth2ProviderException
from authcore.utils.logging import get_logger

logger = get_logger(__name__)


class OAuth2Adapter(ABC):
    """Base class every provider adapter extends."""

    name: str = ""
    scopes: List[str] = []

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        callback: str = "",
        state: Optional[Dict[str, Any]] = None,
        scopes: Optional[List[str]] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize adapter with the project's app credentials."""
        self.app_id = app_id
        self.app_secret = app_secret
        self.callback = callback
        self.state = state or {}
        self.scopes = [*type(self).scopes, *(scopes or [])]
        self._owns_http = http_client is None
        self.http = http_client or httpx.Client()
        self._tokens: Dict[str, Dict[str, Any]] = {}
        self._users: Dict[str, Dict[str, Any]] = {}

    def close(self) -> None:
        """Close the HTTP client unless it was handed in by the caller."""
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> "OAuth2Adapter":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @abstractmethod
    def get_login_url(self) -> str:
        """URL the browser is sent to."""

    @abstractmethod
    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Swap an authorization code for the provider's token payload."""

    @abstractmethod
    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """Swap a refresh token for a fresh token payload."""

    @abstractmethod
    def fetch_user(self, access_token: str) -> Dict[str, Any]:
        """Provider user profile for ``access_token``."""

    @abstractmethod
    def get_user_id(self, access_token: str) -> str:
        """External subject id."""

    @abstractmethod
    def get_user_email(self, access_token: str) -> str:
        """Primary email, empty when the provider hides it."""

    @abstractmethod
    def get_user_name(self, access_token: str) -> str:
        """Display name."""

    def is_email_verified(self, access_token: str) -> bool:
        return False

    def get_tokens(self, code: str) -> Dict[str, Any]:
        """Token payload for ``code``, exchanged once and cached."""
        if code not in self._tokens:
            self._tokens[code] = self.exchange_code(code)
        return self._tokens[code]

    def refresh_tokens(self, refresh_token: str) -> Dict[str, Any]:
        """Refresh and cache the payload under the empty code."""
        self._tokens[""] = self.refresh(refresh_token)
        return self._tokens[""]

    def get_access_token(self, code: str) -> str:
        return str(self.get_tokens(code).get("access_token", ""))

    def get_refresh_token(self, code: str) -> str:
        return str(self.get_tokens(code).get("refresh_token", ""))

    def get_access_token_expiry(self, code: str) -> int:
        return int(self.get_tokens(code).get("expires_in", 0) or 0)

    def parse_state(self, state: str) -> Dict[str, Any]:
        """States are JSON objects built by ``get_login_url``."""
        parsed = json.loads(state)
        if not isinstance(parsed, dict):
            raise ValueError("OAuth2 state must be a JSON object")
        return parsed

    def user(self, access_token: str) -> Dict[str, Any]:
        """Cached profile lookup."""
        if access_token not in self._users:
            self._users[access_token] = self.fetch_user(access_token)
        return self._users[access_token]

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and decode JSON, mapping transport errors."""
        try:
            response = self.http.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "OAuth2 provider rejected request",
                extra={"provider": self.name, "status": e.response.status_code},
            )
            raise OAuth2ProviderException(
                f"The {self.name} OAuth2 provider returned an error: {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "OAuth2 provider request failed",
                exc_info=True,
                extra={"provider": self.name, "error_type": type(e).__name__},
            )
            raise OAuth2ProviderException(
                f"The {self.name} OAuth2 provider could not be reached"
            ) from e

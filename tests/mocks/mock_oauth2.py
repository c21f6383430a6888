"""In-process OAuth2 provider.

Profiles are registered per authorization code; the access token handed out
for code ``abc`` is ``access-abc``.
"""

import json
from typing import Any, Dict
from urllib.parse import urlencode

from authcore.oauth2.base import OAuth2Adapter
from authcore.utils.exceptions import OAuth2ProviderException


class MockOAuth2(OAuth2Adapter):
    """Provider whose users live in a class-level dict."""

    name = "mock"
    scopes = ["email"]
    profiles: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def add_profile(
        cls, code: str, uid: str, email: str = "", name: str = "", verified: bool = True
    ) -> None:
        cls.profiles[code] = {"id": uid, "email": email, "name": name, "verified": verified}

    def get_login_url(self) -> str:
        query = {
            "client_id": self.app_id,
            "redirect_uri": self.callback,
            "scope": " ".join(self.scopes),
            "state": json.dumps(self.state),
        }
        return f"https://provider.test/authorize?{urlencode(query)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        if code not in self.profiles:
            raise OAuth2ProviderException("Invalid authorization code")
        return {
            "access_token": f"access-{code}",
            "refresh_token": f"refresh-{code}",
            "expires_in": 3600,
        }

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        return {
            "access_token": "access-refreshed",
            "refresh_token": "refresh-refreshed",
            "expires_in": 3600,
        }

    def fetch_user(self, access_token: str) -> Dict[str, Any]:
        return dict(self.profiles[access_token.removeprefix("access-")])

    def get_user_id(self, access_token: str) -> str:
        return self.user(access_token).get("id") or ""

    def get_user_email(self, access_token: str) -> str:
        return self.user(access_token).get("email") or ""

    def get_user_name(self, access_token: str) -> str:
        return self.user(access_token).get("name") or ""

    def is_email_verified(self, access_token: str) -> bool:
        return bool(self.user(access_token).get("verified"))

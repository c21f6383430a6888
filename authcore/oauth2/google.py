"""Google OAuth2 adapter."""

import json
from typing import Any, Dict
from urllib.parse import urlencode

from authcore.oauth2.base import OAuth2Adapter

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


class GoogleOAuth2(OAuth2Adapter):
    """Google sign-in via OpenID Connect userinfo."""

    name = "google"
    scopes = ["openid", "email", "profile"]

    def get_login_url(self) -> str:
        query = {
            "client_id": self.app_id,
            "redirect_uri": self.callback,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": json.dumps(self.state),
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{AUTH_URL}?{urlencode(query)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            TOKEN_URL,
            data={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "redirect_uri": self.callback,
                "grant_type": "authorization_code",
                "code": code,
            },
        )

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        tokens = self._request(
            "POST",
            TOKEN_URL,
            data={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )
        # Google omits the refresh token when it is unchanged
        tokens.setdefault("refresh_token", refresh_token)
        return tokens

    def fetch_user(self, access_token: str) -> Dict[str, Any]:
        return self._request(
            "GET", USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
        )

    def get_user_id(self, access_token: str) -> str:
        return str(self.user(access_token).get("sub") or "")

    def get_user_email(self, access_token: str) -> str:
        return self.user(access_token).get("email") or ""

    def is_email_verified(self, access_token: str) -> bool:
        return bool(self.user(access_token).get("email_verified"))

    def get_user_name(self, access_token: str) -> str:
        return self.user(access_token).get("name") or ""

"""GitHub OAuth2 adapter."""

import json
from typing import Any, Dict
from urllib.parse import urlencode

from authcore.oauth2.base import OAuth2Adapter

AUTH_URL = "https://github.com/login/oauth/authorize"
TOKEN_URL = "https://github.com/login/oauth/access_token"
API_URL = "https://api.github.com"


class GitHubOAuth2(OAuth2Adapter):
    """GitHub apps and OAuth apps."""

    name = "github"
    scopes = ["user:email"]

    def get_login_url(self) -> str:
        query = {
            "client_id": self.app_id,
            "redirect_uri": self.callback,
            "scope": " ".join(self.scopes),
            "state": json.dumps(self.state),
        }
        return f"{AUTH_URL}?{urlencode(query)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            TOKEN_URL,
            headers={"Accept": "application/json"},
            data={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "redirect_uri": self.callback,
                "code": code,
            },
        )

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            TOKEN_URL,
            headers={"Accept": "application/json"},
            data={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )

    def fetch_user(self, access_token: str) -> Dict[str, Any]:
        headers = {
            "Authorization": f"token {access_token}",
            "Accept": "application/vnd.github+json",
        }
        profile = self._request("GET", f"{API_URL}/user", headers=headers)
        emails = self._request("GET", f"{API_URL}/user/emails", headers=headers)
        primary = next(
            (e for e in emails if e.get("primary")),
            emails[0] if emails else {},
        )
        profile["email"] = primary.get("email", profile.get("email") or "")
        profile["verified"] = bool(primary.get("verified"))
        return profile

    def get_user_id(self, access_token: str) -> str:
        user_id = self.user(access_token).get("id")
        return str(user_id) if user_id is not None else ""

    def get_user_email(self, access_token: str) -> str:
        return self.user(access_token).get("email") or ""

    def is_email_verified(self, access_token: str) -> bool:
        return bool(self.user(access_token).get("verified"))

    def get_user_name(self, access_token: str) -> str:
        profile = self.user(access_token)
        return profile.get("name") or profile.get("login") or ""

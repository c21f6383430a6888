"""Tests for the bundled OAuth2 adapters and the registry."""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from authcore.oauth2.github import GitHubOAuth2
from authcore.oauth2.google import GoogleOAuth2
from authcore.oauth2.registry import OAuth2Registry, default_registry
from authcore.utils.exceptions import NotFoundException, OAuth2ProviderException


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestRegistry:
    """Provider lookup."""

    def test_default_providers(self):
        registry = default_registry()

        assert registry.keys() == ["github", "google"]
        assert "github" in registry
        assert isinstance(registry.create("google", "id", "secret"), GoogleOAuth2)

    def test_unknown_provider(self):
        with pytest.raises(NotFoundException) as exc_info:
            OAuth2Registry().create("myspace", "id", "secret")

        assert exc_info.value.code == "project_provider_unsupported"


class TestGitHub:
    """GitHub adapter against a fake API."""

    def test_login_url_carries_state(self):
        adapter = GitHubOAuth2(
            "app-id", "app-secret", callback="https://cb.example.com", state={"success": "/ok"}
        )

        query = parse_qs(urlparse(adapter.get_login_url()).query)

        assert query["client_id"] == ["app-id"]
        assert query["redirect_uri"] == ["https://cb.example.com"]
        assert query["scope"] == ["user:email"]
        assert adapter.parse_state(query["state"][0]) == {"success": "/ok"}

    def test_profile_uses_primary_email(self):
        def handler(request):
            if request.url.path == "/login/oauth/access_token":
                return httpx.Response(200, json={"access_token": "gh-token", "expires_in": 28800})
            if request.url.path == "/user":
                return httpx.Response(200, json={"id": 42, "login": "octocat", "name": None})
            return httpx.Response(
                200,
                json=[
                    {"email": "old@example.com", "primary": False, "verified": True},
                    {"email": "octo@example.com", "primary": True, "verified": True},
                ],
            )

        adapter = GitHubOAuth2("id", "secret", http_client=_client(handler))
        access_token = adapter.get_access_token("code")

        assert access_token == "gh-token"
        assert adapter.get_access_token_expiry("code") == 28800
        assert adapter.get_user_id(access_token) == "42"
        assert adapter.get_user_email(access_token) == "octo@example.com"
        assert adapter.get_user_name(access_token) == "octocat"
        assert adapter.is_email_verified(access_token)

    def test_provider_error_is_mapped(self):
        adapter = GitHubOAuth2(
            "id", "secret", http_client=_client(lambda request: httpx.Response(500))
        )

        with pytest.raises(OAuth2ProviderException):
            adapter.get_tokens("code")

    def test_parse_state_rejects_non_objects(self):
        adapter = GitHubOAuth2("id", "secret")

        with pytest.raises(ValueError):
            adapter.parse_state(json.dumps(["not", "an", "object"]))


class TestGoogle:
    """Google adapter against a fake API."""

    def test_refresh_keeps_refresh_token(self):
        """Google leaves out an unchanged refresh token."""
        adapter = GoogleOAuth2(
            "id",
            "secret",
            http_client=_client(
                lambda request: httpx.Response(200, json={"access_token": "new", "expires_in": 3600})
            ),
        )

        tokens = adapter.refresh_tokens("refresh-1")

        assert tokens["refresh_token"] == "refresh-1"
        assert adapter.get_access_token("") == "new"

    def test_userinfo(self):
        adapter = GoogleOAuth2(
            "id",
            "secret",
            http_client=_client(
                lambda request: httpx.Response(
                    200,
                    json={"sub": "g-1", "email": "g@example.com", "email_verified": True, "name": "G"},
                )
            ),
        )

        assert adapter.get_user_id("token") == "g-1"
        assert adapter.get_user_email("token") == "g@example.com"
        assert adapter.is_email_verified("token")


class TestClientLifecycle:
    """Adapters close only the HTTP client they created."""

    def test_owned_client_closed_on_exit(self):
        with GitHubOAuth2("id", "secret") as adapter:
            assert not adapter.http.is_closed

        assert adapter.http.is_closed

    def test_injected_client_left_open(self):
        client = _client(lambda request: httpx.Response(200, json={}))

        with GoogleOAuth2("id", "secret", http_client=client):
            pass

        assert not client.is_closed
        client.close()

"""Tests for the session lifecycle."""

import base64
from datetime import timedelta

import pytest

from authcore.core.context import CallerContext
from authcore.core.events import SESSION_CREATED, SESSION_DELETED
from authcore.models import UserSession
from authcore.services.session_service import add_factor, decode_session, encode_session
from authcore.utils.exceptions import NotFoundException
from authcore.utils.id_generator import hash_secret


def _ctx_for(session, secret):
    return CallerContext.for_user(session.user_id, secret)


class TestSessionCredential:
    """Cookie/header encoding."""

    def test_round_trip(self):
        assert decode_session(encode_session("u1", "s3cret")) == {"id": "u1", "secret": "s3cret"}

    @pytest.mark.parametrize(
        "value",
        [None, "", "%%%not-base64%%%", base64.b64encode(b"[1, 2]").decode(), base64.b64encode(b"{bad").decode()],
    )
    def test_garbage_is_empty(self, value):
        assert decode_session(value) == {"id": None, "secret": ""}


class TestCreate:
    """Session creation."""

    def test_create(self, sessions, user, guest_ctx, clock, policy, recorder):
        session, secret = sessions.create(guest_ctx, user, "email", ["password", "password"])

        assert session.secret == hash_secret(secret)
        assert len(secret) == 256
        assert session.expire == clock() + timedelta(seconds=policy.duration)
        assert session.factors == ["password"]
        assert session.client_name == "Chrome"
        assert session.ip == "127.0.0.1"
        assert SESSION_CREATED in recorder.names()
        assert "secret" not in recorder.events[-1].payload

    def test_max_sessions(self, sessions, user, guest_ctx, policy):
        """Oldest sessions make room once the cap is hit."""
        policy.max_sessions = 2
        for _ in range(2):
            sessions.create(guest_ctx, user, "email", ["password"])
        newest, _ = sessions.create(guest_ctx, user, "email", ["password"])

        remaining = sessions.sessions_of(guest_ctx, user)
        assert len(remaining) == 2
        assert newest in remaining

    def test_max_sessions_drops_oldest_by_clock(self, sessions, user, guest_ctx, policy, clock):
        policy.max_sessions = 2
        oldest, _ = sessions.create(guest_ctx, user, "email", ["password"])
        clock.advance(60)
        middle, _ = sessions.create(guest_ctx, user, "email", ["password"])
        clock.advance(60)
        newest, _ = sessions.create(guest_ctx, user, "email", ["password"])

        remaining = sessions.sessions_of(guest_ctx, user)
        assert [s.id for s in remaining] == [middle.id, newest.id]
        assert oldest.id not in [s.id for s in remaining]
        assert middle.created_at == clock() - timedelta(seconds=60)


class TestCurrent:
    """Current-session resolution."""

    def test_exactly_one_current(self, sessions, user, guest_ctx):
        sessions.create(guest_ctx, user, "email", ["password"])
        mine, secret = sessions.create(guest_ctx, user, "email", ["password"])
        sessions.create(guest_ctx, user, "email", ["password"])

        listed = sessions.list_sessions(_ctx_for(mine, secret), user)

        assert [s["id"] for s in listed if s["current"]] == [mine.id]
        assert all("secret" not in s for s in listed)

    def test_no_secret_no_current(self, sessions, user, guest_ctx):
        sessions.create(guest_ctx, user, "email", ["password"])

        assert not any(s["current"] for s in sessions.list_sessions(guest_ctx, user))

    def test_expired_session_is_not_current(self, sessions, user, guest_ctx, clock, policy):
        session, secret = sessions.create(guest_ctx, user, "email", ["password"])
        clock.advance(policy.duration)

        assert sessions.current_session(_ctx_for(session, secret), user) is None

    def test_get_current_alias(self, sessions, user, guest_ctx):
        session, secret = sessions.create(guest_ctx, user, "email", ["password"])

        assert sessions.get(_ctx_for(session, secret), user, "current") is session

    def test_get_unknown(self, sessions, user, guest_ctx):
        with pytest.raises(NotFoundException) as exc_info:
            sessions.get(guest_ctx, user, "missing")

        assert exc_info.value.code == "user_session_not_found"


class TestFactors:
    """Factor bookkeeping."""

    def test_add_factor_is_idempotent(self, sessions, user, guest_ctx):
        session, _ = sessions.create(guest_ctx, user, "email", ["password"])

        sessions.add_factor(guest_ctx, session, "totp")
        sessions.add_factor(guest_ctx, session, "totp")

        assert session.factors == ["password", "totp"]

    def test_add_factor_helper(self):
        session = UserSession(factors=["email"])

        assert add_factor(session, "phone") is True
        assert add_factor(session, "phone") is False
        assert session.factors == ["email", "phone"]


class TestUpdate:
    """Session extension and provider token refresh."""

    def test_extends_expiry(self, sessions, user, guest_ctx, clock, policy):
        session, _ = sessions.create(guest_ctx, user, "email", ["password"])
        clock.advance(3600)

        sessions.update(guest_ctx, user, session.id)

        assert session.expire == clock() + timedelta(seconds=policy.duration)

    def test_refreshes_stale_provider_tokens(self, sessions, user, guest_ctx, clock):
        session, _ = sessions.create(
            guest_ctx,
            user,
            "mock",
            ["email", "oauth2"],
            provider_uid="uid-1",
            provider_access_token="access-old",
            provider_refresh_token="refresh-old",
            provider_access_token_expiry=clock() + timedelta(seconds=60),
        )
        clock.advance(120)

        sessions.update(guest_ctx, user, session.id)

        assert session.provider_access_token == "access-refreshed"
        assert session.provider_refresh_token == "refresh-refreshed"
        assert session.provider_access_token_expiry == clock() + timedelta(seconds=3600)

    def test_fresh_provider_tokens_untouched(self, sessions, user, guest_ctx, clock):
        session, _ = sessions.create(
            guest_ctx,
            user,
            "mock",
            ["email", "oauth2"],
            provider_access_token="access-old",
            provider_refresh_token="refresh-old",
            provider_access_token_expiry=clock() + timedelta(seconds=600),
        )

        sessions.update(guest_ctx, user, session.id)

        assert session.provider_access_token == "access-old"


class TestRevoke:
    """Session deletion."""

    def test_revoke_current(self, sessions, user, guest_ctx, recorder):
        session, secret = sessions.create(guest_ctx, user, "email", ["password"])

        assert sessions.revoke(_ctx_for(session, secret), user, "current") is True
        assert sessions.sessions_of(guest_ctx, user) == []
        assert SESSION_DELETED in recorder.names()

    def test_revoke_other(self, sessions, user, guest_ctx):
        mine, secret = sessions.create(guest_ctx, user, "email", ["password"])
        other, _ = sessions.create(guest_ctx, user, "email", ["password"])

        assert sessions.revoke(_ctx_for(mine, secret), user, other.id) is False
        assert sessions.sessions_of(guest_ctx, user) == [mine]

    def test_revoke_unknown(self, sessions, user, guest_ctx):
        with pytest.raises(NotFoundException):
            sessions.revoke(guest_ctx, user, "missing")

    def test_revoke_all(self, sessions, user, guest_ctx):
        mine, secret = sessions.create(guest_ctx, user, "email", ["password"])
        sessions.create(guest_ctx, user, "email", ["password"])

        assert sessions.revoke_all(_ctx_for(mine, secret), user) is True
        assert sessions.sessions_of(guest_ctx, user) == []

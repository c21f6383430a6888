"""Tests for server-side user administration."""

import bcrypt
import pytest

from authcore.core.context import CallerContext
from authcore.models import Identity, Target, Token, User, UserSession
from authcore.utils.exceptions import (
    AlreadyExistsException,
    BadRequestException,
    InvalidCredentialsException,
    InvalidTokenException,
    NotFoundException,
    UnauthorizedException,
    UserBlockedException,
)
from tests.conftest import EMAIL, PASSWORD
from tests.mocks.mock_oauth2 import MockOAuth2


def _count(service, model, *filters):
    return service.store.count(model, CallerContext.server(), *filters)


class TestAccess:
    """Only elevated callers reach the admin operations."""

    def test_guest(self, users, guest_ctx):
        with pytest.raises(UnauthorizedException):
            users.create_user(guest_ctx, email=EMAIL)

    def test_user(self, users, login, user):
        ctx, _ = login()

        with pytest.raises(UnauthorizedException):
            users.list_users(ctx)
        with pytest.raises(UnauthorizedException):
            users.update_status(ctx, user.id, False)


class TestCreateUser:
    """User creation and imported hashes."""

    def test_create(self, users, server_ctx):
        created = users.create_user(server_ctx, "grace", "Grace@Example.com", "+15550003333")

        assert created.id == "grace"
        assert created.email == "grace@example.com"
        assert created.password is None
        assert _count(users, Target, Target.user_id == "grace") == 2

    def test_duplicate_id(self, users, server_ctx):
        users.create_user(server_ctx, "grace")

        with pytest.raises(AlreadyExistsException):
            users.create_user(server_ctx, "grace")

    def test_imported_bcrypt(self, users, account, server_ctx, guest_ctx):
        """Imported hashes verify as-is and are upgraded on first login."""
        digest = bcrypt.hashpw(PASSWORD.encode(), bcrypt.gensalt(rounds=4)).decode()
        imported = users.create_user(
            server_ctx, email="grace@example.com", password=digest, hash_algo="bcrypt"
        )
        assert imported.password == digest

        account.create_email_password_session(guest_ctx, "grace@example.com", PASSWORD)

        assert imported.hash == "argon2"
        assert imported.password.startswith("$argon2")

    def test_unsupported_algo(self, users, server_ctx):
        with pytest.raises(BadRequestException):
            users.create_user(server_ctx, email=EMAIL, password="x", hash_algo="rot13")

    def test_plaintext_is_hashed(self, users, server_ctx):
        created = users.create_user(server_ctx, email=EMAIL, password=PASSWORD, hash_algo="plaintext")

        assert created.password.startswith("$argon2")


class TestListUsers:
    """Listing and search."""

    def test_search(self, users, server_ctx, user):
        users.create_user(server_ctx, email="grace@example.com", name="Grace Hopper")

        assert [u.email for u in users.list_users(server_ctx, search="hopper")] == [
            "grace@example.com"
        ]
        assert len(users.list_users(server_ctx)) == 2
        assert len(users.list_users(server_ctx, limit=1)) == 1


class TestUpdates:
    """Admin edits."""

    def test_block_revokes_sessions(self, users, server_ctx, login, user, guest_ctx, account):
        login()
        login()

        users.update_status(server_ctx, user.id, False)

        assert _count(users, UserSession) == 0
        with pytest.raises(UserBlockedException):
            account.create_email_password_session(guest_ctx, EMAIL, PASSWORD)

        users.update_status(server_ctx, user.id, True)
        account.create_email_password_session(guest_ctx, EMAIL, PASSWORD)

    def test_labels(self, users, server_ctx, user):
        updated = users.update_labels(server_ctx, user.id, ["vip", "beta", "vip"])

        assert updated.labels == ["vip", "beta"]

    @pytest.mark.parametrize("label", ["has space", "x" * 37, "dash-ed", ""])
    def test_invalid_label(self, users, server_ctx, user, label):
        with pytest.raises(BadRequestException) as exc_info:
            users.update_labels(server_ctx, user.id, [label])

        assert exc_info.value.code == "label_invalid"

    def test_password(self, users, account, server_ctx, guest_ctx, user):
        users.update_password(server_ctx, user.id, "admin-set-password")

        account.create_email_password_session(guest_ctx, EMAIL, "admin-set-password")

        users.update_password(server_ctx, user.id, "")
        with pytest.raises(InvalidCredentialsException):
            account.create_email_password_session(guest_ctx, EMAIL, "admin-set-password")

    def test_email_taken(self, users, server_ctx, user):
        other = users.create_user(server_ctx, email="grace@example.com")

        with pytest.raises(AlreadyExistsException) as exc_info:
            users.update_email(server_ctx, other.id, EMAIL)

        assert exc_info.value.code == "user_email_already_exists"

    def test_phone(self, users, server_ctx, user):
        users.update_phone(server_ctx, user.id, "+15550004444")
        users.update_phone(server_ctx, user.id, "+15550005555")

        targets = users.store.find(
            Target, server_ctx, Target.user_id == user.id, Target.provider_type == "sms"
        )
        assert [t.identifier for t in targets] == ["+15550005555"]

    def test_verification_flags(self, users, server_ctx, user):
        users.update_phone_verification(server_ctx, user.id, True)
        users.update_email_verification(server_ctx, user.id, False)

        assert user.phone_verification
        assert not user.email_verification

    def test_prefs_and_name(self, users, server_ctx, user):
        users.update_prefs(server_ctx, user.id, {"lang": "en"})
        users.update_name(server_ctx, user.id, "A. Lovelace")

        assert user.prefs == {"lang": "en"}
        assert user.name == "A. Lovelace"

    def test_unknown_user(self, users, server_ctx):
        with pytest.raises(NotFoundException):
            users.update_name(server_ctx, "nobody", "x")


class TestDelete:
    """Deletion cascades to everything the user owns."""

    def test_cascade(self, users, identities, server_ctx, login, user):
        ctx, _ = login()
        MockOAuth2.add_profile("code-1", "uid-1", "ada.work@example.com")
        identities.handle_callback(ctx, "mock", "code-1", '{"success": "https://app.example.com"}')
        users.create_token(server_ctx, user.id)

        users.delete_user(server_ctx, user.id)

        for model in (User, UserSession, Token, Target, Identity):
            assert _count(users, model) == 0


class TestSessionsAndTokens:
    """Sessions and tokens minted by the server."""

    def test_create_session(self, users, server_ctx, user):
        session, secret = users.create_session(server_ctx, user.id)

        assert session.provider == "server"
        assert session.factors == []
        assert len(secret) == 256

    def test_generic_token_login(self, users, account, server_ctx, guest_ctx, user):
        token, secret = users.create_token(server_ctx, user.id, length=8, expire=120)

        session, _ = account.create_session_from_token(guest_ctx, user.id, secret)

        assert len(secret) == 8
        assert session.provider == "token"
        assert session.factors == ["token"]

    def test_generic_token_expires(self, users, account, server_ctx, guest_ctx, user, clock):
        _, secret = users.create_token(server_ctx, user.id, expire=60)
        clock.advance(61)

        with pytest.raises(InvalidTokenException):
            account.create_session_from_token(guest_ctx, user.id, secret)

    @pytest.mark.parametrize("length,expire", [(3, 900), (129, 900), (6, 59)])
    def test_token_bounds(self, users, server_ctx, user, length, expire):
        with pytest.raises(BadRequestException):
            users.create_token(server_ctx, user.id, length=length, expire=expire)

    def test_list_and_delete_sessions(self, users, server_ctx, login, user):
        _, first = login()
        _, second = login()

        assert len(users.list_sessions(server_ctx, user.id)) == 2

        users.delete_session(server_ctx, user.id, first.id)
        assert [s["id"] for s in users.list_sessions(server_ctx, user.id)] == [second.id]

        users.delete_sessions(server_ctx, user.id)
        assert users.list_sessions(server_ctx, user.id) == []


class TestMfaAdmin:
    """MFA management on behalf of a user."""

    def test_recovery_codes(self, users, server_ctx, user):
        codes = users.create_mfa_recovery_codes(server_ctx, user.id)

        assert users.get_mfa_recovery_codes(server_ctx, user.id) == codes
        assert users.update_mfa_recovery_codes(server_ctx, user.id) != codes

    def test_status_and_factors(self, users, server_ctx, user):
        users.update_mfa_status(server_ctx, user.id, True)

        assert user.mfa
        assert users.list_mfa_factors(server_ctx, user.id)["email"] is True

    def test_identities(self, users, identities, server_ctx, login, user):
        ctx, _ = login()
        MockOAuth2.add_profile("code-1", "uid-1", "ada.work@example.com")
        identities.handle_callback(ctx, "mock", "code-1", '{"success": "https://app.example.com"}')

        [identity] = users.list_identities(server_ctx, user.id)
        assert users.list_identities(server_ctx) == [identity]

        users.delete_identity(server_ctx, identity.id)
        assert users.list_identities(server_ctx) == []

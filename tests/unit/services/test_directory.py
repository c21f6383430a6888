"""Tests for user lookups and message targets."""

import pytest

from authcore.core.context import CallerContext
from authcore.models import Target, User
from authcore.utils.exceptions import AlreadyExistsException, LimitExceededException
from tests.conftest import EMAIL


def _targets(directory, user):
    return directory.store.find(Target, CallerContext.server(), Target.user_id == user.id)


class TestLookups:
    def test_find_by_email_is_case_insensitive(self, directory, guest_ctx, user):
        assert directory.find_by_email(guest_ctx, "ADA@EXAMPLE.COM").id == user.id

    def test_find_by_phone(self, directory, users, server_ctx, guest_ctx):
        created = users.create_user(server_ctx, phone="+15550006666")

        assert directory.find_by_phone(guest_ctx, "+15550006666").id == created.id
        assert directory.find_by_phone(guest_ctx, "+15550007777") is None

    def test_capacity(self, directory, guest_ctx, user, policy):
        policy.limit = 2
        directory.ensure_capacity(guest_ctx)

        policy.limit = 1
        with pytest.raises(LimitExceededException):
            directory.ensure_capacity(guest_ctx)


class TestTargets:
    def test_insert_creates_targets(self, directory, guest_ctx):
        user = directory.insert(guest_ctx, User(id="grace", email="grace@example.com", phone="+15550008888"))

        assert sorted(t.provider_type for t in _targets(directory, user)) == ["email", "sms"]
        assert user.permissions

    def test_move_target(self, directory, guest_ctx, user):
        directory.move_target(guest_ctx, user, "email", EMAIL, "ada.new@example.com")

        assert [t.identifier for t in _targets(directory, user)] == ["ada.new@example.com"]

    def test_move_onto_taken_identifier(self, directory, users, server_ctx, guest_ctx, user):
        users.create_user(server_ctx, email="grace@example.com")

        with pytest.raises(AlreadyExistsException) as exc_info:
            directory.move_target(guest_ctx, user, "email", EMAIL, "grace@example.com")

        assert exc_info.value.code == "user_target_already_exists"

    def test_attach_repoints_existing_identifier(self, directory, guest_ctx, user):
        """An existing target with the same identifier moves to the new user."""
        other = directory.insert(guest_ctx, User(id="grace"))

        target = directory.attach_target(guest_ctx, other, "email", EMAIL)

        assert target.user_id == "grace"
        assert _targets(directory, user) == []

"""Tests for the document store."""

import pytest
from sqlalchemy import update

from authcore.core.context import CallerContext, Permission
from authcore.core.store import DocumentStore
from authcore.models import User
from authcore.utils.exceptions import DuplicateException, UnauthorizedException


@pytest.fixture
def store(real_database):
    return DocumentStore(real_database)


@pytest.fixture
def owner(store):
    user = User(id="owner", email="owner@example.com", permissions=Permission.owned_by("owner"))
    return store.create(user, CallerContext.server())


class TestReads:
    """Permission-filtered reads."""

    def test_get_respects_read_permission(self, store, owner):
        """Records the caller cannot read look absent."""
        assert store.get(User, "owner", CallerContext.for_user("owner")) is owner
        assert store.get(User, "owner", CallerContext.for_user("other")) is None
        assert store.get(User, "owner", CallerContext.guest().skip()) is owner

    def test_get_without_id(self, store):
        assert store.get(User, None, CallerContext.server()) is None

    def test_find_and_count(self, store, owner):
        server = CallerContext.server()
        store.create(User(id="second", email="second@example.com", permissions=[]), server)

        assert len(store.find(User, server)) == 2
        assert store.find(User, CallerContext.for_user("owner")) == [owner]
        assert store.count(User, server) == 2
        assert store.count(User, server, max_count=1) == 1
        assert store.find_one(User, server, User.email == "second@example.com").id == "second"


class TestWrites:
    """Creates, updates and deletes."""

    def test_duplicate_create_raises_and_session_survives(self, store, owner, real_database):
        """A unique violation rolls back only its savepoint."""
        server = CallerContext.server()
        with pytest.raises(DuplicateException) as exc_info:
            store.create(User(email="owner@example.com"), server)

        assert exc_info.value.code == "document_already_exists"
        store.create(User(id="after", email="after@example.com"), server)
        assert store.count(User, server) == 2

    def test_update_requires_permission(self, store, owner):
        owner.name = "Owner"
        with pytest.raises(UnauthorizedException):
            store.update(owner, CallerContext.for_user("other"))

        store.update(owner, CallerContext.for_user("owner"))
        assert owner.name == "Owner"

    def test_update_duplicate(self, store, owner):
        server = CallerContext.server()
        other = store.create(User(id="other", email="other@example.com"), server)
        other.email = "owner@example.com"

        with pytest.raises(DuplicateException):
            store.update(other, server)

    def test_delete_requires_permission(self, store, owner):
        with pytest.raises(UnauthorizedException):
            store.delete(owner, CallerContext.guest())

        store.delete(owner, CallerContext.for_user("owner"))
        assert store.get(User, "owner", CallerContext.server()) is None

    def test_purge_cache_reloads_changed_row(self, store, owner, real_database):
        real_database.execute(
            update(User.__table__).where(User.__table__.c.id == owner.id).values(name="Fresh")
        )
        assert owner.name is None

        store.purge_cache(User, owner.id)

        assert owner.name == "Fresh"

    def test_purge_cache_ignores_unknown_id(self, store):
        store.purge_cache(User, "missing")

    def test_purge_cache_keeps_dirty_records(self, store, owner):
        """Unflushed changes are never thrown away by a purge."""
        owner.name = "Pending"
        store.purge_cache(User, owner.id)

        assert owner.name == "Pending"

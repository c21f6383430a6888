"""Shared fixtures.

Every test gets its own in-memory SQLite database, a frozen clock, an
in-memory message queue and an event recorder, all wired into the services
through ``make_service``.
"""

from datetime import datetime

import pytest

from authcore.config import OAuthProviderConfig, ProjectPolicy
from authcore.core.context import CallerContext
from authcore.core.database import build_engine, build_session_factory, init_db
from authcore.core.detector import GeoLocator
from authcore.core.events import EventBus, EventRecorder
from authcore.core.messaging import InMemoryMessageQueue
from authcore.oauth2.github import GitHubOAuth2
from authcore.oauth2.registry import OAuth2Registry
from authcore.services import (
    AccountService,
    IdentityLinker,
    MfaEngine,
    SessionManager,
    TokenIssuer,
    UserDirectory,
    UsersService,
)
from tests.mocks.frozen_clock import FrozenClock
from tests.mocks.mock_oauth2 import MockOAuth2

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
PASSWORD = "correct-horse-battery"
EMAIL = "ada@example.com"


@pytest.fixture
def real_database():
    """Create real SQLite database for testing."""
    engine = build_engine("sqlite:///:memory:", echo=False)
    init_db(engine)

    SessionLocal = build_session_factory(engine)
    session = SessionLocal()
    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 1, 1, 12, 0, 0))


@pytest.fixture
def policy():
    """Project policy with mail, SMS and the mock provider enabled."""
    return ProjectPolicy(
        project_id="test-project",
        name="Test Project",
        url="https://app.example.com",
        oauth_providers={
            "mock": OAuthProviderConfig(enabled=True, app_id="mock-app", secret="mock-secret"),
            "github": OAuthProviderConfig(enabled=False),
        },
    )


@pytest.fixture
def queue():
    return InMemoryMessageQueue()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def recorder(events):
    return EventRecorder(events)


@pytest.fixture
def registry():
    MockOAuth2.profiles = {}
    return OAuth2Registry({"mock": MockOAuth2, "github": GitHubOAuth2})


@pytest.fixture
def make_service(real_database, policy, events, queue, clock, registry):
    """Build any service around the shared test collaborators."""

    def _make(service_class, **overrides):
        kwargs = {
            "policy": policy,
            "events": events,
            "queue": queue,
            "clock": clock,
            "geo": GeoLocator(None),
            "registry": registry,
        }
        kwargs.update(overrides)
        return service_class(real_database, **kwargs)

    return _make


@pytest.fixture
def account(make_service):
    return make_service(AccountService)


@pytest.fixture
def users(make_service):
    return make_service(UsersService)


@pytest.fixture
def tokens(make_service):
    return make_service(TokenIssuer)


@pytest.fixture
def sessions(make_service):
    return make_service(SessionManager)


@pytest.fixture
def mfa(make_service):
    return make_service(MfaEngine)


@pytest.fixture
def identities(make_service):
    return make_service(IdentityLinker)


@pytest.fixture
def directory(make_service):
    return make_service(UserDirectory)


@pytest.fixture
def guest_ctx():
    return CallerContext.guest(ip="127.0.0.1", user_agent=CHROME_UA)


@pytest.fixture
def server_ctx():
    return CallerContext.server(ip="127.0.0.1", user_agent=CHROME_UA)


@pytest.fixture
def user(users, server_ctx):
    """A verified-email user with a password."""
    created = users.create_user(server_ctx, email=EMAIL, password=PASSWORD, name="Ada Lovelace")
    return users.update_email_verification(server_ctx, created.id, True)


@pytest.fixture
def login(account, guest_ctx):
    """Log in with email and password; returns the caller context and session."""

    def _login(email=EMAIL, password=PASSWORD):
        session, secret = account.create_email_password_session(guest_ctx, email, password)
        ctx = CallerContext.for_user(
            session.user_id, secret, ip=guest_ctx.ip, user_agent=guest_ctx.user_agent
        )
        return ctx, session

    return _login

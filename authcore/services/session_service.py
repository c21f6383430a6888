"""Session lifecycle.

A request's "current" session is the one whose stored hash equals the hash of
the ambient secret carried in the request's own credential. There is no
separate session-id channel.
"""

import base64
import binascii
import json
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from authcore.core.context import CallerContext, Permission
from authcore.core.detector import Detector
from authcore.core.events import SESSION_CREATED, SESSION_DELETED, SESSION_UPDATED
from authcore.models import User, UserSession
from authcore.oauth2.registry import OAuth2Registry, default_registry
from authcore.services.base import BaseService
from authcore.services.token_service import TOKEN_LENGTH_SESSION
from authcore.utils.clock import expires_in, is_expired
from authcore.utils.exceptions import NotFoundException
from authcore.utils.id_generator import hash_secret, token_generator
from authcore.utils.logging import get_logger

logger = get_logger(__name__)

CURRENT = "current"


def encode_session(user_id: str, secret: str) -> str:
    """Cookie/header value carrying the user id and plaintext secret."""
    payload = json.dumps({"id": user_id, "secret": secret})
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_session(value: Optional[str]) -> Dict[str, Any]:
    """Inverse of :func:`encode_session`; garbage decodes to an empty credential."""
    empty: Dict[str, Any] = {"id": None, "secret": ""}
    if not value:
        return empty
    try:
        decoded = json.loads(base64.b64decode(value, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return empty
    if not isinstance(decoded, dict):
        return empty
    return {"id": decoded.get("id"), "secret": decoded.get("secret") or ""}


def find_current(sessions: Iterable[UserSession], secret: str, now: Any = None) -> Optional[str]:
    """Id of the live session whose hash matches ``secret``."""
    if not secret:
        return None
    digest = hash_secret(secret)
    for session in sessions:
        if not session.secret or session.expire is None:
            continue
        if now is not None and is_expired(session.expire, now):
            continue
        if session.secret == digest:
            return session.id
    return None


def add_factor(session: UserSession, factor: str) -> bool:
    """Record ``factor`` once; True when it was new."""
    factors = list(session.factors or [])
    if factor in factors:
        return False
    session.factors = [*factors, factor]
    return True


class SessionManager(BaseService):
    """Creates, lists, refreshes and revokes sessions."""

    @property
    def registry(self) -> OAuth2Registry:
        return self._extras.get("registry") or default_registry()

    def create(
        self,
        ctx: CallerContext,
        user: User,
        provider: str,
        factors: List[str],
        provider_uid: Optional[str] = None,
        provider_access_token: Optional[str] = None,
        provider_refresh_token: Optional[str] = None,
        provider_access_token_expiry: Optional[Any] = None,
    ) -> Tuple[UserSession, str]:
        """Create a session and return it with the plaintext secret."""
        secret = token_generator(TOKEN_LENGTH_SESSION)
        detector = Detector(ctx.user_agent)

        session = UserSession(
            user_id=user.id,
            created_at=self.now(),
            provider=provider,
            provider_uid=provider_uid,
            provider_access_token=provider_access_token,
            provider_refresh_token=provider_refresh_token,
            provider_access_token_expiry=provider_access_token_expiry,
            secret=hash_secret(secret),
            expire=expires_in(self.clock, self.policy.duration),
            factors=list(dict.fromkeys(factors)),
            user_agent=detector.user_agent,
            ip=ctx.ip,
            country_code=self.geo.country_code(ctx.ip),
            permissions=Permission.owned_by(user.id),
            **detector.session_fields(),
        )
        self.store.create(session, ctx.skip())
        self.store.purge_cache(User, user.id)
        self._enforce_max_sessions(ctx, user, keep=session.id)

        self.emit(SESSION_CREATED, session, ctx)
        logger.info(
            f"Created session for user {user.id}",
            extra={"provider": provider, "factors": session.factors},
        )
        return session, secret

    def _enforce_max_sessions(self, ctx: CallerContext, user: User, keep: str) -> None:
        """Drop the oldest sessions beyond the project's cap."""
        limit = self.policy.max_sessions
        if limit <= 0:
            return
        sessions = self.store.find(UserSession, ctx.skip(), UserSession.user_id == user.id)
        excess = len(sessions) - limit
        for session in sessions:
            if excess <= 0:
                break
            if session.id == keep:
                continue
            self.store.delete(session, ctx.skip())
            excess -= 1

    def sessions_of(self, ctx: CallerContext, user: User) -> List[UserSession]:
        return self.store.find(UserSession, ctx.skip(), UserSession.user_id == user.id)

    def find_current(self, sessions: Iterable[UserSession], secret: str) -> Optional[str]:
        return find_current(sessions, secret, self.now())

    def current_session(self, ctx: CallerContext, user: User) -> Optional[UserSession]:
        """Session the request itself is authenticated with."""
        sessions = self.sessions_of(ctx, user)
        current_id = self.find_current(sessions, ctx.secret)
        return next((s for s in sessions if s.id == current_id), None)

    def serialize(self, session: UserSession, current_id: Optional[str]) -> Dict[str, Any]:
        """Public view of a session; secrets stay hidden."""
        data = session.to_dict()
        data["current"] = session.id == current_id
        return data

    def list_sessions(self, ctx: CallerContext, user: User) -> List[Dict[str, Any]]:
        """All of the user's sessions, the request's own flagged ``current``."""
        sessions = self.sessions_of(ctx, user)
        current_id = self.find_current(sessions, ctx.secret)
        return [self.serialize(session, current_id) for session in sessions]

    def get(self, ctx: CallerContext, user: User, session_id: str) -> UserSession:
        """Resolve ``session_id`` (or ``current``) to one of the user's sessions.

        Raises:
            NotFoundException: no such session for this user
        """
        sessions = self.sessions_of(ctx, user)
        if session_id == CURRENT:
            session_id = self.find_current(sessions, ctx.secret) or ""
        for session in sessions:
            if session.id == session_id:
                return session
        raise NotFoundException("The current user session could not be found.", "user_session_not_found")

    def add_factor(self, ctx: CallerContext, session: UserSession, factor: str) -> UserSession:
        """Append a satisfied factor; repeats leave the set unchanged."""
        if add_factor(session, factor):
            self.store.update(session, ctx.skip())
        return session

    def update(self, ctx: CallerContext, user: User, session_id: str) -> UserSession:
        """Extend expiry, refreshing stale OAuth2 provider tokens first."""
        session = self.get(ctx, user, session_id)
        now = self.now()

        stale = (
            session.provider_access_token_expiry is not None
            and is_expired(session.provider_access_token_expiry, now)
        )
        if session.provider in self.registry and session.provider_refresh_token and stale:
            self._refresh_provider_tokens(session)

        session.expire = expires_in(self.clock, self.policy.duration)
        self.store.update(session, ctx.skip())
        self.store.purge_cache(User, user.id)
        self.emit(SESSION_UPDATED, session, ctx)
        return session

    def _refresh_provider_tokens(self, session: UserSession) -> None:
        config = self.policy.provider(session.provider)
        with self.registry.create(
            session.provider,
            config.app_id if config else "",
            config.secret if config else "",
        ) as adapter:
            tokens = adapter.refresh_tokens(session.provider_refresh_token)
            session.provider_access_token = adapter.get_access_token("")
            session.provider_refresh_token = (
                tokens.get("refresh_token") or session.provider_refresh_token
            )
            session.provider_access_token_expiry = self.now() + timedelta(
                seconds=adapter.get_access_token_expiry("")
            )
        logger.info(
            "Refreshed provider tokens",
            extra={"session_id": session.id, "provider": session.provider},
        )

    def revoke(self, ctx: CallerContext, user: User, session_id: str) -> bool:
        """Delete one session; True when it was the request's own."""
        sessions = self.sessions_of(ctx, user)
        current_id = self.find_current(sessions, ctx.secret)
        if session_id == CURRENT:
            session_id = current_id or ""
        session = next((s for s in sessions if s.id == session_id), None)
        if session is None:
            raise NotFoundException("The current user session could not be found.", "user_session_not_found")

        self.emit(SESSION_DELETED, session, ctx)
        self.store.delete(session, ctx.skip())
        self.store.purge_cache(User, user.id)
        logger.info(f"Deleted session {session_id} for user {user.id}")
        return session_id == current_id

    def revoke_all(self, ctx: CallerContext, user: User) -> bool:
        """Delete every session; True when the request's own was among them."""
        sessions = self.sessions_of(ctx, user)
        current_id = self.find_current(sessions, ctx.secret)
        for session in sessions:
            self.emit(SESSION_DELETED, session, ctx)
            self.store.delete(session, ctx.skip())
        self.store.purge_cache(User, user.id)
        logger.info(f"Deleted {len(sessions)} sessions for user {user.id}")
        return current_id is not None

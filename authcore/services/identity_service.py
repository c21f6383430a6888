"""OAuth2 identity linking.

Reconciles an external provider subject with an internal user. Email
collisions with an identity or user that belongs to someone else are refused,
so a provider account cannot silently take over an existing user.
"""

from dataclasses import dataclass
from datetime import timedelta
from functools import cached_property
from typing import Any, Dict, List, Optional

from authcore.core.context import CallerContext, Permission
from authcore.core.events import IDENTITY_CREATED, IDENTITY_DELETED
from authcore.models import (
    Factor,
    Identity,
    MessageType,
    Target,
    Token,
    TokenType,
    User,
    UserSession,
)
from authcore.oauth2.base import OAuth2Adapter
from authcore.oauth2.registry import OAuth2Registry, default_registry
from authcore.services.base import BaseService
from authcore.services.credential_service import DEFAULT_ALGO, DEFAULT_ALGO_OPTIONS
from authcore.services.directory import UserDirectory
from authcore.services.session_service import SessionManager
from authcore.services.token_service import TOKEN_LENGTH_OAUTH2, TokenIssuer
from authcore.utils.exceptions import (
    AlreadyExistsException,
    BadRequestException,
    DisabledException,
    DuplicateException,
    NotFoundException,
    OAuth2ProviderException,
    UnauthorizedException,
    UserBlockedException,
)
from authcore.utils.id_generator import unique_id
from authcore.utils.logging import audit_logger, get_logger
from authcore.utils.url import is_valid_redirect, with_query

logger = get_logger(__name__)


@dataclass
class OAuth2Result:
    """Outcome of a provider callback."""

    user: User
    redirect: str
    session: Optional[UserSession] = None
    token: Optional[Token] = None
    secret: str = ""


class IdentityLinker(BaseService):
    """OAuth2 login, account linking and identity management."""

    @property
    def registry(self) -> OAuth2Registry:
        return self._extras.get("registry") or default_registry()

    @cached_property
    def sessions(self) -> SessionManager:
        return self.sibling(SessionManager)

    @cached_property
    def tokens(self) -> TokenIssuer:
        return self.sibling(TokenIssuer)

    @cached_property
    def directory(self) -> UserDirectory:
        return self.sibling(UserDirectory)

    def callback_url(self, provider: str) -> str:
        return f"{self.policy.url}/v1/account/sessions/oauth2/callback/{provider}/{self.policy.project_id}"

    def _adapter(self, provider: str, state: Optional[Dict[str, Any]] = None, scopes: Optional[List[str]] = None) -> OAuth2Adapter:
        config = self.policy.provider(provider)
        return self.registry.create(
            provider,
            config.app_id if config else "",
            config.secret if config else "",
            callback=self.callback_url(provider),
            state=state,
            scopes=scopes,
        )

    def _require_enabled(self, provider: str) -> None:
        config = self.policy.provider(provider)
        if config is None or not config.enabled:
            raise DisabledException(
                "This provider is disabled. Please enable the provider to continue.",
                "project_provider_disabled",
            )
        if not config.configured:
            raise DisabledException(
                "This provider is disabled. Please configure the provider app ID and app secret key to continue.",
                "project_provider_disabled",
            )

    def _validate_redirects(self, success: Any, failure: Any) -> None:
        """Redirects must be http(s) URLs on one of the project's hosts.

        Raises:
            BadRequestException: success or failure URL not allowed
        """
        hosts = self.policy.allowed_hostnames
        if not is_valid_redirect(success, hosts):
            raise BadRequestException(
                "Invalid redirect URL for OAuth success.", "project_invalid_success_url"
            )
        if failure and not is_valid_redirect(failure, hosts):
            raise BadRequestException(
                "Invalid redirect URL for OAuth failure.", "project_invalid_failure_url"
            )

    def create_login_url(
        self,
        provider: str,
        success: Optional[str] = None,
        failure: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        token: bool = False,
    ) -> str:
        """Provider authorization URL with the redirect state embedded.

        Raises:
            DisabledException: provider off or not configured
            BadRequestException: success or failure URL not allowed
        """
        self._require_enabled(provider)
        state = {
            "success": success or self.policy.url,
            "failure": failure or "",
            "token": token,
        }
        self._validate_redirects(state["success"], state["failure"])
        with self._adapter(provider, state=state, scopes=scopes) as adapter:
            return adapter.get_login_url()

    def handle_callback(
        self,
        ctx: CallerContext,
        provider: str,
        code: Optional[str],
        state: Optional[str] = None,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> OAuth2Result:
        """Finish an OAuth2 login and mint a session or an exchange token.

        Raises:
            BadRequestException: unparseable state, success or failure URL not
                allowed, or email held by another user's identity
            DisabledException: provider switched off
            OAuth2ProviderException: provider error, missing code or missing id
            AlreadyExistsException: email belongs to another account
            UserBlockedException: the resolved user is blocked
        """
        with self._adapter(provider) as adapter:
            parsed_state: Dict[str, Any] = {"success": self.policy.url, "failure": ""}
            if state:
                try:
                    parsed_state.update(adapter.parse_state(state))
                except ValueError as e:
                    raise BadRequestException(
                        "Failed to parse login state params as passed from OAuth2 provider",
                        "general_server_error",
                    ) from e
            self._validate_redirects(parsed_state.get("success"), parsed_state.get("failure"))

            config = self.policy.provider(provider)
            if config is None or not config.enabled:
                raise DisabledException(
                    "This provider is disabled. Please enable the provider to continue.",
                    "project_provider_disabled",
                )
            if error:
                message = f"The {provider} OAuth2 provider returned an error: {error}"
                if error_description:
                    message += f": {error_description}"
                raise OAuth2ProviderException(message)
            if not code:
                raise OAuth2ProviderException("Missing OAuth2 code.")

            access_token = adapter.get_access_token(code)
            refresh_token = adapter.get_refresh_token(code)
            expiry = self.now() + timedelta(seconds=adapter.get_access_token_expiry(code))

            provider_uid = adapter.get_user_id(access_token)
            if not provider_uid:
                raise OAuth2ProviderException("Missing ID from OAuth2 provider.", "user_missing_id")
            name = adapter.get_user_name(access_token)
            email = (adapter.get_user_email(access_token) or "").lower()
            email_verified = bool(email) and adapter.is_email_verified(access_token)
        system = ctx.skip()

        user: Optional[User] = None
        session_upgrade = False
        if ctx.is_authenticated:
            user = self.get_user(ctx, ctx.user_id)
            if email and self.store.find_one(
                Identity, system, Identity.provider_email == email, Identity.user_id != user.id
            ):
                raise AlreadyExistsException()
            if email and self.store.find_one(User, system, User.email == email, User.id != user.id):
                raise AlreadyExistsException()
            session_upgrade = True

            current = self.sessions.current_session(ctx, user)
            if current is not None:
                self.store.delete(current, system)
                self.store.purge_cache(User, user.id)

        if user is None:
            user = self._resolve_user(ctx, provider, provider_uid, email, name, email_verified)

        if not user.status:
            audit_logger.log_authentication(user.id, "oauth2", False, ctx.ip, {"provider": provider})
            raise UserBlockedException()

        self._link_identity(ctx, user, provider, provider_uid, email, access_token, refresh_token, expiry)

        if not user.email and email:
            user.email = email
        if not user.name and name:
            user.name = name
        user.status = True
        try:
            self.store.update(user, system)
        except DuplicateException as e:
            raise AlreadyExistsException() from e

        return self._finish(
            ctx, user, provider, provider_uid, parsed_state,
            access_token, refresh_token, expiry, session_upgrade,
        )

    def _resolve_user(
        self,
        ctx: CallerContext,
        provider: str,
        provider_uid: str,
        email: str,
        name: str,
        email_verified: bool = False,
    ) -> User:
        """Session by provider uid, then user by verified email, then identity; else create.

        An existing user is matched by email only when the provider vouches
        for the address.

        Raises:
            AlreadyExistsException: unverified provider email owned by a user
        """
        system = ctx.skip()
        session = self.store.find_one(
            UserSession,
            system,
            UserSession.provider == provider,
            UserSession.provider_uid == provider_uid,
        )
        if session is not None:
            user = self.store.get(User, session.user_id, system)
            if user is not None:
                return user

        if not email:
            raise UnauthorizedException("OAuth provider failed to return email.")

        by_email = self.store.find_one(User, system, User.email == email)
        if by_email is not None and email_verified:
            return by_email

        identity = self.store.find_one(
            Identity, system, Identity.provider == provider, Identity.provider_uid == provider_uid
        )
        if identity is not None:
            user = self.store.get(User, identity.user_id, system)
            if user is not None:
                return user

        if by_email is not None:
            logger.warning(
                "Unverified OAuth2 email matches an existing user",
                extra={"provider": provider, "user_id": by_email.id},
            )
            raise AlreadyExistsException(
                "A user with the same email already exists.", "user_email_already_exists"
            )

        return self._create_user(ctx, email, name)

    def _create_user(self, ctx: CallerContext, email: str, name: str) -> User:
        self.directory.ensure_capacity(ctx)
        self.directory.ensure_email_unclaimed(ctx, email)

        user = User(
            id=unique_id(),
            email=email,
            email_verification=True,
            status=True,
            hash=DEFAULT_ALGO,
            hash_options=dict(DEFAULT_ALGO_OPTIONS),
            name=name or None,
            mfa=False,
            prefs={},
            accessed_at=self.now(),
        )
        return self.directory.insert(ctx, user)

    def _link_identity(
        self,
        ctx: CallerContext,
        user: User,
        provider: str,
        provider_uid: str,
        email: str,
        access_token: str,
        refresh_token: str,
        expiry: Any,
    ) -> Identity:
        system = ctx.skip()
        identity = self.store.find_one(
            Identity,
            system,
            Identity.user_id == user.id,
            Identity.provider == provider,
            Identity.provider_uid == provider_uid,
        )
        if identity is None:
            if email and self.store.find_one(
                Identity, system, Identity.provider_email == email, Identity.user_id != user.id
            ):
                raise BadRequestException()

            identity = Identity(
                user_id=user.id,
                provider=provider,
                provider_uid=provider_uid,
                provider_email=email or None,
                provider_access_token=access_token,
                provider_refresh_token=refresh_token,
                provider_access_token_expiry=expiry,
                permissions=Permission.owned_by(user.id, public_read=True),
            )
            try:
                self.store.create(identity, system)
            except DuplicateException as e:
                # (provider, provider_uid) already bound to someone else
                raise AlreadyExistsException(
                    "The identity is already linked to another user.",
                    "user_identity_already_exists",
                ) from e
            self.emit(IDENTITY_CREATED, identity, ctx)
        else:
            identity.provider_access_token = access_token
            identity.provider_refresh_token = refresh_token
            identity.provider_access_token_expiry = expiry
            self.store.update(identity, system)
        return identity

    def _finish(
        self,
        ctx: CallerContext,
        user: User,
        provider: str,
        provider_uid: str,
        state: Dict[str, Any],
        access_token: str,
        refresh_token: str,
        expiry: Any,
        session_upgrade: bool,
    ) -> OAuth2Result:
        success = str(state.get("success") or self.policy.url)
        acting = ctx.with_user(user.id)

        if state.get("token"):
            token, secret = self.tokens.issue(
                acting, user, TokenType.OAUTH2, length=TOKEN_LENGTH_OAUTH2, ttl=self.policy.duration
            )
            audit_logger.log_authentication(user.id, "oauth2_token", True, ctx.ip, {"provider": provider})
            return OAuth2Result(
                user=user,
                token=token,
                secret=secret,
                redirect=with_query(success, {"secret": secret, "userId": user.id}),
            )

        session, secret = self.sessions.create(
            acting,
            user,
            provider=provider,
            factors=[Factor.EMAIL.value, Factor.OAUTH2.value],
            provider_uid=provider_uid,
            provider_access_token=access_token,
            provider_refresh_token=refresh_token,
            provider_access_token_expiry=expiry,
        )

        if session_upgrade:
            for target in self.store.find(
                Target,
                ctx.skip(),
                Target.user_id == user.id,
                Target.provider_type == MessageType.PUSH.value,
            ):
                target.session_id = session.id
                self.store.update(target, ctx.skip())

        self.store.purge_cache(User, user.id)
        audit_logger.log_authentication(user.id, "oauth2_session", True, ctx.ip, {"provider": provider})
        return OAuth2Result(user=user, session=session, secret=secret, redirect=success)

    def list_identities(self, ctx: CallerContext, user: User) -> List[Identity]:
        return self.store.find(Identity, ctx.skip(), Identity.user_id == user.id)

    def delete_identity(
        self, ctx: CallerContext, identity_id: str, user: Optional[User] = None
    ) -> None:
        """Remove an identity; with ``user`` it must belong to that user.

        Raises:
            NotFoundException: unknown identity
        """
        filters = [Identity.id == identity_id]
        if user is not None:
            filters.append(Identity.user_id == user.id)
        identity = self.store.find_one(Identity, ctx.skip(), *filters)
        if identity is None:
            raise NotFoundException("The identity could not be found.", "user_identity_not_found")
        self.emit(IDENTITY_DELETED, identity, ctx)
        self.store.delete(identity, ctx.skip())
        self.store.purge_cache(User, identity.user_id)

"""Self-service account operations.

Everything a client application does on behalf of its own user: sign-up,
profile and credential changes, email/phone verification, password recovery,
password, anonymous and token-based logins, and session management.
"""

from functools import cached_property
from typing import Any, Dict, List, Optional, Tuple

from authcore.core.context import CallerContext
from authcore.core.events import USER_DELETED, USER_UPDATED
from authcore.core.messaging import CHANNEL_EMAIL, CHANNEL_SMS, OutboundMessage
from authcore.models import (
    Factor,
    Identity,
    MessageType,
    SessionProvider,
    Token,
    TokenType,
    User,
    UserSession,
)
from authcore.services.base import BaseService
from authcore.services.credential_service import (
    DEFAULT_ALGO,
    DEFAULT_ALGO_OPTIONS,
    CredentialManager,
    PersonalDataValidator,
    validate_password,
)
from authcore.services.directory import UserDirectory
from authcore.services.identity_service import IdentityLinker
from authcore.services.mfa_service import MfaEngine
from authcore.services.session_service import SessionManager
from authcore.services.token_service import (
    TOKEN_EXPIRATION_CONFIRM,
    TOKEN_LENGTH_MAGIC_URL,
    TokenIssuer,
    factor_for,
    session_provider_for,
)
from authcore.utils.exceptions import (
    AlreadyExistsException,
    AlreadyVerifiedException,
    BadRequestException,
    DisabledException,
    DuplicateException,
    InvalidCredentialsException,
    InvalidTokenException,
    NotFoundException,
    PasswordRecentlyUsedException,
    UnauthorizedException,
    UserBlockedException,
)
from authcore.utils.id_generator import phrase_generator, resolve_id
from authcore.utils.logging import audit_logger, get_logger
from authcore.utils.url import with_query

logger = get_logger(__name__)

# Token kinds that may be exchanged for a session
SESSION_TOKEN_TYPES = (
    TokenType.MAGIC_URL,
    TokenType.OAUTH2,
    TokenType.EMAIL,
    TokenType.PHONE,
    TokenType.GENERIC,
)


class AccountService(BaseService):
    """Operations a user performs on their own account."""

    @cached_property
    def credentials(self) -> CredentialManager:
        return CredentialManager()

    @cached_property
    def tokens(self) -> TokenIssuer:
        return self.sibling(TokenIssuer)

    @cached_property
    def sessions(self) -> SessionManager:
        return self.sibling(SessionManager)

    @cached_property
    def mfa(self) -> MfaEngine:
        return self.sibling(MfaEngine)

    @cached_property
    def identities(self) -> IdentityLinker:
        return self.sibling(IdentityLinker)

    @cached_property
    def directory(self) -> UserDirectory:
        return self.sibling(UserDirectory)

    # Helpers

    def current_user(self, ctx: CallerContext) -> User:
        """The authenticated caller's user record.

        Raises:
            UnauthorizedException: guest caller
        """
        if not ctx.is_authenticated:
            raise UnauthorizedException()
        return self.get_user(ctx, ctx.user_id)

    def _require_smtp(self) -> None:
        if not self.policy.smtp_enabled:
            raise DisabledException("SMTP disabled", "general_smtp_disabled")

    def _require_sms(self) -> None:
        if not self.policy.sms_enabled:
            raise DisabledException("Phone authentication is disabled.", "general_phone_disabled")

    def _check_personal_data(self, user: User, password: str) -> None:
        if self.policy.personal_data_check:
            PersonalDataValidator(
                user.id, user.email, user.name, user.phone, strict=False
            ).validate(password)

    def _set_password(self, user: User, password: str) -> None:
        """Hash with the default algorithm and roll the history window."""
        validate_password(password)
        limit = self.policy.password_history
        if limit > 0 and not self.credentials.is_valid_against_history(
            password, user.password_history or [], user.hash, user.hash_options
        ):
            raise PasswordRecentlyUsedException()
        self._check_personal_data(user, password)

        digest = self.credentials.hash(password, DEFAULT_ALGO, DEFAULT_ALGO_OPTIONS)
        user.password_history = self.credentials.append_history(
            user.password_history or [], digest, limit
        )
        user.password = digest
        user.hash = DEFAULT_ALGO
        user.hash_options = dict(DEFAULT_ALGO_OPTIONS)
        user.password_update = self.now()

    def _save(self, ctx: CallerContext, user: User, duplicate: Optional[Exception] = None) -> User:
        try:
            self.store.update(user, ctx.skip())
        except DuplicateException as e:
            raise (duplicate or AlreadyExistsException()) from e
        self.emit(USER_UPDATED, user, ctx)
        return user

    def _new_user(self, user_id: Optional[str], **fields: Any) -> User:
        return User(
            id=resolve_id(user_id),
            status=True,
            hash=DEFAULT_ALGO,
            hash_options=dict(DEFAULT_ALGO_OPTIONS),
            mfa=False,
            prefs={},
            accessed_at=self.now(),
            **fields,
        )

    def _login(
        self,
        ctx: CallerContext,
        user: User,
        provider: str,
        factors: List[str],
        alert: bool = False,
    ) -> Tuple[UserSession, str]:
        """Create a session for ``user`` and send a sign-in alert if enabled."""
        had_sessions = bool(self.sessions.sessions_of(ctx, user))
        user.accessed_at = self.now()
        self.store.update(user, ctx.skip())

        session, secret = self.sessions.create(ctx.with_user(user.id), user, provider, factors)
        if alert and had_sessions:
            self._send_session_alert(user, session)
        audit_logger.log_authentication(user.id, provider, True, ctx.ip)
        return session, secret

    def _send_session_alert(self, user: User, session: UserSession) -> None:
        if not (self.policy.session_alerts and self.policy.smtp_enabled and user.email):
            return
        self.queue.enqueue(
            OutboundMessage(
                channel=CHANNEL_EMAIL,
                recipient=user.email,
                subject=f"Security alert: new session on your {self.policy.name} account",
                body="A new session was created on your account.",
                template="email.session_alert",
                variables={
                    "name": user.name or "",
                    "project": self.policy.name,
                    "client": session.client_name or "",
                    "os": session.os_name or "",
                    "device": session.device_name or "",
                    "country": session.country_code or "",
                    "ip": session.ip or "",
                },
            )
        )

    # Account

    def create_account(
        self,
        ctx: CallerContext,
        user_id: Optional[str],
        email: str,
        password: str,
        name: Optional[str] = None,
    ) -> User:
        """Sign up with email and password.

        Raises:
            LimitExceededException: project user cap reached
            BadRequestException: an OAuth2 identity already uses the email
            PersonalDataException: password contains personal data
            AlreadyExistsException: id or email already taken
        """
        email = email.lower().strip()
        self.directory.ensure_capacity(ctx)
        self.directory.ensure_email_unclaimed(ctx, email)
        validate_password(password)

        user = self._new_user(
            user_id,
            email=email,
            name=name,
            email_verification=False,
            phone_verification=False,
        )
        self._check_personal_data(user, password)

        digest = self.credentials.hash(password, DEFAULT_ALGO, DEFAULT_ALGO_OPTIONS)
        user.password = digest
        user.password_update = self.now()
        user.password_history = [digest] if self.policy.password_history > 0 else []

        return self.directory.insert(ctx, user)

    def get_account(self, ctx: CallerContext) -> User:
        return self.current_user(ctx)

    def update_name(self, ctx: CallerContext, name: str) -> User:
        user = self.current_user(ctx)
        user.name = name
        return self._save(ctx, user)

    def update_prefs(self, ctx: CallerContext, prefs: Dict[str, Any]) -> User:
        """Replace the user's free-form preference map."""
        user = self.current_user(ctx)
        user.prefs = dict(prefs)
        return self._save(ctx, user)

    def update_password(
        self, ctx: CallerContext, password: str, old_password: Optional[str] = None
    ) -> User:
        """Change the password; users who already have one must supply it.

        Raises:
            InvalidCredentialsException: old password wrong
            PasswordRecentlyUsedException: new password is in the history
        """
        user = self.current_user(ctx)
        if user.password_update and not self.credentials.verify(
            old_password or "", user.password, user.hash, user.hash_options
        ):
            raise InvalidCredentialsException()

        self._set_password(user, password)
        self._save(ctx, user)
        logger.info(f"Password changed for user {user.id}")
        return user

    def update_email(self, ctx: CallerContext, email: str, password: str) -> User:
        """Change the email, resetting its verification.

        Anonymous users (no password yet) set their password here.
        """
        user = self.current_user(ctx)
        email = email.lower().strip()
        has_password = bool(user.password_update)
        if has_password and not self.credentials.verify(
            password, user.password, user.hash, user.hash_options
        ):
            raise InvalidCredentialsException()

        self.directory.ensure_email_unclaimed(ctx, email, exclude_user_id=user.id)

        old_email = user.email
        user.email = email
        user.email_verification = False
        if not has_password:
            self._set_password(user, password)

        self._save(
            ctx,
            user,
            AlreadyExistsException(
                "A user with the same email already exists.", "user_email_already_exists"
            ),
        )
        self.directory.move_target(ctx, user, MessageType.EMAIL.value, old_email, email)
        return user

    def update_phone(self, ctx: CallerContext, phone: str, password: str) -> User:
        """Change the phone number, resetting its verification."""
        user = self.current_user(ctx)
        if user.password_update and not self.credentials.verify(
            password, user.password, user.hash, user.hash_options
        ):
            raise InvalidCredentialsException()

        old_phone = user.phone
        user.phone = phone
        user.phone_verification = False

        self._save(
            ctx,
            user,
            AlreadyExistsException(
                "A user with the same phone number already exists.", "user_phone_already_exists"
            ),
        )
        self.directory.move_target(ctx, user, MessageType.SMS.value, old_phone, phone)
        return user

    def update_status(self, ctx: CallerContext) -> User:
        """Block the caller's own account and end all of its sessions."""
        user = self.current_user(ctx)
        user.status = False
        self._save(ctx, user)
        self.sessions.revoke_all(ctx, user)
        logger.info(f"User {user.id} blocked their account")
        return user

    def delete_account(self, ctx: CallerContext) -> None:
        """Delete the caller and everything they own.

        Raises:
            UserBlockedException: blocked accounts cannot delete themselves
        """
        user = self.current_user(ctx)
        if not user.status:
            raise UserBlockedException()
        self.emit(USER_DELETED, user, ctx)
        self.store.delete(user, ctx.skip())
        logger.info(f"Deleted account {user.id}")

    # Verification

    def create_email_verification(self, ctx: CallerContext, url: str) -> Token:
        """Send a verification link to the caller's email."""
        self._require_smtp()
        user = self.current_user(ctx)
        if not user.email:
            raise NotFoundException("Email could not be found.", "user_email_not_found")
        if user.email_verification:
            raise AlreadyVerifiedException(
                "The email is already verified.", "user_email_already_verified"
            )

        token, secret = self.tokens.issue(ctx, user, TokenType.VERIFICATION)
        link = with_query(
            url,
            {"userId": user.id, "secret": secret, "expire": token.expire.isoformat()},
        )
        self.queue.enqueue(
            OutboundMessage(
                channel=CHANNEL_EMAIL,
                recipient=user.email,
                subject=f"Verify your email for {self.policy.name}",
                body=f"Follow this link to verify your email address: {link}",
                template="email.verification",
                variables={"url": link, "secret": secret, "user_id": user.id, "name": user.name or ""},
            )
        )
        return token

    def update_email_verification(self, ctx: CallerContext, user_id: str, secret: str) -> User:
        """Redeem a verification token.

        Raises:
            InvalidTokenException: unknown or expired secret
        """
        user = self.get_user(ctx, user_id)
        token = self.tokens.find_valid(ctx, user, secret, TokenType.VERIFICATION.value)

        user.email_verification = True
        self._save(ctx, user)
        self.tokens.consume(ctx, token)
        return user

    def create_phone_verification(self, ctx: CallerContext) -> Token:
        """Text a verification code to the caller's phone."""
        self._require_sms()
        user = self.current_user(ctx)
        if not user.phone:
            raise NotFoundException("Phone number could not be found.", "user_phone_not_found")
        if user.phone_verification:
            raise AlreadyVerifiedException(
                "The phone number is already verified.", "user_phone_already_verified"
            )

        return self._issue_phone_token(ctx, user, ttl=TOKEN_EXPIRATION_CONFIRM)

    def update_phone_verification(self, ctx: CallerContext, user_id: str, secret: str) -> User:
        user = self.get_user(ctx, user_id)
        token = self.tokens.find_valid(ctx, user, secret, TokenType.PHONE.value)

        user.phone_verification = True
        self._save(ctx, user)
        self.tokens.consume(ctx, token)
        return user

    def _issue_phone_token(self, ctx: CallerContext, user: User, ttl: Optional[int] = None) -> Token:
        mock_code = self.policy.mock_numbers.get(user.phone)
        token, secret = self.tokens.issue(ctx, user, TokenType.PHONE, ttl=ttl, secret=mock_code)
        if mock_code is None:
            self.queue.enqueue(
                OutboundMessage(
                    channel=CHANNEL_SMS,
                    recipient=user.phone,
                    body=f"{secret} is your {self.policy.name} verification code.",
                    template="sms.verification",
                    variables={"secret": secret, "user_id": user.id},
                )
            )
        return token

    # Recovery

    def create_recovery(self, ctx: CallerContext, email: str, url: str) -> Token:
        """Mail a password-reset link.

        Raises:
            NotFoundException: no user with this email
            UserBlockedException: user is blocked
        """
        self._require_smtp()
        if not url:
            raise BadRequestException("A recovery URL is required.")
        user = self.directory.find_by_email(ctx, email)
        if user is None:
            raise NotFoundException("User with the requested ID could not be found.", "user_not_found")
        if not user.status:
            raise UserBlockedException()

        token, secret = self.tokens.issue(ctx, user, TokenType.RECOVERY)
        link = with_query(
            url,
            {"userId": user.id, "secret": secret, "expire": token.expire.isoformat()},
        )
        self.queue.enqueue(
            OutboundMessage(
                channel=CHANNEL_EMAIL,
                recipient=user.email,
                subject=f"Password reset for {self.policy.name}",
                body=f"Follow this link to reset your password: {link}",
                template="email.recovery",
                variables={"url": link, "secret": secret, "user_id": user.id, "name": user.name or ""},
            )
        )
        logger.info(f"Recovery requested for user {user.id}")
        return token

    def update_recovery(
        self, ctx: CallerContext, user_id: str, secret: str, password: str
    ) -> User:
        """Reset the password with a recovery token.

        Raises:
            InvalidTokenException: unknown user, unknown or expired secret
            PasswordRecentlyUsedException: password is in the history
        """
        user = self.store.get(User, user_id, ctx.skip())
        if user is None:
            raise InvalidTokenException()
        token = self.tokens.find_valid(ctx, user, secret, TokenType.RECOVERY.value)

        self._set_password(user, password)
        # Receiving the recovery mail proves the address
        user.email_verification = True
        self._save(ctx, user)
        self.tokens.consume(ctx, token)
        logger.info(f"Password recovered for user {user.id}")
        return user

    # Logins

    def create_email_password_session(
        self, ctx: CallerContext, email: str, password: str
    ) -> Tuple[UserSession, str]:
        """Password login; legacy hashes are upgraded after a match.

        Raises:
            InvalidCredentialsException: unknown email or wrong password
            UserBlockedException: user is blocked
        """
        email = email.lower().strip()
        user = self.directory.find_by_email(ctx, email)
        if (
            user is None
            or not user.password_update
            or not self.credentials.verify(password, user.password, user.hash, user.hash_options)
        ):
            logger.warning("Authentication failed", extra={"email_domain": email.split("@")[-1]})
            audit_logger.log_authentication(user.id if user else None, "email", False, ctx.ip)
            raise InvalidCredentialsException()

        if not user.status:
            raise UserBlockedException()

        if self.credentials.needs_upgrade(user.hash):
            user.password = self.credentials.hash(password, DEFAULT_ALGO, DEFAULT_ALGO_OPTIONS)
            user.hash = DEFAULT_ALGO
            user.hash_options = dict(DEFAULT_ALGO_OPTIONS)
            logger.info(f"Upgraded password hash for user {user.id}")

        return self._login(
            ctx, user, SessionProvider.EMAIL.value, [Factor.PASSWORD.value], alert=True
        )

    def create_anonymous_session(self, ctx: CallerContext) -> Tuple[UserSession, str]:
        """Create a throwaway user and log it in."""
        if ctx.is_authenticated:
            raise AlreadyExistsException(
                "Cannot create an anonymous user when logged in.",
                "user_session_already_exists",
            )
        self.directory.ensure_capacity(ctx)
        user = self.directory.insert(ctx, self._new_user(None))
        return self._login(ctx, user, SessionProvider.ANONYMOUS.value, [Factor.ANONYMOUS.value])

    def create_session_from_token(
        self, ctx: CallerContext, user_id: str, secret: str
    ) -> Tuple[UserSession, str]:
        """Exchange a magic-url, email, phone, OAuth2 or generic token for a session.

        The session is created first, then the token is deleted; both belong to
        the caller's transaction.

        Raises:
            InvalidTokenException: unknown user, unknown or expired secret
        """
        user = self.store.get(User, user_id, ctx.skip())
        if user is None:
            raise InvalidTokenException()
        token = self.tokens.find_valid(ctx, user, secret)
        if token.type not in [t.value for t in SESSION_TOKEN_TYPES]:
            raise InvalidTokenException()
        if not user.status:
            raise UserBlockedException()

        token_type = token.type
        if token_type in (TokenType.MAGIC_URL.value, TokenType.EMAIL.value):
            user.email_verification = True
        if token_type == TokenType.PHONE.value:
            user.phone_verification = True

        session, session_secret = self._login(
            ctx,
            user,
            session_provider_for(token_type),
            [factor_for(token_type)],
            alert=token_type not in (TokenType.MAGIC_URL.value, TokenType.EMAIL.value),
        )
        self.tokens.consume(ctx, token)
        return session, session_secret

    def _find_or_create_by_email(
        self, ctx: CallerContext, user_id: Optional[str], email: str, collision: Exception
    ) -> User:
        user = self.directory.find_by_email(ctx, email)
        if user is not None:
            return user
        self.directory.ensure_capacity(ctx)
        self.directory.ensure_email_unclaimed(ctx, email, error=collision)
        return self.directory.insert(
            ctx, self._new_user(user_id, email=email, email_verification=False)
        )

    def create_magic_url_token(
        self,
        ctx: CallerContext,
        user_id: Optional[str],
        email: str,
        url: Optional[str] = None,
        phrase: bool = False,
    ) -> Token:
        """Mail a one-click login link, creating the user on first use."""
        self._require_smtp()
        email = email.lower().strip()
        user = self._find_or_create_by_email(
            ctx,
            user_id,
            email,
            AlreadyExistsException(
                "A user with the same email already exists.", "user_email_already_exists"
            ),
        )

        security_phrase = phrase_generator() if phrase else None
        token, secret = self.tokens.issue(
            ctx, user, TokenType.MAGIC_URL, length=TOKEN_LENGTH_MAGIC_URL, phrase=security_phrase
        )
        link = with_query(
            url or f"{self.policy.url}/auth/magic-url",
            {
                "userId": user.id,
                "secret": secret,
                "expire": token.expire.isoformat(),
                "project": self.policy.project_id,
            },
        )
        self.queue.enqueue(
            OutboundMessage(
                channel=CHANNEL_EMAIL,
                recipient=email,
                subject=f"{self.policy.name} login",
                body=f"Follow this link to sign in: {link}",
                template="email.magic_session",
                variables={"url": link, "secret": secret, "phrase": security_phrase or ""},
            )
        )
        return token

    def create_email_token(
        self,
        ctx: CallerContext,
        user_id: Optional[str],
        email: str,
        phrase: bool = False,
    ) -> Token:
        """Mail a six-digit login code, creating the user on first use."""
        self._require_smtp()
        email = email.lower().strip()
        user = self._find_or_create_by_email(ctx, user_id, email, BadRequestException())

        security_phrase = phrase_generator() if phrase else None
        token, secret = self.tokens.issue(ctx, user, TokenType.EMAIL, phrase=security_phrase)
        self.queue.enqueue(
            OutboundMessage(
                channel=CHANNEL_EMAIL,
                recipient=email,
                subject=f"{self.policy.name} login code",
                body=f"Your login code is {secret}.",
                template="email.otp_session",
                variables={"secret": secret, "phrase": security_phrase or ""},
            )
        )
        return token

    def create_phone_token(
        self, ctx: CallerContext, user_id: Optional[str], phone: str
    ) -> Token:
        """Text a login code, creating the user on first use."""
        self._require_sms()
        user = self.directory.find_by_phone(ctx, phone)
        if user is None:
            self.directory.ensure_capacity(ctx)
            user = self.directory.insert(
                ctx, self._new_user(user_id, phone=phone, phone_verification=False)
            )
        return self._issue_phone_token(ctx, user)

    # Sessions

    def list_sessions(self, ctx: CallerContext) -> List[Dict[str, Any]]:
        return self.sessions.list_sessions(ctx, self.current_user(ctx))

    def get_session(self, ctx: CallerContext, session_id: str) -> Dict[str, Any]:
        user = self.current_user(ctx)
        session = self.sessions.get(ctx, user, session_id)
        current_id = self.sessions.find_current([session], ctx.secret)
        return self.sessions.serialize(session, current_id)

    def update_session(self, ctx: CallerContext, session_id: str) -> UserSession:
        return self.sessions.update(ctx, self.current_user(ctx), session_id)

    def delete_session(self, ctx: CallerContext, session_id: str) -> bool:
        """True when the request's own session went, so its cookie must be cleared."""
        return self.sessions.revoke(ctx, self.current_user(ctx), session_id)

    def delete_sessions(self, ctx: CallerContext) -> bool:
        return self.sessions.revoke_all(ctx, self.current_user(ctx))

    # Identities and MFA

    def list_identities(self, ctx: CallerContext) -> List[Identity]:
        return self.identities.list_identities(ctx, self.current_user(ctx))

    def delete_identity(self, ctx: CallerContext, identity_id: str) -> None:
        self.identities.delete_identity(ctx, identity_id, self.current_user(ctx))

    def update_mfa(self, ctx: CallerContext, enabled: bool) -> User:
        return self.mfa.update_mfa(ctx, self.current_user(ctx), enabled)

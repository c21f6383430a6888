"""Server-side user administration.

These operations run with an API-key (elevated) context and act on any user
of the project.
"""

from functools import cached_property
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_

from authcore.core.context import CallerContext
from authcore.core.events import USER_DELETED, USER_UPDATED
from authcore.models import (
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
    PLAINTEXT,
    PersonalDataValidator,
    validate_password,
)
from authcore.services.directory import UserDirectory
from authcore.services.identity_service import IdentityLinker
from authcore.services.mfa_service import MfaEngine
from authcore.services.session_service import SessionManager
from authcore.services.token_service import TOKEN_EXPIRATION_GENERIC, TokenIssuer
from authcore.utils.exceptions import (
    AlreadyExistsException,
    BadRequestException,
    DuplicateException,
    PasswordRecentlyUsedException,
    UnauthorizedException,
)
from authcore.utils.id_generator import resolve_id
from authcore.utils.logging import get_logger

logger = get_logger(__name__)

LABEL_MAX_LENGTH = 36
LABELS_MAX = 1000


class UsersService(BaseService):
    """Admin operations on the project's users."""

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

    def _require_server(self, ctx: CallerContext) -> None:
        if not ctx.elevated:
            raise UnauthorizedException()

    def get_user(self, ctx: CallerContext, user_id: Optional[str]) -> User:
        self._require_server(ctx)
        return super().get_user(ctx, user_id)

    def _save(self, ctx: CallerContext, user: User, duplicate: Optional[Exception] = None) -> User:
        try:
            self.store.update(user, ctx)
        except DuplicateException as e:
            raise (duplicate or AlreadyExistsException()) from e
        self.emit(USER_UPDATED, user, ctx)
        return user

    # Users

    def create_user(
        self,
        ctx: CallerContext,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        password: Optional[str] = None,
        name: Optional[str] = None,
        hash_algo: str = DEFAULT_ALGO,
        hash_options: Optional[Dict[str, Any]] = None,
    ) -> User:
        """Create a user, optionally importing an already-hashed password.

        With ``hash_algo`` other than argon2 (or ``plaintext``), ``password`` is
        stored as given and rehashed at the user's first successful login.

        Raises:
            AlreadyExistsException: id, email or phone already taken
        """
        self._require_server(ctx)
        algo, options = self.credentials.normalize(hash_algo, hash_options)
        imported = hash_algo not in (DEFAULT_ALGO, PLAINTEXT, None, "")
        if algo == DEFAULT_ALGO and hash_options is None:
            options = dict(DEFAULT_ALGO_OPTIONS)

        if email:
            email = email.lower().strip()
            self.directory.ensure_email_unclaimed(ctx, email)

        user = User(
            id=resolve_id(user_id),
            email=email,
            phone=phone,
            name=name,
            email_verification=False,
            phone_verification=False,
            status=True,
            mfa=False,
            prefs={},
            labels=[],
            hash=algo,
            hash_options=options,
        )

        if password:
            if imported:
                user.password = password
            else:
                validate_password(password)
                if self.policy.personal_data_check:
                    PersonalDataValidator(user.id, email, name, phone).validate(password)
                user.password = self.credentials.hash(password, algo, options)
            user.password_update = self.now()
            user.password_history = (
                [user.password] if self.policy.password_history > 0 and not imported else []
            )

        return self.directory.insert(ctx, user)

    def list_users(
        self,
        ctx: CallerContext,
        search: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[User]:
        """Users in creation order, optionally filtered by a name/email/phone substring."""
        self._require_server(ctx)
        filters = []
        if search:
            pattern = f"%{search}%"
            filters.append(
                or_(User.name.ilike(pattern), User.email.ilike(pattern), User.phone.ilike(pattern))
            )
        return self.store.find(User, ctx, *filters, limit=limit)

    def update_status(self, ctx: CallerContext, user_id: str, status: bool) -> User:
        """Block or unblock; blocking ends every session."""
        user = self.get_user(ctx, user_id)
        user.status = status
        self._save(ctx, user)
        if not status:
            self.sessions.revoke_all(ctx, user)
        return user

    def update_labels(self, ctx: CallerContext, user_id: str, labels: List[str]) -> User:
        """Replace labels; each must be alphanumeric and at most 36 characters."""
        user = self.get_user(ctx, user_id)
        if len(labels) > LABELS_MAX:
            raise BadRequestException(f"A user may have at most {LABELS_MAX} labels.")
        for label in labels:
            if not label.isalnum() or len(label) > LABEL_MAX_LENGTH:
                raise BadRequestException(f"Invalid label {label!r}.", "label_invalid")
        user.labels = list(dict.fromkeys(labels))
        return self._save(ctx, user)

    def update_name(self, ctx: CallerContext, user_id: str, name: str) -> User:
        user = self.get_user(ctx, user_id)
        user.name = name
        return self._save(ctx, user)

    def update_password(self, ctx: CallerContext, user_id: str, password: str) -> User:
        """Set a new password; an empty one clears it.

        Raises:
            PasswordRecentlyUsedException: password is in the history
        """
        user = self.get_user(ctx, user_id)
        if not password:
            user.password = None
            user.password_update = self.now()
            return self._save(ctx, user)

        validate_password(password)
        limit = self.policy.password_history
        if limit > 0 and not self.credentials.is_valid_against_history(
            password, user.password_history or [], user.hash, user.hash_options
        ):
            raise PasswordRecentlyUsedException()
        if self.policy.personal_data_check:
            PersonalDataValidator(user.id, user.email, user.name, user.phone).validate(password)

        digest = self.credentials.hash(password, DEFAULT_ALGO, DEFAULT_ALGO_OPTIONS)
        user.password = digest
        user.hash = DEFAULT_ALGO
        user.hash_options = dict(DEFAULT_ALGO_OPTIONS)
        user.password_update = self.now()
        user.password_history = self.credentials.append_history(
            user.password_history or [], digest, limit
        )
        return self._save(ctx, user)

    def update_email(self, ctx: CallerContext, user_id: str, email: str) -> User:
        user = self.get_user(ctx, user_id)
        email = email.lower().strip()
        self.directory.ensure_email_unclaimed(ctx, email, exclude_user_id=user.id)

        old_email = user.email
        user.email = email
        user.email_verification = False
        self._save(
            ctx,
            user,
            AlreadyExistsException(
                "A user with the same email already exists.", "user_email_already_exists"
            ),
        )
        self.directory.move_target(ctx, user, MessageType.EMAIL.value, old_email, email)
        return user

    def update_phone(self, ctx: CallerContext, user_id: str, phone: str) -> User:
        user = self.get_user(ctx, user_id)
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

    def update_email_verification(self, ctx: CallerContext, user_id: str, verified: bool) -> User:
        user = self.get_user(ctx, user_id)
        user.email_verification = verified
        return self._save(ctx, user)

    def update_phone_verification(self, ctx: CallerContext, user_id: str, verified: bool) -> User:
        user = self.get_user(ctx, user_id)
        user.phone_verification = verified
        return self._save(ctx, user)

    def update_prefs(self, ctx: CallerContext, user_id: str, prefs: Dict[str, Any]) -> User:
        user = self.get_user(ctx, user_id)
        user.prefs = dict(prefs)
        return self._save(ctx, user)

    def delete_user(self, ctx: CallerContext, user_id: str) -> None:
        """Delete the user with its sessions, tokens, targets and identities."""
        user = self.get_user(ctx, user_id)
        self.emit(USER_DELETED, user, ctx)
        self.store.delete(user, ctx)
        logger.info(f"Deleted user {user_id}")

    # Sessions and tokens

    def create_session(self, ctx: CallerContext, user_id: str) -> Tuple[UserSession, str]:
        """Mint a session for the user without any credential check."""
        user = self.get_user(ctx, user_id)
        return self.sessions.create(ctx, user, SessionProvider.SERVER.value, [])

    def create_token(
        self,
        ctx: CallerContext,
        user_id: str,
        length: int = 6,
        expire: int = TOKEN_EXPIRATION_GENERIC,
    ) -> Tuple[Token, str]:
        """Generic token the user can exchange for a session."""
        user = self.get_user(ctx, user_id)
        if not 4 <= length <= 128:
            raise BadRequestException("Token length must be between 4 and 128.")
        if not 60 <= expire <= self.policy.duration:
            raise BadRequestException("Token expiry is out of range.")
        return self.tokens.issue(ctx, user, TokenType.GENERIC, length=length, ttl=expire)

    def list_sessions(self, ctx: CallerContext, user_id: str) -> List[Dict[str, Any]]:
        return self.sessions.list_sessions(ctx, self.get_user(ctx, user_id))

    def delete_session(self, ctx: CallerContext, user_id: str, session_id: str) -> None:
        self.sessions.revoke(ctx, self.get_user(ctx, user_id), session_id)

    def delete_sessions(self, ctx: CallerContext, user_id: str) -> None:
        self.sessions.revoke_all(ctx, self.get_user(ctx, user_id))

    # MFA

    def update_mfa_status(self, ctx: CallerContext, user_id: str, enabled: bool) -> User:
        return self.mfa.update_mfa(ctx, self.get_user(ctx, user_id), enabled)

    def list_mfa_factors(self, ctx: CallerContext, user_id: str) -> Dict[str, bool]:
        return self.mfa.list_factors(ctx, self.get_user(ctx, user_id))

    def get_mfa_recovery_codes(self, ctx: CallerContext, user_id: str) -> List[str]:
        return self.mfa.get_recovery_codes(ctx, self.get_user(ctx, user_id))

    def create_mfa_recovery_codes(self, ctx: CallerContext, user_id: str) -> List[str]:
        return self.mfa.create_recovery_codes(ctx, self.get_user(ctx, user_id))

    def update_mfa_recovery_codes(self, ctx: CallerContext, user_id: str) -> List[str]:
        return self.mfa.update_recovery_codes(ctx, self.get_user(ctx, user_id))

    def delete_mfa_authenticator(self, ctx: CallerContext, user_id: str, auth_type: str) -> None:
        self.mfa.delete_authenticator(ctx, self.get_user(ctx, user_id), auth_type)

    # Identities

    def list_identities(self, ctx: CallerContext, user_id: Optional[str] = None) -> List[Identity]:
        """Identities of one user, or of the whole project."""
        self._require_server(ctx)
        if user_id is None:
            return self.store.find(Identity, ctx)
        return self.identities.list_identities(ctx, self.get_user(ctx, user_id))

    def delete_identity(self, ctx: CallerContext, identity_id: str) -> None:
        self._require_server(ctx)
        self.identities.delete_identity(ctx, identity_id)

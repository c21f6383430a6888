"""Single-use token issuance and consumption.

A token is Created, then either Verified-and-Consumed or left to expire.
Only the SHA-256 of the secret is stored; the plaintext goes back to the
caller once, for delivery by mail, SMS or redirect URL.

Consumption runs act-then-delete inside the caller's transaction: the state
change the token gates is flushed first, then the token row is deleted. Both
commit or roll back together with the surrounding unit of work.
"""

from datetime import datetime
from typing import Iterable, Optional, Tuple

from authcore.core.context import CallerContext, Permission
from authcore.core.events import TOKEN_CONSUMED, TOKEN_CREATED
from authcore.models import Factor, SessionProvider, Token, TokenType, User
from authcore.services.base import BaseService
from authcore.utils.clock import expires_in, is_expired
from authcore.utils.exceptions import InvalidTokenException
from authcore.utils.id_generator import code_generator, hash_secret, token_generator
from authcore.utils.logging import get_logger

logger = get_logger(__name__)

# Lifetimes in seconds
TOKEN_EXPIRATION_LOGIN_SHORT = 3600
TOKEN_EXPIRATION_RECOVERY = 3600
TOKEN_EXPIRATION_CONFIRM = 3600
TOKEN_EXPIRATION_OTP = 900
TOKEN_EXPIRATION_GENERIC = 900

# Secret lengths
TOKEN_LENGTH_MAGIC_URL = 64
TOKEN_LENGTH_VERIFICATION = 256
TOKEN_LENGTH_RECOVERY = 256
TOKEN_LENGTH_OAUTH2 = 64
TOKEN_LENGTH_SESSION = 256
TOKEN_LENGTH_OTP = 6

_DEFAULT_LENGTH = {
    TokenType.MAGIC_URL: TOKEN_LENGTH_MAGIC_URL,
    TokenType.VERIFICATION: TOKEN_LENGTH_VERIFICATION,
    TokenType.RECOVERY: TOKEN_LENGTH_RECOVERY,
    TokenType.OAUTH2: TOKEN_LENGTH_OAUTH2,
    TokenType.INVITE: TOKEN_LENGTH_VERIFICATION,
    TokenType.GENERIC: TOKEN_LENGTH_MAGIC_URL,
}

_DEFAULT_TTL = {
    TokenType.MAGIC_URL: TOKEN_EXPIRATION_CONFIRM,
    TokenType.EMAIL: TOKEN_EXPIRATION_OTP,
    TokenType.PHONE: TOKEN_EXPIRATION_OTP,
    TokenType.RECOVERY: TOKEN_EXPIRATION_RECOVERY,
    TokenType.VERIFICATION: TOKEN_EXPIRATION_CONFIRM,
    TokenType.INVITE: TOKEN_EXPIRATION_CONFIRM,
    TokenType.GENERIC: TOKEN_EXPIRATION_GENERIC,
}

_NUMERIC = (TokenType.EMAIL, TokenType.PHONE)


def session_provider_for(token_type: str) -> str:
    """Session provider recorded when a token of ``token_type`` logs in."""
    if token_type in (TokenType.VERIFICATION, TokenType.RECOVERY, TokenType.INVITE):
        return SessionProvider.EMAIL.value
    if token_type == TokenType.MAGIC_URL:
        return SessionProvider.MAGIC_URL.value
    if token_type == TokenType.PHONE:
        return SessionProvider.PHONE.value
    if token_type == TokenType.OAUTH2:
        return SessionProvider.OAUTH2.value
    return SessionProvider.TOKEN.value


def factor_for(token_type: str) -> str:
    """Factor satisfied by redeeming a token of ``token_type``."""
    if token_type in (TokenType.MAGIC_URL, TokenType.OAUTH2, TokenType.EMAIL):
        return Factor.EMAIL.value
    if token_type == TokenType.PHONE:
        return Factor.PHONE.value
    return Factor.TOKEN.value


def verify_token(
    tokens: Iterable[Token],
    expected_type: Optional[str],
    supplied: str,
    now: datetime,
) -> Optional[Token]:
    """First live token whose hash matches ``supplied``.

    Expired and unknown secrets both return None so callers cannot tell them
    apart.
    """
    if not supplied:
        return None
    digest = hash_secret(supplied)
    for token in tokens:
        if not token.secret or not token.type or token.expire is None:
            continue
        if expected_type is not None and token.type != expected_type:
            continue
        if token.secret == digest and not is_expired(token.expire, now):
            return token
    return None


class TokenIssuer(BaseService):
    """Creates, verifies and consumes single-use secrets."""

    def issue(
        self,
        ctx: CallerContext,
        user: User,
        token_type: TokenType,
        length: Optional[int] = None,
        ttl: Optional[int] = None,
        phrase: Optional[str] = None,
        secret: Optional[str] = None,
    ) -> Tuple[Token, str]:
        """Persist a new token and return it with its plaintext secret.

        ``secret`` pins the plaintext, used for configured mock phone numbers.
        """
        token_type = TokenType(token_type)
        if not secret and token_type in _NUMERIC:
            secret = code_generator(length or TOKEN_LENGTH_OTP)
        elif not secret:
            secret = token_generator(length or _DEFAULT_LENGTH.get(token_type, 64))

        if ttl is None:
            ttl = self.policy.duration if token_type == TokenType.OAUTH2 else _DEFAULT_TTL[token_type]

        token = Token(
            user_id=user.id,
            type=token_type.value,
            secret=hash_secret(secret),
            expire=expires_in(self.clock, ttl),
            phrase=phrase,
            user_agent=ctx.user_agent or "UNKNOWN",
            ip=ctx.ip,
            permissions=Permission.owned_by(user.id),
        )
        self.store.create(token, ctx.skip())
        self.emit(TOKEN_CREATED, token, ctx)
        logger.info(
            "Token issued",
            extra={"user_id": user.id, "token_type": token_type.value, "ttl": ttl},
        )
        return token, secret

    def verify(
        self, tokens: Iterable[Token], expected_type: Optional[str], supplied: str
    ) -> Optional[Token]:
        return verify_token(tokens, expected_type, supplied, self.now())

    def find_valid(
        self,
        ctx: CallerContext,
        user: User,
        supplied: str,
        expected_type: Optional[str] = None,
    ) -> Token:
        """Locate the live token for ``supplied`` among the user's tokens.

        Raises:
            InvalidTokenException: unknown, expired or wrong-type secret
        """
        tokens = self.store.find(Token, ctx.skip(), Token.user_id == user.id)
        token = self.verify(tokens, expected_type, supplied)
        if token is None:
            logger.warning(
                "Token verification failed",
                extra={"user_id": user.id, "expected_type": expected_type},
            )
            raise InvalidTokenException()
        return token

    def consume(self, ctx: CallerContext, token: Token) -> None:
        """Delete a verified token; call after the gated change is flushed."""
        self.emit(TOKEN_CONSUMED, token, ctx)
        self.store.delete(token, ctx.skip())
        self.store.purge_cache(User, token.user_id)
        logger.info(
            "Token consumed", extra={"user_id": token.user_id, "token_type": token.type}
        )

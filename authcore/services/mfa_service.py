"""Multi-factor authentication.

Authenticator registration, recovery-code pool management and the challenge
protocol. A login with MFA enabled goes Primary-factor-satisfied, then
Challenge-Pending, then Verified, at which point the factor is added to the
session that requested the challenge.
"""

import base64
import io
from functools import cached_property
from typing import Dict, List, Optional

import pyotp
import qrcode

from authcore.core.context import CallerContext, Permission
from authcore.core.events import (
    AUTHENTICATOR_CREATED,
    AUTHENTICATOR_DELETED,
    AUTHENTICATOR_VERIFIED,
    CHALLENGE_CREATED,
    CHALLENGE_VERIFIED,
    RECOVERY_CODES_CREATED,
    RECOVERY_CODES_UPDATED,
    USER_UPDATED,
)
from authcore.core.messaging import CHANNEL_EMAIL, CHANNEL_SMS, OutboundMessage
from authcore.models import Authenticator, Challenge, MfaType, User, UserSession
from authcore.services.base import BaseService
from authcore.services.session_service import SessionManager, add_factor
from authcore.services.token_service import TOKEN_EXPIRATION_CONFIRM
from authcore.utils.clock import expires_in, is_expired
from authcore.utils.exceptions import (
    AlreadyExistsException,
    AlreadyVerifiedException,
    BadRequestException,
    DisabledException,
    DuplicateException,
    InvalidTokenException,
    NotFoundException,
    NotVerifiedException,
)
from authcore.utils.id_generator import code_generator, hash_secret, token_generator
from authcore.utils.logging import get_logger

logger = get_logger(__name__)

RECOVERY_CODES_TOTAL = 6
RECOVERY_CODE_LENGTH = 10
TOTP_VALID_WINDOW = 1


def generate_recovery_codes(
    length: int = RECOVERY_CODE_LENGTH, total: int = RECOVERY_CODES_TOTAL
) -> List[str]:
    return [token_generator(length) for _ in range(total)]


def _qr_data_uri(uri: str) -> str:
    qr = qrcode.QRCode(version=1, box_size=10, border=5)
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return f"data:image/png;base64,{base64.b64encode(buf.getvalue()).decode()}"


class MfaEngine(BaseService):
    """Authenticators, recovery codes and challenges."""

    @cached_property
    def sessions(self) -> SessionManager:
        return self.sibling(SessionManager)

    # Authenticators

    def get_authenticator(
        self, ctx: CallerContext, user: User, auth_type: str = MfaType.TOTP.value
    ) -> Optional[Authenticator]:
        return self.store.find_one(
            Authenticator,
            ctx.skip(),
            Authenticator.user_id == user.id,
            Authenticator.type == auth_type,
        )

    def create_authenticator(
        self, ctx: CallerContext, user: User, auth_type: str = MfaType.TOTP.value
    ) -> Dict[str, str]:
        """Register a TOTP authenticator and return its provisioning data.

        An unverified authenticator of the same type is replaced.

        Raises:
            AlreadyVerifiedException: a verified authenticator already exists
        """
        if auth_type != MfaType.TOTP.value:
            raise BadRequestException(f"Unsupported authenticator type {auth_type}")

        existing = self.get_authenticator(ctx, user, auth_type)
        if existing is not None:
            if existing.verified:
                raise AlreadyVerifiedException(
                    "The authenticator has already been verified.",
                    "user_authenticator_already_verified",
                )
            self.store.delete(existing, ctx.skip())

        secret = pyotp.random_base32()
        label = user.email or user.phone or user.id
        uri = pyotp.TOTP(secret).provisioning_uri(name=label, issuer_name=self.policy.name)

        authenticator = Authenticator(
            user_id=user.id,
            type=auth_type,
            verified=False,
            data={"secret": secret},
            permissions=Permission.owned_by(user.id),
        )
        try:
            self.store.create(authenticator, ctx.skip())
        except DuplicateException as e:
            raise AlreadyExistsException(
                "An authenticator of this type already exists.",
                "user_authenticator_already_exists",
            ) from e
        self.store.purge_cache(User, user.id)
        self.emit(AUTHENTICATOR_CREATED, authenticator, ctx)

        return {"secret": secret, "uri": uri, "qr": _qr_data_uri(uri)}

    def verify_authenticator(
        self,
        ctx: CallerContext,
        user: User,
        otp: str,
        auth_type: str = MfaType.TOTP.value,
    ) -> Authenticator:
        """Mark the authenticator verified and credit the current session.

        Raises:
            NotFoundException: nothing registered
            AlreadyVerifiedException: already verified
            InvalidTokenException: wrong code
        """
        authenticator = self.get_authenticator(ctx, user, auth_type)
        if authenticator is None:
            raise NotFoundException("Authenticator could not be found.", "user_authenticator_not_found")
        if authenticator.verified:
            raise AlreadyVerifiedException(
                "The authenticator has already been verified.",
                "user_authenticator_already_verified",
            )
        if not self._totp_matches(authenticator, otp):
            logger.warning("Authenticator verification failed", extra={"user_id": user.id})
            raise InvalidTokenException()

        authenticator.verified = True
        self.store.update(authenticator, ctx.skip())

        session = self.sessions.current_session(ctx, user)
        if session is not None:
            self.sessions.add_factor(ctx, session, auth_type)

        self.store.purge_cache(User, user.id)
        self.emit(AUTHENTICATOR_VERIFIED, authenticator, ctx)
        logger.info(f"Verified {auth_type} authenticator for user {user.id}")
        return authenticator

    def delete_authenticator(
        self, ctx: CallerContext, user: User, auth_type: str = MfaType.TOTP.value
    ) -> None:
        """Raises NotFoundException when nothing is registered."""
        authenticator = self.get_authenticator(ctx, user, auth_type)
        if authenticator is None:
            raise NotFoundException("Authenticator could not be found.", "user_authenticator_not_found")
        self.emit(AUTHENTICATOR_DELETED, authenticator, ctx)
        self.store.delete(authenticator, ctx.skip())
        self.store.purge_cache(User, user.id)

    @staticmethod
    def _totp_matches(authenticator: Authenticator, otp: str) -> bool:
        secret = (authenticator.data or {}).get("secret")
        if not secret or not otp:
            return False
        return pyotp.TOTP(secret).verify(otp, valid_window=TOTP_VALID_WINDOW)

    # Factors

    def list_factors(self, ctx: CallerContext, user: User) -> Dict[str, bool]:
        """Which factors the user can currently satisfy."""
        totp = self.get_authenticator(ctx, user)
        return {
            MfaType.TOTP.value: bool(totp and totp.verified),
            MfaType.EMAIL.value: bool(user.email and user.email_verification),
            MfaType.PHONE.value: bool(user.phone and user.phone_verification),
            MfaType.RECOVERY_CODE.value: bool(user.mfa_recovery_codes),
        }

    def requires_challenge(self, ctx: CallerContext, user: User, session: UserSession) -> bool:
        """MFA is on, a second factor exists and the session has only one."""
        if not user.mfa:
            return False
        factors = self.list_factors(ctx, user)
        has_second = any(
            factors[name] for name in (MfaType.TOTP.value, MfaType.EMAIL.value, MfaType.PHONE.value)
        )
        return has_second and len(session.factors or []) < 2

    def update_mfa(self, ctx: CallerContext, user: User, enabled: bool) -> User:
        """Toggle MFA; enabling credits the current session with known factors."""
        user.mfa = enabled
        self.store.update(user, ctx.skip())

        if enabled:
            session = self.sessions.current_session(ctx, user)
            if session is not None:
                factors = self.list_factors(ctx, user)
                for name in (MfaType.TOTP.value, MfaType.EMAIL.value, MfaType.PHONE.value):
                    if factors[name]:
                        self.sessions.add_factor(ctx, session, name)

        self.emit(USER_UPDATED, user, ctx)
        return user

    # Recovery codes

    def get_recovery_codes(self, ctx: CallerContext, user: User) -> List[str]:
        if not user.mfa_recovery_codes:
            raise NotFoundException("Recovery codes could not be found.", "user_recovery_codes_not_found")
        return list(user.mfa_recovery_codes)

    def create_recovery_codes(self, ctx: CallerContext, user: User) -> List[str]:
        """First generation only; the pool must be empty.

        Raises:
            AlreadyExistsException: codes were already generated
        """
        if user.mfa_recovery_codes:
            raise AlreadyExistsException(
                "The user already has recovery codes.", "user_recovery_codes_already_exists"
            )
        codes = generate_recovery_codes()
        user.mfa_recovery_codes = codes
        self.store.update(user, ctx.skip())
        self.emit(RECOVERY_CODES_CREATED, user, ctx)
        return codes

    def update_recovery_codes(self, ctx: CallerContext, user: User) -> List[str]:
        """Discard the pool and issue a new one.

        Raises:
            NotFoundException: there is no pool to regenerate
        """
        if not user.mfa_recovery_codes:
            raise NotFoundException("Recovery codes could not be found.", "user_recovery_codes_not_found")
        codes = generate_recovery_codes()
        user.mfa_recovery_codes = codes
        self.store.update(user, ctx.skip())
        self.emit(RECOVERY_CODES_UPDATED, user, ctx)
        return codes

    # Challenges

    def create_challenge(self, ctx: CallerContext, user: User, factor: str) -> Challenge:
        """Start a step-up verification.

        Channel preconditions are checked before anything is written, so a
        rejected request leaves no challenge behind.
        """
        try:
            factor = MfaType(factor).value
        except ValueError as e:
            raise BadRequestException(f"Unknown factor {factor}") from e

        code = code_generator(6)
        if factor == MfaType.PHONE.value:
            if not self.policy.sms_enabled:
                raise DisabledException("Phone authentication is disabled.", "general_phone_disabled")
            if not user.phone:
                raise NotFoundException("Phone number could not be found.", "user_phone_not_found")
            if not user.phone_verification:
                raise NotVerifiedException("Phone number is not verified.", "user_phone_not_verified")
            code = self.policy.mock_numbers.get(user.phone, code)
        elif factor == MfaType.EMAIL.value:
            if not self.policy.smtp_enabled:
                raise DisabledException("SMTP disabled", "general_smtp_disabled")
            if not user.email:
                raise NotFoundException("Email could not be found.", "user_email_not_found")
            if not user.email_verification:
                raise NotVerifiedException("Email is not verified.", "user_email_not_verified")

        challenge = Challenge(
            user_id=user.id,
            type=factor,
            token=hash_secret(token_generator(256)),
            code=code,
            expire=expires_in(self.clock, TOKEN_EXPIRATION_CONFIRM),
            permissions=Permission.owned_by(user.id),
        )
        self.store.create(challenge, ctx.skip())

        if factor == MfaType.PHONE.value and user.phone not in self.policy.mock_numbers:
            self.queue.enqueue(
                OutboundMessage(
                    channel=CHANNEL_SMS,
                    recipient=user.phone,
                    body=f"{code} is your {self.policy.name} verification code.",
                    template="sms.mfa_challenge",
                    variables={"code": code, "project": self.policy.name},
                )
            )
        elif factor == MfaType.EMAIL.value:
            self.queue.enqueue(
                OutboundMessage(
                    channel=CHANNEL_EMAIL,
                    recipient=user.email,
                    subject=f"Verification code for {self.policy.name}",
                    body=f"Your verification code is {code}.",
                    template="email.mfa_challenge",
                    variables={"code": code, "project": self.policy.name, "name": user.name or ""},
                )
            )

        self.emit(CHALLENGE_CREATED, challenge, ctx)
        logger.info(f"Created {factor} challenge for user {user.id}")
        return challenge

    def verify_challenge(
        self, ctx: CallerContext, user: User, challenge_id: str, otp: str
    ) -> UserSession:
        """Check ``otp`` against the challenge and credit the current session.

        A failed attempt keeps the challenge so the caller may retry until it
        expires.

        Raises:
            NotFoundException: unknown challenge or no current session
            InvalidTokenException: wrong or expired code
        """
        challenge = self.store.find_one(
            Challenge, ctx.skip(), Challenge.id == challenge_id, Challenge.user_id == user.id
        )
        if challenge is None:
            raise NotFoundException("Challenge could not be found.", "user_challenge_not_found")

        session = self.sessions.current_session(ctx, user)
        if session is None:
            raise NotFoundException("The current user session could not be found.", "user_session_not_found")

        if not self._challenge_passes(ctx, user, challenge, otp):
            logger.warning(
                "Challenge verification failed",
                extra={"user_id": user.id, "challenge_type": challenge.type},
            )
            raise InvalidTokenException()

        self.emit(CHALLENGE_VERIFIED, challenge, ctx)
        self.store.delete(challenge, ctx.skip())

        add_factor(session, challenge.type)
        session.mfa_updated_at = self.now()
        self.store.update(session, ctx.skip())
        self.store.purge_cache(User, user.id)
        logger.info(f"Verified {challenge.type} challenge for user {user.id}")
        return session

    def _challenge_passes(
        self, ctx: CallerContext, user: User, challenge: Challenge, otp: str
    ) -> bool:
        if challenge.type == MfaType.TOTP.value:
            authenticator = self.get_authenticator(ctx, user)
            return bool(authenticator and authenticator.verified and self._totp_matches(authenticator, otp))

        if challenge.type in (MfaType.EMAIL.value, MfaType.PHONE.value):
            return bool(otp) and challenge.code == otp and not is_expired(challenge.expire, self.now())

        if challenge.type == MfaType.RECOVERY_CODE.value:
            codes = list(user.mfa_recovery_codes or [])
            if otp not in codes:
                return False
            codes.remove(otp)
            user.mfa_recovery_codes = codes
            self.store.update(user, ctx.skip())
            return True

        return False

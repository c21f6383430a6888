"""User record creation and contact-target bookkeeping shared by services."""

from typing import Optional

from authcore.core.context import CallerContext, Permission
from authcore.core.events import TARGET_CREATED, USER_CREATED
from authcore.models import Identity, MessageType, Target, User
from authcore.services.base import BaseService
from authcore.utils.exceptions import (
    AlreadyExistsException,
    AuthCoreException,
    BadRequestException,
    DuplicateException,
    LimitExceededException,
)
from authcore.utils.logging import get_logger

logger = get_logger(__name__)


class UserDirectory(BaseService):
    """Lookups and inserts for users and their targets."""

    def find_by_email(self, ctx: CallerContext, email: str) -> Optional[User]:
        return self.store.find_one(User, ctx.skip(), User.email == email.lower())

    def find_by_phone(self, ctx: CallerContext, phone: str) -> Optional[User]:
        return self.store.find_one(User, ctx.skip(), User.phone == phone)

    def ensure_capacity(self, ctx: CallerContext) -> None:
        """Raises LimitExceededException once the project cap is reached."""
        limit = self.policy.limit
        if limit and self.store.count(User, ctx.skip(), max_count=limit) >= limit:
            raise LimitExceededException()

    def ensure_email_unclaimed(
        self,
        ctx: CallerContext,
        email: str,
        error: Optional[AuthCoreException] = None,
        exclude_user_id: Optional[str] = None,
    ) -> None:
        """Refuse an email some OAuth2 identity already carries.

        The default error is the coarse BadRequest so callers cannot discover
        which addresses are registered.
        """
        filters = [Identity.provider_email == email]
        if exclude_user_id is not None:
            filters.append(Identity.user_id != exclude_user_id)
        if self.store.find_one(Identity, ctx.skip(), *filters) is not None:
            raise error or BadRequestException()

    def insert(self, ctx: CallerContext, user: User) -> User:
        """Create ``user`` and a target for each contact channel it has.

        Raises:
            AlreadyExistsException: id, email or phone already taken
        """
        if not user.permissions:
            user.permissions = Permission.owned_by(user.id, public_read=True)
        try:
            self.store.create(user, ctx.skip())
        except DuplicateException as e:
            raise AlreadyExistsException() from e

        if user.email:
            self.attach_target(ctx, user, MessageType.EMAIL.value, user.email)
        if user.phone:
            self.attach_target(ctx, user, MessageType.SMS.value, user.phone)

        self.emit(USER_CREATED, user, ctx)
        logger.info(f"Created user {user.id}")
        return user

    def attach_target(
        self, ctx: CallerContext, user: User, provider_type: str, identifier: str
    ) -> Target:
        """Create a target; an existing one with the same identifier is re-attached."""
        target = Target(
            user_id=user.id,
            provider_type=provider_type,
            identifier=identifier,
            permissions=Permission.owned_by(user.id),
        )
        try:
            self.store.create(target, ctx.skip())
        except DuplicateException:
            existing = self.store.find_one(
                Target,
                ctx.skip(),
                Target.provider_type == provider_type,
                Target.identifier == identifier,
            )
            if existing is None:
                raise
            existing.user_id = user.id
            existing.permissions = Permission.owned_by(user.id)
            self.store.update(existing, ctx.skip())
            return existing

        self.emit(TARGET_CREATED, target, ctx)
        return target

    def move_target(
        self,
        ctx: CallerContext,
        user: User,
        provider_type: str,
        old_identifier: Optional[str],
        new_identifier: str,
    ) -> Target:
        """Point the user's target for ``old_identifier`` at ``new_identifier``.

        Raises:
            AlreadyExistsException: another target already uses the new identifier
        """
        taken = self.store.find_one(
            Target,
            ctx.skip(),
            Target.provider_type == provider_type,
            Target.identifier == new_identifier,
        )
        if taken is not None:
            raise AlreadyExistsException(
                "A target with the same identifier already exists.",
                "user_target_already_exists",
            )

        target = None
        if old_identifier:
            target = self.store.find_one(
                Target,
                ctx.skip(),
                Target.user_id == user.id,
                Target.provider_type == provider_type,
                Target.identifier == old_identifier,
            )
        if target is None:
            return self.attach_target(ctx, user, provider_type, new_identifier)

        target.identifier = new_identifier
        try:
            self.store.update(target, ctx.skip())
        except DuplicateException as e:
            raise AlreadyExistsException(
                "A target with the same identifier already exists.",
                "user_target_already_exists",
            ) from e
        return target

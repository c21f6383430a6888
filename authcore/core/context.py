"""Caller context, roles and permissions.

A ``CallerContext`` is an immutable value passed into every operation. System
writes that must bypass record permissions use ``ctx.skip()`` to get an
elevated copy for that one call instead of flipping global state.
"""

from dataclasses import dataclass, field, replace
from typing import FrozenSet, Iterable, List, Optional


class Role:
    """Role string builders."""

    ANY = "any"
    GUESTS = "guests"
    USERS = "users"

    @staticmethod
    def any() -> str:
        return Role.ANY

    @staticmethod
    def guests() -> str:
        return Role.GUESTS

    @staticmethod
    def users() -> str:
        return Role.USERS

    @staticmethod
    def user(user_id: str) -> str:
        return f"user:{user_id}"


class Permission:
    """Permission string builders, e.g. ``read("user:abc")``."""

    READ = "read"
    UPDATE = "update"
    DELETE = "delete"

    @staticmethod
    def read(role: str) -> str:
        return f'read("{role}")'

    @staticmethod
    def update(role: str) -> str:
        return f'update("{role}")'

    @staticmethod
    def delete(role: str) -> str:
        return f'delete("{role}")'

    @staticmethod
    def parse(permission: str) -> tuple[str, str]:
        """Split ``read("user:abc")`` into ``("read", "user:abc")``."""
        action, _, rest = permission.partition("(")
        return action, rest.rstrip(")").strip('"')

    @staticmethod
    def owned_by(user_id: str, public_read: bool = False) -> List[str]:
        """Standard permission set for a record owned by ``user_id``."""
        owner = Role.user(user_id)
        return [
            Permission.read(Role.any() if public_read else owner),
            Permission.update(owner),
            Permission.delete(owner),
        ]


@dataclass(frozen=True)
class CallerContext:
    """Who is calling, and from where."""

    roles: FrozenSet[str] = field(default_factory=lambda: frozenset({Role.ANY, Role.GUESTS}))
    elevated: bool = False
    user_id: Optional[str] = None
    secret: str = ""
    ip: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def guest(
        cls, ip: Optional[str] = None, user_agent: Optional[str] = None
    ) -> "CallerContext":
        """Unauthenticated caller."""
        return cls(ip=ip, user_agent=user_agent)

    @classmethod
    def for_user(
        cls,
        user_id: str,
        secret: str = "",
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> "CallerContext":
        """Authenticated caller carrying its session secret."""
        return cls(
            roles=frozenset({Role.ANY, Role.USERS, Role.user(user_id)}),
            user_id=user_id,
            secret=secret,
            ip=ip,
            user_agent=user_agent,
        )

    @classmethod
    def server(
        cls, ip: Optional[str] = None, user_agent: Optional[str] = None
    ) -> "CallerContext":
        """API-key caller; always elevated."""
        return cls(elevated=True, ip=ip, user_agent=user_agent)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def skip(self) -> "CallerContext":
        """Elevated copy used for one system-initiated write."""
        return replace(self, elevated=True)

    def with_user(self, user_id: str, secret: Optional[str] = None) -> "CallerContext":
        """Copy acting as ``user_id``, keeping request metadata and elevation."""
        return replace(
            self,
            roles=frozenset({Role.ANY, Role.USERS, Role.user(user_id)}),
            user_id=user_id,
            secret=self.secret if secret is None else secret,
        )

    def allows(self, action: str, permissions: Iterable[str]) -> bool:
        """True when elevated or one of our roles holds ``action``."""
        if self.elevated:
            return True
        for permission in permissions:
            granted, role = Permission.parse(permission)
            if granted == action and role in self.roles:
                return True
        return False

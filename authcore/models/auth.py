"""Authentication models.

Users, their contact targets, sessions, single-use tokens, external OAuth2
identities, MFA challenges and MFA authenticators.
"""

from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from authcore.models.base import BaseModel
from authcore.models.db_types import StringList, StringMap
from authcore.utils.clock import utcnow


class TokenType(str, PyEnum):
    """Kinds of single-use token."""

    MAGIC_URL = "magic-url"
    EMAIL = "email"
    PHONE = "phone"
    RECOVERY = "recovery"
    VERIFICATION = "verification"
    INVITE = "invite"
    GENERIC = "generic"
    OAUTH2 = "oauth2"


class SessionProvider(str, PyEnum):
    """How a session was created."""

    EMAIL = "email"
    ANONYMOUS = "anonymous"
    MAGIC_URL = "magic-url"
    PHONE = "phone"
    OAUTH2 = "oauth2"
    TOKEN = "token"
    SERVER = "server"


class MfaType(str, PyEnum):
    """MFA factor types usable in a challenge."""

    TOTP = "totp"
    EMAIL = "email"
    PHONE = "phone"
    RECOVERY_CODE = "recovery_code"


class Factor(str, PyEnum):
    """Factor names recorded on a session."""

    PASSWORD = "password"
    ANONYMOUS = "anonymous"
    EMAIL = "email"
    PHONE = "phone"
    OAUTH2 = "oauth2"
    TOKEN = "token"
    TOTP = "totp"
    RECOVERY_CODE = "recovery_code"


class MessageType(str, PyEnum):
    """Target provider types."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class User(BaseModel):
    """User identity record."""

    __tablename__ = "users"
    __hidden__ = ("password", "password_history", "hash_options", "mfa_recovery_codes")

    name = Column(String(128), nullable=True)
    email = Column(String(320), unique=True, nullable=True)
    phone = Column(String(32), unique=True, nullable=True)
    email_verification = Column(Boolean, default=False, nullable=False)
    phone_verification = Column(Boolean, default=False, nullable=False)

    # Credentials
    password = Column(Text, nullable=True)
    password_update = Column(DateTime, nullable=True)
    password_history = Column(StringList, default=list)
    hash = Column(String(32), nullable=True)
    hash_options = Column(StringMap, default=dict)

    # MFA
    mfa = Column(Boolean, default=False, nullable=False)
    mfa_recovery_codes = Column(StringList, default=list)

    status = Column(Boolean, default=True, nullable=False)
    labels = Column(StringList, default=list)
    prefs = Column(StringMap, default=dict)
    registration = Column(DateTime, default=utcnow, nullable=False)
    accessed_at = Column(DateTime, nullable=True)

    # Relationships
    sessions = relationship(
        "UserSession", back_populates="user", cascade="all, delete-orphan"
    )
    tokens = relationship("Token", back_populates="user", cascade="all, delete-orphan")
    targets = relationship(
        "Target", back_populates="user", cascade="all, delete-orphan"
    )
    identities = relationship(
        "Identity", back_populates="user", cascade="all, delete-orphan"
    )
    challenges = relationship(
        "Challenge", back_populates="user", cascade="all, delete-orphan"
    )
    authenticators = relationship(
        "Authenticator", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def is_active(self) -> bool:
        """Blocked users have status False."""
        return bool(self.status)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<User(id={self.id}, email={self.email})>"


class Target(BaseModel):
    """Contact channel owned by a user."""

    __tablename__ = "targets"

    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    session_id = Column(String(36), nullable=True)
    provider_type = Column(String(16), nullable=False)
    provider_id = Column(String(36), nullable=True)
    identifier = Column(String(320), nullable=False)
    name = Column(String(128), nullable=True)
    expired = Column(Boolean, default=False, nullable=False)

    user = relationship("User", back_populates="targets")

    __table_args__ = (
        UniqueConstraint("provider_type", "identifier", name="uq_target_identifier"),
        Index("idx_target_user", "user_id"),
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Target(id={self.id}, type={self.provider_type})>"


class UserSession(BaseModel):
    """Authenticated login instance."""

    __tablename__ = "sessions"
    __hidden__ = ("secret", "provider_refresh_token")

    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    provider = Column(String(32), nullable=False)
    provider_uid = Column(String(255), nullable=True)
    provider_access_token = Column(Text, nullable=True)
    provider_refresh_token = Column(Text, nullable=True)
    provider_access_token_expiry = Column(DateTime, nullable=True)

    secret = Column(String(64), nullable=False)
    expire = Column(DateTime, nullable=False)
    factors = Column(StringList, default=list)
    mfa_updated_at = Column(DateTime, nullable=True)

    # Request metadata
    user_agent = Column(Text, nullable=True)
    ip = Column(String(45), nullable=True)
    country_code = Column(String(8), nullable=True)
    os_code = Column(String(32), nullable=True)
    os_name = Column(String(64), nullable=True)
    os_version = Column(String(32), nullable=True)
    client_type = Column(String(32), nullable=True)
    client_code = Column(String(32), nullable=True)
    client_name = Column(String(64), nullable=True)
    client_version = Column(String(32), nullable=True)
    client_engine = Column(String(64), nullable=True)
    client_engine_version = Column(String(32), nullable=True)
    device_name = Column(String(32), nullable=True)
    device_brand = Column(String(64), nullable=True)
    device_model = Column(String(64), nullable=True)

    user = relationship("User", back_populates="sessions")

    __table_args__ = (
        Index("idx_session_user", "user_id"),
        Index("idx_session_provider_uid", "provider", "provider_uid"),
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<UserSession(id={self.id}, user_id={self.user_id}, provider={self.provider})>"


class Token(BaseModel):
    """Single-use secret, stored hashed."""

    __tablename__ = "tokens"
    __hidden__ = ("secret",)

    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(String(16), nullable=False)
    secret = Column(String(64), nullable=False)
    expire = Column(DateTime, nullable=False)
    phrase = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    ip = Column(String(45), nullable=True)

    user = relationship("User", back_populates="tokens")

    __table_args__ = (Index("idx_token_user_type", "user_id", "type"),)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Token(id={self.id}, type={self.type})>"


class Identity(BaseModel):
    """Binding between a user and an external OAuth2 subject."""

    __tablename__ = "identities"
    __hidden__ = ("provider_access_token", "provider_refresh_token")

    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    provider = Column(String(32), nullable=False)
    provider_uid = Column(String(255), nullable=False)
    provider_email = Column(String(320), nullable=True)
    provider_access_token = Column(Text, nullable=True)
    provider_refresh_token = Column(Text, nullable=True)
    provider_access_token_expiry = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="identities")

    __table_args__ = (
        UniqueConstraint("provider", "provider_uid", name="uq_identity_provider_uid"),
        Index("idx_identity_provider_email", "provider_email"),
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Identity(id={self.id}, provider={self.provider})>"


class Challenge(BaseModel):
    """In-progress MFA step-up verification."""

    __tablename__ = "challenges"
    __hidden__ = ("token", "code")

    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(String(16), nullable=False)
    token = Column(String(64), nullable=True)
    code = Column(String(16), nullable=True)
    expire = Column(DateTime, nullable=False)

    user = relationship("User", back_populates="challenges")

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Challenge(id={self.id}, type={self.type})>"


class Authenticator(BaseModel):
    """Registered MFA method such as a TOTP seed."""

    __tablename__ = "authenticators"
    __hidden__ = ("data",)

    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(String(16), nullable=False)
    verified = Column(Boolean, default=False, nullable=False)
    data = Column(StringMap, default=dict)

    user = relationship("User", back_populates="authenticators")

    __table_args__ = (
        UniqueConstraint("user_id", "type", name="uq_authenticator_user_type"),
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Authenticator(id={self.id}, type={self.type}, verified={self.verified})>"

"""Database models."""

from authcore.models.auth import (
    Authenticator,
    Challenge,
    Factor,
    Identity,
    MessageType,
    MfaType,
    SessionProvider,
    Target,
    Token,
    TokenType,
    User,
    UserSession,
)
from authcore.models.base import Base, BaseModel

__all__ = [
    "Authenticator",
    "Base",
    "BaseModel",
    "Challenge",
    "Factor",
    "Identity",
    "MessageType",
    "MfaType",
    "SessionProvider",
    "Target",
    "Token",
    "TokenType",
    "User",
    "UserSession",
]

"""Service layer."""

from authcore.services.account_service import AccountService
from authcore.services.credential_service import CredentialManager, PersonalDataValidator
from authcore.services.directory import UserDirectory
from authcore.services.identity_service import IdentityLinker, OAuth2Result
from authcore.services.mfa_service import MfaEngine
from authcore.services.session_service import SessionManager, decode_session, encode_session
from authcore.services.token_service import TokenIssuer
from authcore.services.users_service import UsersService

__all__ = [
    "AccountService",
    "CredentialManager",
    "IdentityLinker",
    "MfaEngine",
    "OAuth2Result",
    "PersonalDataValidator",
    "SessionManager",
    "TokenIssuer",
    "UserDirectory",
    "UsersService",
    "decode_session",
    "encode_session",
]

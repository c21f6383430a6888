"""Custom exceptions for authcore.

Every exception carries a stable ``code`` so the outer transport layer can map
it to a status and a localized message.
"""

from typing import Optional


class AuthCoreException(Exception):
    """Base exception for all authcore exceptions."""

    def __init__(self, message: str, code: Optional[str] = None):
        """Initialize exception.

        Args:
            message: Error message
            code: Optional error code
        """
        super().__init__(message)
        self.message = message
        self.code = code


class NotFoundException(AuthCoreException):
    """Raised when a user, session, token or other record is absent."""

    def __init__(self, message: str = "Record not found", code: str = "not_found"):
        """Initialize NotFoundException."""
        super().__init__(message, code)


class InvalidCredentialsException(AuthCoreException):
    """Raised when an email/password pair does not match."""

    def __init__(
        self,
        message: str = "Invalid credentials. Please check the email and password.",
        code: str = "user_invalid_credentials",
    ):
        """Initialize InvalidCredentialsException."""
        super().__init__(message, code)


class InvalidTokenException(AuthCoreException):
    """Raised when a secret is unknown or expired; the two are not told apart."""

    def __init__(
        self,
        message: str = "Invalid token passed in the request.",
        code: str = "user_invalid_token",
    ):
        """Initialize InvalidTokenException."""
        super().__init__(message, code)


class AlreadyExistsException(AuthCoreException):
    """Raised on a duplicate email, phone, identifier, identity or authenticator."""

    def __init__(
        self,
        message: str = "A record with the same id, email, or phone already exists.",
        code: str = "user_already_exists",
    ):
        """Initialize AlreadyExistsException."""
        super().__init__(message, code)


class LimitExceededException(AuthCoreException):
    """Raised when the project registration cap is reached."""

    def __init__(
        self,
        message: str = "The current project has exceeded the maximum number of users.",
        code: str = "user_count_exceeded",
    ):
        """Initialize LimitExceededException."""
        super().__init__(message, code)


class DisabledException(AuthCoreException):
    """Raised when SMTP, SMS or an OAuth2 provider is off or unconfigured."""

    def __init__(self, message: str = "Feature disabled", code: str = "general_disabled"):
        """Initialize DisabledException."""
        super().__init__(message, code)


class UnauthorizedException(AuthCoreException):
    """Raised on a role or ownership mismatch."""

    def __init__(
        self,
        message: str = "The current user is not authorized to perform the requested action.",
        code: str = "user_unauthorized",
    ):
        """Initialize UnauthorizedException."""
        super().__init__(message, code)


class PersonalDataException(AuthCoreException):
    """Raised when a password contains the user's personal data."""

    def __init__(
        self,
        message: str = "The password you are trying to use contains references to your name, email, phone or userID.",
        code: str = "user_password_personal_data",
    ):
        """Initialize PersonalDataException."""
        super().__init__(message, code)


class PasswordRecentlyUsedException(AuthCoreException):
    """Raised when a new password matches the password history."""

    def __init__(
        self,
        message: str = "The password you are trying to use is similar to your previous password.",
        code: str = "user_password_recently_used",
    ):
        """Initialize PasswordRecentlyUsedException."""
        super().__init__(message, code)


class AlreadyVerifiedException(AuthCoreException):
    """Raised when verifying something that is already verified."""

    def __init__(self, message: str = "Already verified", code: str = "already_verified"):
        """Initialize AlreadyVerifiedException."""
        super().__init__(message, code)


class NotVerifiedException(AuthCoreException):
    """Raised when a contact channel must be verified first."""

    def __init__(self, message: str = "Not verified", code: str = "not_verified"):
        """Initialize NotVerifiedException."""
        super().__init__(message, code)


class UserBlockedException(AuthCoreException):
    """Raised when a blocked user tries to authenticate."""

    def __init__(
        self,
        message: str = "The current user has been blocked.",
        code: str = "user_blocked",
    ):
        """Initialize UserBlockedException."""
        super().__init__(message, code)


class BadRequestException(AuthCoreException):
    """Deliberately coarse rejection used where enumeration must be avoided."""

    def __init__(self, message: str = "Bad request", code: str = "general_bad_request"):
        """Initialize BadRequestException."""
        super().__init__(message, code)


class OAuth2ProviderException(AuthCoreException):
    """Raised when the OAuth2 provider returns an error or incomplete data."""

    def __init__(
        self,
        message: str = "OAuth2 provider returned an error",
        code: str = "user_oauth2_provider_error",
    ):
        """Initialize OAuth2ProviderException."""
        super().__init__(message, code)


class DuplicateException(AuthCoreException):
    """Raised by the document store when a unique constraint is violated."""

    def __init__(self, message: str = "Document already exists"):
        """Initialize DuplicateException."""
        super().__init__(message, "document_already_exists")

"""Password hashing, verification and reuse checks.

New passwords are always hashed with argon2. Hashes imported from other
systems (bcrypt, md5, sha, scrypt, scrypt_mod, phpass) still verify, and a
successful login rewrites them with argon2.
"""

import base64
import hashlib
import hmac
from typing import Any, Dict, Iterable, Optional

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from authcore.utils.exceptions import BadRequestException, PersonalDataException
from authcore.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ALGO = "argon2"
DEFAULT_ALGO_OPTIONS: Dict[str, Any] = {
    "type": "argon2",
    "memory_cost": 2048,
    "time_cost": 4,
    "parallelism": 3,
}
SUPPORTED_ALGOS = ("argon2", "bcrypt", "md5", "sha", "phpass", "scrypt", "scrypt_mod")
PLAINTEXT = "plaintext"

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 256


def _argon2_hasher(options: Dict[str, Any]) -> PasswordHasher:
    return PasswordHasher(
        time_cost=int(options.get("time_cost", DEFAULT_ALGO_OPTIONS["time_cost"])),
        memory_cost=int(options.get("memory_cost", DEFAULT_ALGO_OPTIONS["memory_cost"])),
        parallelism=int(options.get("parallelism", DEFAULT_ALGO_OPTIONS["parallelism"])),
    )


def _salt(options: Dict[str, Any], algo: str) -> bytes:
    salt = options.get("salt")
    if not salt:
        raise ValueError(f"{algo} hashes need a salt in hash options")
    return salt.encode("utf-8") if isinstance(salt, str) else bytes(salt)


class CredentialManager:
    """Stateless password hashing service."""

    def normalize(self, algo: Optional[str], options: Optional[Dict[str, Any]]) -> tuple:
        """Resolve ``plaintext`` and empty tags to the default algorithm."""
        if not algo or algo == PLAINTEXT:
            return DEFAULT_ALGO, dict(DEFAULT_ALGO_OPTIONS)
        if algo not in SUPPORTED_ALGOS:
            raise BadRequestException(f"Hashing algorithm '{algo}' is not supported.")
        return algo, dict(options or {})

    def hash(
        self,
        password: str,
        algo: str = DEFAULT_ALGO,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Hash ``password`` with ``algo``.

        Salted legacy algorithms (scrypt, scrypt_mod, phpass) read the salt from
        ``options``; they exist for imported users, never for new passwords.
        """
        algo, opts = self.normalize(algo, options)
        data = password.encode("utf-8")

        if algo == "argon2":
            return _argon2_hasher(opts).hash(password)
        if algo == "bcrypt":
            rounds = int(opts.get("cost", opts.get("salt_rounds", 10)))
            return bcrypt.hashpw(data, bcrypt.gensalt(rounds=rounds)).decode("utf-8")
        if algo == "md5":
            return hashlib.md5(data, usedforsecurity=False).hexdigest()
        if algo == "sha":
            version = str(opts.get("version", "sha256"))
            return hashlib.new(version, data).hexdigest()
        if algo == "phpass":
            digest = hmac.new(_salt(opts, algo), data, hashlib.sha1).digest()
            return base64.b64encode(digest).decode("ascii")
        if algo == "scrypt":
            return hashlib.scrypt(
                data,
                salt=_salt(opts, algo),
                n=int(opts.get("cost_cpu", 16384)),
                r=int(opts.get("cost_memory", 8)),
                p=int(opts.get("cost_parallel", 1)),
                dklen=int(opts.get("length", 64)),
                maxmem=64 * 1024 * 1024,
            ).hex()
        # scrypt_mod
        return hmac.new(_salt(opts, algo), data, hashlib.sha256).hexdigest()

    def verify(
        self,
        password: str,
        digest: Optional[str],
        algo: Optional[str] = DEFAULT_ALGO,
        options: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Check ``password`` against ``digest``; malformed hashes never match."""
        if not digest or password is None:
            return False
        algo, opts = self.normalize(self.detect(digest, algo), options)

        try:
            if algo == "argon2":
                return PasswordHasher().verify(digest, password)
            if algo == "bcrypt":
                return bcrypt.checkpw(password.encode("utf-8"), digest.encode("utf-8"))
            return hmac.compare_digest(self.hash(password, algo, opts), digest)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError, ValueError, TypeError) as e:
            logger.error(
                "Error verifying password hash",
                exc_info=True,
                extra={"algo": algo, "error_type": type(e).__name__},
            )
            return False

    @staticmethod
    def detect(digest: str, algo: Optional[str]) -> Optional[str]:
        """Self-describing hashes win over the stored algorithm tag."""
        if digest.startswith("$argon2"):
            return "argon2"
        if digest.startswith(("$2a$", "$2b$", "$2y$")):
            return "bcrypt"
        return algo

    def needs_upgrade(self, algo: Optional[str]) -> bool:
        """Anything other than the default gets rehashed after login."""
        return algo != DEFAULT_ALGO

    def is_valid_against_history(
        self,
        candidate: str,
        history: Iterable[str],
        algo: Optional[str] = DEFAULT_ALGO,
        options: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """False when ``candidate`` matches any hash in ``history``."""
        for digest in history:
            if self.verify(candidate, digest, algo, options):
                return False
        return True

    @staticmethod
    def append_history(history: Iterable[str], digest: str, limit: int) -> list:
        """Append ``digest`` and keep the newest ``limit`` entries (FIFO)."""
        if limit <= 0:
            return []
        return [*history, digest][-limit:]


def validate_password(password: Optional[str], allow_empty: bool = False) -> None:
    """Length rules every new password must meet."""
    if not password:
        if allow_empty:
            return
        raise BadRequestException("Password must not be empty", "password_invalid")
    if not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
        raise BadRequestException(
            f"Password must be between {PASSWORD_MIN_LENGTH} and "
            f"{PASSWORD_MAX_LENGTH} characters long.",
            "password_invalid",
        )


class PersonalDataValidator:
    """Rejects passwords that embed the user's own identifiers."""

    def __init__(
        self,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        strict: bool = False,
        allow_empty: bool = False,
    ):
        self.user_id = user_id
        self.email = email
        self.name = name
        self.phone = phone
        self.strict = strict
        self.allow_empty = allow_empty

    def _needles(self) -> list:
        values = []
        if self.user_id:
            values.append(self.user_id)
        if self.email:
            values.append(self.email)
            if "@" in self.email:
                values.append(self.email.split("@")[0])
        if self.name:
            values.append(self.name)
        if self.phone:
            values.append(self.phone)
            values.append(self.phone.replace("+", ""))
        if not self.strict:
            values = [value.lower() for value in values]
        return [value for value in values if value]

    def is_valid(self, password: Optional[str]) -> bool:
        if not password:
            return self.allow_empty
        haystack = password if self.strict else password.lower()
        return not any(needle in haystack for needle in self._needles())

    def validate(self, password: Optional[str]) -> None:
        """Raise PersonalDataException when ``password`` is rejected."""
        if not self.is_valid(password):
            raise PersonalDataException()

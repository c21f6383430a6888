"""ID and secret generation utilities.

All random material comes from :mod:`secrets`.
"""

import hashlib
import secrets
import string
import uuid
from typing import Optional

# Words for anti-phishing phrases shown alongside magic links and OTP mails
_ADJECTIVES = (
    "amber", "bold", "brave", "calm", "clever", "crisp", "eager", "fancy",
    "gentle", "golden", "happy", "humble", "jolly", "kind", "lively", "lucky",
    "mellow", "noble", "proud", "quiet", "rapid", "shiny", "silent", "steady",
    "sunny", "swift", "tidy", "vivid", "warm", "wise", "witty", "young",
)
_NOUNS = (
    "badger", "beacon", "canyon", "cedar", "comet", "dolphin", "falcon",
    "forest", "glacier", "harbor", "island", "jaguar", "lantern", "meadow",
    "nebula", "otter", "panda", "pebble", "phoenix", "prairie", "quartz",
    "raven", "river", "sparrow", "summit", "thunder", "tulip", "valley",
    "walrus", "willow", "zebra", "zephyr",
)


def unique_id() -> str:
    """Generate a 20-character record id."""
    return uuid.uuid4().hex[:20]


def resolve_id(requested: Optional[str]) -> str:
    """Honour a caller-chosen id unless it is empty or ``unique()``."""
    if not requested or requested == "unique()":
        return unique_id()
    return requested


def token_generator(length: int = 256) -> str:
    """Generate a random hex secret of exactly ``length`` characters."""
    if length <= 0:
        raise ValueError("Token length must be positive")
    return secrets.token_hex((length + 1) // 2)[:length]


def code_generator(length: int = 6) -> str:
    """Generate a numeric one-time code."""
    return "".join(secrets.choice(string.digits) for _ in range(length))


def phrase_generator() -> str:
    """Generate a two-word security phrase such as ``Swift Otter``."""
    return f"{secrets.choice(_ADJECTIVES).title()} {secrets.choice(_NOUNS).title()}"


def hash_secret(secret: str) -> str:
    """One-way hash used for every stored session, token and challenge secret."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()

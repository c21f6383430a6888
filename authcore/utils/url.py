"""URL helpers."""

from typing import Dict, Iterable, Optional
from urllib.parse import urlencode, urlparse, urlunparse

REDIRECT_SCHEMES = ("http", "https")


def with_query(url: str, params: Dict[str, str]) -> str:
    """Append ``params`` to the query string of ``url``, keeping what is there."""
    parts = urlparse(url)
    query = "&".join(filter(None, [parts.query, urlencode(params)]))
    return urlunparse(parts._replace(query=query))


def hostname_allowed(hostname: Optional[str], allow_list: Iterable[str]) -> bool:
    """Match ``hostname`` against exact names, ``*`` or ``*.suffix`` patterns.

    A wildcard pattern never matches the bare root domain.
    """
    if not hostname:
        return False
    hostname = hostname.lower()
    for allowed in allow_list:
        allowed = allowed.lower()
        if allowed in ("*", hostname):
            return True
        if allowed.startswith("*") and hostname.endswith(allowed[1:]):
            return True
    return False


def is_valid_redirect(url: Optional[str], allow_list: Iterable[str]) -> bool:
    """An absolute http(s) URL whose host is on ``allow_list``."""
    if not url or not isinstance(url, str):
        return False
    try:
        parts = urlparse(url)
        hostname = parts.hostname
    except ValueError:
        return False
    if parts.scheme.lower() not in REDIRECT_SCHEMES:
        return False
    return hostname_allowed(hostname, allow_list)

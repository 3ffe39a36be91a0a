"""Input sanitization for externally supplied strings.

Each function returns the cleaned value, or None when the input must be rejected. Nothing
here raises, so callers can branch on the result without catching. A rejection means the
input is untrusted and the request should be aborted; a partially cleaned value is never
returned for the strict formats.

For every accepted value `x`, `f(f(x)) == f(x)`.
"""

import ipaddress
import re
from typing import Optional
from urllib.parse import urlparse, urlunparse

MAX_TEXT_LENGTH = 10_000
MAX_DID_LENGTH = 500
MAX_HANDLE_LENGTH = 253
MAX_SESSION_ID_LENGTH = 128
MAX_DEVICE_ID_LENGTH = 128
MAX_HOSTNAME_LENGTH = 253

CONTROL_CHARACTERS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
WHITESPACE_RUN = re.compile(r"\s+")

DID_PATTERN = re.compile(r"did:(plc|web):[a-z0-9._-]+")
HANDLE_PATTERN = re.compile(r"[a-z0-9.-]+")
SESSION_ID_PATTERN = re.compile(r"sess_[a-z0-9_-]+")
DEVICE_ID_PATTERN = re.compile(r"dev_[a-z0-9_-]+")
HOSTNAME_PATTERN = re.compile(r"[a-z0-9-]{1,63}(\.[a-z0-9-]{1,63})*\.?")


def sanitize_text(value: str, max_length: int = MAX_TEXT_LENGTH) -> Optional[str]:
    if value is None:
        return None

    cleaned = CONTROL_CHARACTERS.sub("", value)
    cleaned = WHITESPACE_RUN.sub(" ", cleaned).strip()
    # Truncation can expose a trailing space.
    return cleaned[:max_length].rstrip()


def sanitize_url(value: str) -> Optional[str]:
    """
    Accept only absolute http(s) URLs with a plausible hostname.

    The scheme and hostname are lower-cased and an empty path becomes `/`, so the returned
    string is the normalized form of the URL.
    """
    if value is None:
        return None

    try:
        parsed = urlparse(value.strip())
        # Accessing the port validates it.
        port = parsed.port
    except ValueError:
        return None

    if parsed.scheme not in ("http", "https"):
        return None

    hostname = parsed.hostname
    if hostname is None or len(hostname) == 0 or len(hostname) > MAX_HOSTNAME_LENGTH:
        return None
    if not _valid_hostname(hostname):
        return None

    netloc = hostname
    if parsed.username is not None or parsed.password is not None:
        return None
    if ":" in hostname:
        netloc = f"[{hostname}]"
    if port is not None:
        netloc = f"{netloc}:{port}"

    normalized = parsed._replace(netloc=netloc, path=parsed.path or "/")
    return urlunparse(normalized)


def _valid_hostname(hostname: str) -> bool:
    if HOSTNAME_PATTERN.fullmatch(hostname) is not None:
        return True
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def _strict(
    value: Optional[str], pattern: re.Pattern, max_length: int
) -> Optional[str]:
    if value is None:
        return None

    cleaned = value.strip().lower()
    if len(cleaned) == 0 or len(cleaned) > max_length:
        return None

    if pattern.fullmatch(cleaned) is None:
        return None

    return cleaned


def sanitize_did(value: Optional[str]) -> Optional[str]:
    return _strict(value, DID_PATTERN, MAX_DID_LENGTH)


def sanitize_handle(value: Optional[str]) -> Optional[str]:
    return _strict(value, HANDLE_PATTERN, MAX_HANDLE_LENGTH)


def sanitize_session_id(value: Optional[str]) -> Optional[str]:
    return _strict(value, SESSION_ID_PATTERN, MAX_SESSION_ID_LENGTH)


def sanitize_device_id(value: Optional[str]) -> Optional[str]:
    return _strict(value, DEVICE_ID_PATTERN, MAX_DEVICE_ID_LENGTH)

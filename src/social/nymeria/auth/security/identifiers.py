"""Session and device identifier minting, plus cheap DID and handle pre-filters."""

import re
import secrets

SESSION_ID_PREFIX = "sess_"
DEVICE_ID_PREFIX = "dev_"

IDENTIFIER_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
IDENTIFIER_LENGTH = 21

HANDLE_PATTERN = re.compile(r"[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


def _random_suffix() -> str:
    return "".join(
        secrets.choice(IDENTIFIER_ALPHABET) for _ in range(IDENTIFIER_LENGTH)
    )


def new_session_id() -> str:
    """Mint a session identifier: `sess_` followed by 21 random base36 characters."""
    return f"{SESSION_ID_PREFIX}{_random_suffix()}"


def new_device_id() -> str:
    """Mint a device identifier: `dev_` followed by 21 random base36 characters."""
    return f"{DEVICE_ID_PREFIX}{_random_suffix()}"


def is_valid_did(value: str) -> bool:
    return value is not None and value.startswith("did:") and len(value) > 10


def is_valid_handle(value: str) -> bool:
    return value is not None and HANDLE_PATTERN.fullmatch(value) is not None

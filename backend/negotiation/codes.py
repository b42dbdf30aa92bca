"""Session codes: short, human-relayable identifiers for a pending offer."""

import secrets
import string

from config import SESSION_CODE_LENGTH

CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_session_code(length: int = SESSION_CODE_LENGTH) -> str:
    """Return a random upper-case alphanumeric code of exactly `length` characters."""
    if length < 1:
        raise ValueError("Session code length must be positive")
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    """Codes compare case-insensitively and tolerate surrounding whitespace."""
    return code.strip().upper()

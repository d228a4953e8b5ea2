"""Invitation code generation utilities."""

import secrets

from compete.utils.constants import UNIQUE_CODE_ALPHABET, UNIQUE_CODE_LENGTH


def generate_unique_code(length: int = UNIQUE_CODE_LENGTH) -> str:
    """Generate a human-shareable invitation code (e.g. "K7QM2X").

    Args:
        length: Number of characters in the code.

    Returns:
        Uppercase code drawn from an alphabet without look-alike characters.
    """
    return "".join(secrets.choice(UNIQUE_CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    """Uppercase and trim a user-typed invitation code."""
    return (code or "").strip().upper()

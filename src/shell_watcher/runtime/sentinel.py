"""Sentinel generation for shell output framing.

A sentinel is printed by the shell itself after every command, so the reader
can tell exactly where one command's output ends.
"""

from __future__ import annotations

import secrets
import string

__all__ = [
    "DEFAULT_SENTINEL_LENGTH",
    "MIN_SENTINEL_LENGTH",
    "generate_sentinel",
]

DEFAULT_SENTINEL_LENGTH = 100
MIN_SENTINEL_LENGTH = 64

_ALPHABET = string.ascii_letters + string.digits


def generate_sentinel(length: int = DEFAULT_SENTINEL_LENGTH) -> str:
    """Generate a random alphanumeric marker.

    Args:
        length: Number of characters (must be >= MIN_SENTINEL_LENGTH)

    Returns:
        A string safe to embed in single quotes in a shell command

    Raises:
        ValueError: If length is too short to rule out collisions
    """
    if length < MIN_SENTINEL_LENGTH:
        raise ValueError(
            f"sentinel length must be >= {MIN_SENTINEL_LENGTH}, got {length}"
        )
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))

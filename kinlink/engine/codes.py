"""
kinlink.engine.codes — Connection Code Alphabet, Validation & Generation
=========================================================================

Pure functions only: no database, no logging.

A connection code is 8 characters drawn from a 32-symbol alphabet that drops
the look-alikes ``0``, ``1``, ``I`` and ``O`` so codes survive being read
aloud or copied off a phone screen::

    >>> normalize_code("  k7qxm2pa ")
    'K7QXM2PA'
    >>> is_valid_code("K7QXM2PA")
    True

User input must go through :func:`normalize_code` before
:func:`is_valid_code`; validation itself is case-sensitive.
"""

from __future__ import annotations

import secrets

from kinlink.constants import CODE_ALPHABET, CODE_LENGTH

__all__ = [
    "CODE_ALPHABET",
    "CODE_LENGTH",
    "generate_code",
    "is_valid_code",
    "normalize_code",
]

_ALPHABET_SET = frozenset(CODE_ALPHABET)


def normalize_code(raw: str | None) -> str:
    """Trim surrounding whitespace and upper-case *raw*.

    ``None`` normalizes to the empty string, which never validates.
    Idempotent: ``normalize_code(normalize_code(x)) == normalize_code(x)``.
    """
    if not raw:
        return ""
    return raw.strip().upper()


def is_valid_code(code: object) -> bool:
    """Return True iff *code* is exactly 8 characters from the alphabet."""
    if not isinstance(code, str) or len(code) != CODE_LENGTH:
        return False
    return all(ch in _ALPHABET_SET for ch in code)


def generate_code() -> str:
    """Draw a random candidate code.

    Each character is an independent uniform choice over the full alphabet.
    Uniqueness is *not* guaranteed here; the registry resolves collisions.
    """
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))

"""
Phone normalization for identity key generation.

The normalized phone value is the identity key used to match remote
contacts against the local store, so the rules here must stay stable
between runs.
"""

from __future__ import annotations

import re

# Whitespace plus the punctuation commonly used to format phone numbers
_PHONE_NOISE = re.compile(r"[\s()\-]")


def normalize_phone(value: str | None) -> str:
    """
    Normalize a phone-like value into an identity key.

    Removes all whitespace and the characters ``(``, ``)`` and ``-``, then
    trims. Normalizing an already-normalized value returns it unchanged.

    Args:
        value: Raw phone value from the source record

    Returns:
        Normalized string, or an empty string if nothing is left

    Example:
        >>> normalize_phone("(555) 123-4567")
        '5551234567'
    """
    if not value:
        return ""
    return _PHONE_NOISE.sub("", value).strip()

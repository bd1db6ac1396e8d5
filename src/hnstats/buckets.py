"""Username → output bucket routing."""

from __future__ import annotations

ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz_"
BUCKET_COUNT = len(ALPHABET)

# Empty names and anything outside the alphabet land here.
CATCH_ALL = ALPHABET.index("_")


def bucket_for(username: str | None) -> int:
    """Return the bucket index in ``[0, BUCKET_COUNT)`` for *username*."""
    if not username:
        return CATCH_ALL
    name = username.strip().lower()
    if not name:
        return CATCH_ALL
    idx = ALPHABET.find(name[0])
    return idx if idx >= 0 else CATCH_ALL


def bucket_char(index: int) -> str:
    return ALPHABET[index]

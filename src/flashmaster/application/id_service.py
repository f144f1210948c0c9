"""Stable identifiers for decks, cards and reviews."""

from ulid import ULID


def generate_id() -> str:
    """Generate a stable, time-sortable identifier using ULID."""
    return str(ULID())


def looks_like_id(value: str) -> bool:
    """True if ``value`` parses as a ULID (used to tell ids from deck names)."""
    try:
        ULID.from_str(value)
    except ValueError:
        return False
    return True

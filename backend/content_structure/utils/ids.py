"""ID helpers."""

from __future__ import annotations

from datetime import datetime, timezone

from content_structure.utils.hashing import short_md5

VERSION_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)
_BASE = 26


def sid_for(uid: str) -> str:
    """Short stable identifier derived from a uid."""
    return short_md5(uid)


def encode_base26(value: int) -> str:
    """Encode a non-negative integer with letters A-Z, most significant first."""
    if value <= 0:
        return "A"
    letters: list[str] = []
    current = value
    while current > 0:
        current, remainder = divmod(current, _BASE)
        letters.append(chr(ord("A") + remainder))
    return "".join(reversed(letters))


def compute_version_id(date: datetime | None = None) -> str:
    """Return the run identifier for ``date`` (defaults to now).

    Seconds elapsed since 2000-01-01 UTC are encoded in base 26 so that ids
    sort lexically in time order for equal lengths.
    """
    moment = date or datetime.now(tz=timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    seconds = max(0, int((moment - VERSION_EPOCH).total_seconds()))
    return encode_base26(seconds)

"""Decode-only records read from the predecessor app's keyed archives."""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LegacySong:
    name: str
    path: str
    file_data: bytes | None = field(default=None, repr=False)
    # Raw "<channel>-<program>" or "<program>" string, parsed at import time.
    midi_commands: str | None = None


@dataclass(frozen=True)
class LegacySetlist:
    name: str
    legacy_id: int
    songs: tuple[LegacySong, ...] = ()

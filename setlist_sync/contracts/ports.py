"""Collaborator ports consumed by the sync engine.

The song library, the annotation store and the setlist store belong to the
host application.  The engine talks to them only through these protocols,
passed in explicitly, so it never holds a reference with an unclear lifetime.
All methods are synchronous local operations; the only suspension points in
the engine are network requests.
"""
from __future__ import annotations

from typing import Protocol

from setlist_sync.models import AnnotationProfile, Setlist, Song


class SongLibrary(Protocol):
    """Read/write access to the local song library."""

    def resolve(self, song_id: str) -> Song | None:
        """Return the song with *song_id*, or ``None`` when it is not in the library."""
        ...

    def resolve_by_file_name(self, full_file_name: str) -> Song | None:
        """Return the song whose ``"<base>.<ext>"`` equals *full_file_name*."""
        ...

    def list_songs(self) -> list[Song]:
        ...

    def load_file_data(self, song: Song) -> bytes | None:
        """Return the document bytes behind *song*, or ``None`` if the file is missing."""
        ...

    def import_embedded_bytes(self, title: str, file_name: str, data: bytes) -> Song:
        """Store *data* as a new song file and return the created song.

        The library may convert the document on the way in (Word → PDF), in
        which case the returned song carries the converted extension.
        """
        ...

    def save_song(self, song: Song) -> None:
        ...

    def reload(self) -> None:
        """Re-read the library so newly imported songs become visible."""
        ...


class AnnotationStore(Protocol):
    """Per-song annotation profiles keyed by the song's full file name."""

    def load_profiles(self, song_key: str) -> list[AnnotationProfile]:
        ...

    def save_profiles(self, song_key: str, profiles: list[AnnotationProfile]) -> None:
        ...


class SetlistStore(Protocol):
    def save_setlist(self, setlist: Setlist) -> None:
        ...

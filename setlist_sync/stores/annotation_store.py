"""Per-song annotation profiles on disk.

Each song gets one file, ``<full file name with / replaced by _>_annotations.json``::

    {
      "songFileName": "Song.pdf",
      "profiles": [...],
      "activeProfileId": "...",
      "lastModified": "2024-05-01T20:15:00+00:00"
    }

A file that exists but cannot be decoded is user data in an unknown state.
Loading it yields no profiles and leaves it untouched; a later save moves it
aside to ``*.bak`` rather than overwriting it.
"""
from __future__ import annotations

import logging
import pathlib
from datetime import datetime

from pydantic import Field, ValidationError

from setlist_sync.models import AnnotationProfile
from setlist_sync.models.base import CamelModel, utc_now

logger = logging.getLogger(__name__)

_SUFFIX = "_annotations.json"


class SongAnnotations(CamelModel):
    """On-disk record for one song."""

    song_file_name: str
    profiles: list[AnnotationProfile] = Field(default_factory=list)
    active_profile_id: str | None = None
    last_modified: datetime = Field(default_factory=utc_now)

    @property
    def active_profile(self) -> AnnotationProfile | None:
        """The selected profile, falling back to the default one, then the first."""
        by_id = next((p for p in self.profiles if p.id == self.active_profile_id), None)
        if by_id is not None:
            return by_id
        return next((p for p in self.profiles if p.is_default), None) or next(
            iter(self.profiles), None
        )


class FileAnnotationStore:
    def __init__(self, root: pathlib.Path) -> None:
        self.root = root

    def path_for(self, song_key: str) -> pathlib.Path:
        return self.root / f"{song_key.replace('/', '_')}{_SUFFIX}"

    def _read(self, song_key: str) -> SongAnnotations | None:
        """The stored record; ``None`` when the file is absent or undecodable."""
        path = self.path_for(song_key)
        if not path.is_file():
            return None
        try:
            return SongAnnotations.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as exc:
            logger.warning("⚠️ Failed to decode annotations for %s: %s", song_key, exc)
            return None

    def load_profiles(self, song_key: str) -> list[AnnotationProfile]:
        record = self._read(song_key)
        return list(record.profiles) if record else []

    def active_profile(self, song_key: str) -> AnnotationProfile | None:
        record = self._read(song_key)
        return record.active_profile if record else None

    def save_profiles(self, song_key: str, profiles: list[AnnotationProfile]) -> None:
        path = self.path_for(song_key)
        record = self._read(song_key)
        if record is None and path.is_file():
            backup = path.with_name(f"{path.name}.bak")
            path.replace(backup)
            logger.warning("⚠️ Moved undecodable %s aside to %s", path.name, backup.name)

        active_id = record.active_profile_id if record else None
        if active_id not in {p.id for p in profiles}:
            active_id = profiles[0].id if profiles else None
        updated = SongAnnotations(
            song_file_name=song_key,
            profiles=profiles,
            active_profile_id=active_id,
            last_modified=utc_now(),
        )
        self.root.mkdir(parents=True, exist_ok=True)
        path.write_text(updated.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        logger.debug("📝 Saved %d annotation profile(s) for %s", len(profiles), song_key)

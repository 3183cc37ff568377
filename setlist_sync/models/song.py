"""Song and setlist models.

Songs are owned by the local library; the sync engine only reads and
annotates them.  Their ``id`` is local to one device, so the stable
cross-device key is the full file name (``"<file_name>.<file_extension>"``).
Setlists hold song ids, never song copies.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import Field

from setlist_sync.models.base import CamelModel, utc_now
from setlist_sync.models.midi import MIDIInstrumentType, MIDIProfile

if TYPE_CHECKING:
    from setlist_sync.contracts.ports import SongLibrary

PDF_EXTENSION = "pdf"
WORD_EXTENSIONS = frozenset({"doc", "docx"})


class Song(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    file_name: str
    file_extension: str
    artist: str | None = None
    key: str | None = None
    tempo: str | None = None
    notes: str | None = None
    page_count: int | None = None
    # Embedded document bytes; only populated while a transfer needs them.
    file_data: bytes | None = Field(default=None, exclude=True, repr=False)

    # Flat MIDI fields from before per-instrument profiles existed.
    midi_channel: int | None = None
    midi_program_number: int | None = None
    midi_bank_msb: int | None = Field(default=None, alias="midiBankMSB")
    midi_bank_lsb: int | None = Field(default=None, alias="midiBankLSB")
    midi_profiles: list[MIDIProfile] = Field(default_factory=list)

    @property
    def full_file_name(self) -> str:
        return f"{self.file_name}.{self.file_extension}"

    @property
    def is_pdf(self) -> bool:
        return self.file_extension.lower() == PDF_EXTENSION

    @property
    def is_word(self) -> bool:
        return self.file_extension.lower() in WORD_EXTENSIONS

    @property
    def display_name(self) -> str:
        if self.artist:
            return f"{self.artist} - {self.title}"
        return self.title

    @property
    def has_midi_program_change(self) -> bool:
        return self.midi_program_number is not None or any(p.is_active for p in self.midi_profiles)

    @property
    def active_midi_profiles(self) -> list[MIDIProfile]:
        return [p for p in self.midi_profiles if p.is_active]

    @property
    def primary_midi_profile(self) -> MIDIProfile | None:
        """Keyboard profile when present, else the first active one."""
        return self.midi_profile(MIDIInstrumentType.KEYBOARD) or next(
            iter(self.active_midi_profiles), None
        )

    def midi_profile(self, instrument_type: MIDIInstrumentType) -> MIDIProfile | None:
        return next((p for p in self.midi_profiles if p.instrument_type == instrument_type), None)

    def set_midi_profile(self, profile: MIDIProfile) -> None:
        """Add *profile*, replacing any existing profile for the same instrument type."""
        others = [p for p in self.midi_profiles if p.instrument_type != profile.instrument_type]
        self.midi_profiles = [*others, profile]

    def remove_midi_profile(self, instrument_type: MIDIInstrumentType) -> None:
        self.midi_profiles = [p for p in self.midi_profiles if p.instrument_type != instrument_type]

    def mirror_flat_midi_fields(self, profile: MIDIProfile) -> None:
        self.midi_channel = profile.channel
        self.midi_program_number = profile.program_number
        self.midi_bank_msb = profile.bank_msb
        self.midi_bank_lsb = profile.bank_lsb


class Setlist(CamelModel):
    """An ordered list of song references plus event metadata."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    song_ids: list[str] = Field(default_factory=list)
    date_created: datetime = Field(default_factory=utc_now)
    date_modified: datetime = Field(default_factory=utc_now)
    event: str | None = None
    venue: str | None = None
    event_date: datetime | None = None
    notes: str | None = None

    @property
    def song_count(self) -> int:
        return len(self.song_ids)

    def resolve_songs(self, library: SongLibrary) -> list[Song]:
        """Return the referenced songs in order; ids the library does not know are dropped."""
        songs: list[Song] = []
        for song_id in self.song_ids:
            song = library.resolve(song_id)
            if song is not None:
                songs.append(song)
        return songs

    def _touch(self) -> None:
        self.date_modified = utc_now()

    def add_song(self, song: Song) -> None:
        if song.id not in self.song_ids:
            self.song_ids = [*self.song_ids, song.id]
            self._touch()

    def remove_song(self, song_id: str) -> None:
        self.song_ids = [sid for sid in self.song_ids if sid != song_id]
        self._touch()

    def remove_song_at(self, index: int) -> None:
        if 0 <= index < len(self.song_ids):
            ids = list(self.song_ids)
            del ids[index]
            self.song_ids = ids
            self._touch()

    def move_song(self, source: int, destination: int) -> None:
        """Move the reference at *source* so it ends up at index *destination*."""
        if not 0 <= source < len(self.song_ids):
            return
        ids = list(self.song_ids)
        song_id = ids.pop(source)
        ids.insert(max(0, min(destination, len(ids))), song_id)
        self.song_ids = ids
        self._touch()

    def set_songs(self, songs: list[Song]) -> None:
        self.song_ids = [s.id for s in songs]
        self._touch()

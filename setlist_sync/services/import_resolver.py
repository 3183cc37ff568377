"""Resolve incoming song references against the local library.

Both import paths (legacy archives and current export documents) reduce
their songs to :class:`IncomingSong` and hand them to :class:`ImportResolver`,
which for each one:

1. finds the local song with the same full file name, or
2. for a Word document, a local PDF with the same base name (the library
   converted it on an earlier import), or
3. imports the embedded bytes as a new song, or
4. gives up on that reference.

MIDI and annotation metadata carried by the incoming record is then written
onto the resolved song.  A song that fails is logged and left out; the rest
of the setlist still imports.
"""
from __future__ import annotations

import enum
import logging
import posixpath
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from setlist_sync.contracts.ports import AnnotationStore, SongLibrary
from setlist_sync.models import (
    AnnotationProfile,
    LegacySetlist,
    LegacySong,
    MIDIInstrumentType,
    MIDIProfile,
    Setlist,
    Song,
)
from setlist_sync.models.song import PDF_EXTENSION, WORD_EXTENSIONS
from setlist_sync.services.schema_codec import ExportedSetlist, ExportedSong

logger = logging.getLogger(__name__)

# The predecessor app always sent bank select 0/3 alongside a program change.
# Nothing in its stored data says so; it is kept verbatim as a legacy quirk.
LEGACY_BANK_MSB = 0
LEGACY_BANK_LSB = 3

_CHANNEL_PROGRAM = re.compile(r"(\d+)-(\d+)")
_PROGRAM_ONLY = re.compile(r"\d+")


@dataclass(frozen=True)
class LegacyMIDICommand:
    channel: int
    program: int
    bank_msb: int = LEGACY_BANK_MSB
    bank_lsb: int = LEGACY_BANK_LSB

    def to_profile(self) -> MIDIProfile:
        return MIDIProfile(
            instrument_type=MIDIInstrumentType.KEYBOARD,
            channel=self.channel,
            program_number=self.program,
            bank_msb=self.bank_msb,
            bank_lsb=self.bank_lsb,
        )


def parse_legacy_midi(text: str | None) -> LegacyMIDICommand | None:
    """Parse a legacy ``midiCommands`` string.

    ``"3-42"`` selects channel 3, program 42; ``"42"`` selects program 42 on
    channel 0.  Anything else, including values outside the MIDI ranges,
    means "no MIDI data" rather than an error.
    """
    if not text:
        return None
    trimmed = text.strip()
    if match := _CHANNEL_PROGRAM.fullmatch(trimmed):
        channel, program = int(match.group(1)), int(match.group(2))
    elif _PROGRAM_ONLY.fullmatch(trimmed):
        channel, program = 0, int(trimmed)
    else:
        logger.debug("Ignoring unparseable legacy MIDI command %r", text)
        return None
    if channel > 15 or program > 127:
        logger.warning("⚠️ Legacy MIDI command %r is out of range; ignoring it", text)
        return None
    return LegacyMIDICommand(channel=channel, program=program)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def merge_annotation_profiles(
    local: list[AnnotationProfile],
    incoming: list[AnnotationProfile],
) -> list[AnnotationProfile]:
    """Merge *incoming* into *local* profile by profile.

    A profile whose id exists locally replaces the local copy only when its
    ``modified_at`` is strictly later; on a tie the local copy stays.  Unknown
    ids are appended in incoming order.  Local order is preserved.
    """
    merged = list(local)
    positions = {p.id: i for i, p in enumerate(merged)}
    for profile in incoming:
        index = positions.get(profile.id)
        if index is None:
            positions[profile.id] = len(merged)
            merged.append(profile)
        elif _as_utc(profile.modified_at) > _as_utc(merged[index].modified_at):
            merged[index] = profile
    return merged


@dataclass
class IncomingSong:
    """A song reference as it arrives from either import source."""

    title: str
    full_file_name: str
    file_data: bytes | None = field(default=None, repr=False)
    midi_profiles: list[MIDIProfile] = field(default_factory=list)
    midi_channel: int | None = None
    midi_program_number: int | None = None
    midi_bank_msb: int | None = None
    midi_bank_lsb: int | None = None
    legacy_midi: str | None = None
    # None: the source said nothing about annotations, leave local ones alone.
    annotation_profiles: list[AnnotationProfile] | None = None

    @classmethod
    def from_legacy(cls, song: LegacySong) -> IncomingSong:
        return cls(
            title=song.name,
            full_file_name=song.path,
            file_data=song.file_data,
            legacy_midi=song.midi_commands,
        )

    @classmethod
    def from_exported(cls, song: ExportedSong) -> IncomingSong:
        return cls(
            title=song.title,
            full_file_name=song.full_file_name,
            file_data=song.decoded_file_data,
            midi_profiles=song.listed_midi_profiles(),
            midi_channel=song.midi_channel,
            midi_program_number=song.midi_program_number,
            midi_bank_msb=song.midi_bank_msb,
            midi_bank_lsb=song.midi_bank_lsb,
            annotation_profiles=song.resolved_annotation_profiles(),
        )

    @property
    def base_name(self) -> str:
        return posixpath.splitext(self.full_file_name)[0]

    @property
    def extension(self) -> str:
        return posixpath.splitext(self.full_file_name)[1].lstrip(".").lower()

    def midi_update(self) -> tuple[list[MIDIProfile], bool] | None:
        """Profiles to write onto the resolved song, and whether they replace all existing ones.

        A profile list replaces the song's profiles wholesale.  Flat fields or
        a legacy command only set the keyboard profile.  ``None`` when the
        record carries no MIDI data.
        """
        if self.midi_profiles:
            return list(self.midi_profiles), True
        flat = MIDIProfile.from_legacy(
            self.midi_channel, self.midi_program_number, self.midi_bank_msb, self.midi_bank_lsb
        )
        if flat is not None:
            return [flat], False
        command = parse_legacy_midi(self.legacy_midi)
        if command is not None:
            return [command.to_profile()], False
        return None


class ResolutionKind(str, enum.Enum):
    EXACT = "exact"
    CONVERTED = "converted"
    IMPORTED = "imported"


@dataclass(frozen=True)
class SongResolution:
    song: Song
    kind: ResolutionKind


class ImportResolver:
    """Turns incoming song references into local song ids.

    Args:
        library: The local song library.
        annotation_store: Where merged annotation profiles are written.
    """

    def __init__(self, library: SongLibrary, annotation_store: AnnotationStore) -> None:
        self.library = library
        self.annotation_store = annotation_store

    def resolve_song(self, incoming: IncomingSong) -> SongResolution | None:
        existing = self.library.resolve_by_file_name(incoming.full_file_name)
        if existing is not None:
            return SongResolution(existing, ResolutionKind.EXACT)

        if incoming.extension in WORD_EXTENSIONS:
            converted = next(
                (
                    s for s in self.library.list_songs()
                    if s.file_name == incoming.base_name and s.file_extension.lower() == PDF_EXTENSION
                ),
                None,
            )
            if converted is not None:
                logger.debug("📄 %s matched converted %s", incoming.full_file_name, converted.full_file_name)
                return SongResolution(converted, ResolutionKind.CONVERTED)

        if incoming.file_data:
            song = self.library.import_embedded_bytes(
                incoming.title, incoming.full_file_name, incoming.file_data
            )
            logger.info("📥 Imported %s as %s", incoming.full_file_name, song.full_file_name)
            return SongResolution(song, ResolutionKind.IMPORTED)

        logger.warning("⚠️ Skipping %s: not in the library and no embedded file", incoming.full_file_name)
        return None

    def _apply_midi(self, song: Song, incoming: IncomingSong) -> bool:
        update = incoming.midi_update()
        if update is None:
            return False
        profiles, replace_all = update
        if replace_all:
            song.midi_profiles = []
        for profile in profiles:
            song.set_midi_profile(profile)
        keyboard = song.midi_profile(MIDIInstrumentType.KEYBOARD)
        if keyboard is not None:
            song.mirror_flat_midi_fields(keyboard)
        primary = song.primary_midi_profile
        logger.info("🎹 MIDI: %s → %s", song.title, primary.description if primary else "none")
        return True

    def _merge_annotations(self, song: Song, incoming: IncomingSong) -> None:
        if not incoming.annotation_profiles:
            return
        key = song.full_file_name
        merged = merge_annotation_profiles(self.annotation_store.load_profiles(key), incoming.annotation_profiles)
        self.annotation_store.save_profiles(key, merged)
        logger.info("📝 Annotations: %s → %d profile(s) merged", song.title, len(incoming.annotation_profiles))

    def import_song(self, incoming: IncomingSong) -> Song | None:
        """Resolve one song and write its metadata; ``None`` when it cannot be satisfied."""
        resolution = self.resolve_song(incoming)
        if resolution is None:
            return None
        song = resolution.song
        if self._apply_midi(song, incoming):
            self.library.save_song(song)
        self._merge_annotations(song, incoming)
        return song

    def import_songs(self, incoming: list[IncomingSong]) -> list[str]:
        """Resolve every song, returning the ids of those that resolved, in order."""
        ids: list[str] = []
        for entry in incoming:
            try:
                song = self.import_song(entry)
            except Exception as exc:
                # One song never aborts the setlist, whatever the host library raises.
                logger.warning("⚠️ Skipping %s: %s", entry.full_file_name, exc, exc_info=True)
                continue
            if song is not None:
                ids.append(song.id)
        return ids

    def import_legacy(self, legacy: LegacySetlist) -> Setlist:
        ids = self.import_songs([IncomingSong.from_legacy(s) for s in legacy.songs])
        logger.info("✅ Legacy %r: %d of %d song(s) resolved", legacy.name, len(ids), len(legacy.songs))
        return Setlist(name=legacy.name, song_ids=ids)

    def import_exported(self, exported: ExportedSetlist) -> Setlist:
        ids = self.import_songs([IncomingSong.from_exported(s) for s in exported.songs])
        logger.info("✅ %r: %d of %d song(s) resolved", exported.name, len(ids), len(exported.songs))
        return exported.to_setlist(ids)

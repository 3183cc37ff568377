"""Versioned JSON export format for setlists.

Four versions of the format exist in the wild.  Each one only added keys:

    v1  setlist name/id/event/venue/dates; songs with id, title, fileName,
        fileExtension, artist, key, tempo, notes, pageCount, fileData
    v2  + flat per-song MIDI fields (midiChannel, midiProgramNumber,
        midiBankMSB, midiBankLSB)
    v3  + per-instrument ``midiProfiles``
    v4  + per-song ``annotationProfiles``

Writers always emit the current version, still including the flat MIDI
fields (mirroring the keyboard profile) so v2-era readers keep working.

Readers accept every version.  A document is first lifted to the current
version by a chain of small pure upgraders (``upgrade_v1_to_v2`` …), then
validated into the ``Exported*`` models below.  Those models are tolerant:
every field is optional with a default, and a value of the wrong type is
treated as absent instead of failing the document.  Only malformed JSON, a
non-object top level, or a missing ``songs`` key is fatal.
"""
from __future__ import annotations

import base64
import binascii
import copy
import json
import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from pydantic import ConfigDict, Field, ValidationError, ValidationInfo, field_validator
from pydantic_core.core_schema import ValidatorFunctionWrapHandler

from setlist_sync.errors import ArchiveStage, InvalidFormatError
from setlist_sync.models import (
    Annotation,
    AnnotationColor,
    AnnotationFontSize,
    AnnotationProfile,
    MIDIInstrumentType,
    MIDIProfile,
    Setlist,
    Song,
    one_per_instrument,
)
from setlist_sync.models.base import CamelModel, to_camel, utc_now

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 4
JSON_CONTENT_TYPE = "application/json"

Document = dict[str, Any]


# ---------------------------------------------------------------------------
# Current-shape models (decode side)
# ---------------------------------------------------------------------------


class _TolerantModel(CamelModel):
    """Wire model whose fields fall back to their default on a type mismatch."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("*", mode="wrap")
    @classmethod
    def _absent_on_mismatch(
        cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo
    ) -> Any:
        try:
            return handler(value)
        except ValidationError:
            field_name = info.field_name or ""
            logger.debug("⚠️ Ignoring malformed %s.%s: %r", cls.__name__, field_name, value)
            return cls.model_fields[field_name].get_default(call_default_factory=True)


class ExportedAnnotation(_TolerantModel):
    id: str | None = None
    page_index: int = Field(default=0, ge=0)
    relative_x: float = 0.5
    relative_y: float = 0.5
    text: str = ""
    color: AnnotationColor = AnnotationColor.YELLOW
    font_size: AnnotationFontSize = AnnotationFontSize.SMALL
    is_bold: bool = False

    def to_annotation(self) -> Annotation:
        return Annotation(
            id=self.id or str(uuid.uuid4()),
            page_index=self.page_index,
            relative_x=self.relative_x,
            relative_y=self.relative_y,
            text=self.text,
            color=self.color,
            font_size=self.font_size,
            is_bold=self.is_bold,
        )


class ExportedAnnotationProfile(_TolerantModel):
    id: str | None = None
    name: str = "Imported"
    owner_name: str | None = None
    is_default: bool = False
    annotations: list[ExportedAnnotation] = Field(default_factory=list)
    created_at: datetime | None = None
    # Writers before timestamps were exported omit this; such a profile is
    # stamped "now" on import and therefore wins the merge.
    modified_at: datetime | None = None

    def to_profile(self) -> AnnotationProfile:
        now = utc_now()
        return AnnotationProfile(
            id=self.id or str(uuid.uuid4()),
            name=self.name,
            owner_name=self.owner_name,
            is_default=self.is_default,
            annotations=[a.to_annotation() for a in self.annotations],
            created_at=self.created_at or now,
            modified_at=self.modified_at or now,
        )


class ExportedMIDIProfile(_TolerantModel):
    id: str | None = None
    instrument_type: MIDIInstrumentType | None = None
    channel: int | None = Field(default=None, ge=0, le=15)
    program_number: int | None = Field(default=None, ge=0, le=127)
    bank_msb: int | None = Field(default=None, ge=0, le=127, alias="bankMSB")
    bank_lsb: int | None = Field(default=None, ge=0, le=127, alias="bankLSB")
    label: str | None = None

    def to_profile(self) -> MIDIProfile | None:
        """Domain profile, or ``None`` when the type is unknown or there is no program."""
        if self.instrument_type is None or self.program_number is None:
            return None
        return MIDIProfile(
            id=self.id or str(uuid.uuid4()),
            instrument_type=self.instrument_type,
            channel=self.channel,
            program_number=self.program_number,
            bank_msb=self.bank_msb,
            bank_lsb=self.bank_lsb,
            label=self.label,
        )


class ExportedSong(_TolerantModel):
    id: str | None = None
    title: str = ""
    file_name: str = ""
    file_extension: str = ""
    artist: str | None = None
    key: str | None = None
    tempo: str | None = None
    notes: str | None = None
    page_count: int | None = None
    midi_channel: int | None = Field(default=None, ge=0, le=15)
    midi_program_number: int | None = Field(default=None, ge=0, le=127)
    midi_bank_msb: int | None = Field(default=None, ge=0, le=127, alias="midiBankMSB")
    midi_bank_lsb: int | None = Field(default=None, ge=0, le=127, alias="midiBankLSB")
    midi_profiles: list[ExportedMIDIProfile] = Field(default_factory=list)
    # None means "this document says nothing about annotations".
    annotation_profiles: list[ExportedAnnotationProfile] | None = None
    file_data: str | None = None

    @field_validator("annotation_profiles")
    @classmethod
    def _empty_means_absent(
        cls, value: list[ExportedAnnotationProfile] | None
    ) -> list[ExportedAnnotationProfile] | None:
        return value or None

    @property
    def full_file_name(self) -> str:
        return f"{self.file_name}.{self.file_extension}"

    @property
    def decoded_file_data(self) -> bytes | None:
        if not self.file_data:
            return None
        try:
            return base64.b64decode(self.file_data, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("⚠️ fileData for %s is not valid base64; ignoring it", self.full_file_name)
            return None

    def listed_midi_profiles(self) -> list[MIDIProfile]:
        """Usable ``midiProfiles`` entries, one per instrument type (the last entry wins)."""
        return one_per_instrument([p for p in (e.to_profile() for e in self.midi_profiles) if p is not None])

    def resolved_midi_profiles(self) -> list[MIDIProfile]:
        """Profiles from ``midiProfiles`` when any are usable, else one keyboard
        profile synthesized from the flat fields, else nothing."""
        profiles = self.listed_midi_profiles()
        if profiles:
            return profiles
        legacy = MIDIProfile.from_legacy(
            self.midi_channel, self.midi_program_number, self.midi_bank_msb, self.midi_bank_lsb
        )
        return [legacy] if legacy is not None else []

    def resolved_annotation_profiles(self) -> list[AnnotationProfile] | None:
        if self.annotation_profiles is None:
            return None
        return [p.to_profile() for p in self.annotation_profiles]

    def to_song(self) -> Song:
        """Materialize this entry as a standalone :class:`Song` (no library lookup)."""
        song = Song(
            id=self.id or str(uuid.uuid4()),
            title=self.title or self.file_name,
            file_name=self.file_name,
            file_extension=self.file_extension,
            artist=self.artist,
            key=self.key,
            tempo=self.tempo,
            notes=self.notes,
            page_count=self.page_count,
            file_data=self.decoded_file_data,
            midi_channel=self.midi_channel,
            midi_program_number=self.midi_program_number,
            midi_bank_msb=self.midi_bank_msb,
            midi_bank_lsb=self.midi_bank_lsb,
        )
        song.midi_profiles = self.resolved_midi_profiles()
        keyboard = song.midi_profile(MIDIInstrumentType.KEYBOARD)
        if keyboard is not None:
            song.mirror_flat_midi_fields(keyboard)
        return song


class ExportedSetlist(_TolerantModel):
    version: int = CURRENT_SCHEMA_VERSION
    id: str | None = None
    name: str = "Unknown"
    event: str | None = None
    venue: str | None = None
    date_created: datetime | None = None
    date_modified: datetime | None = None
    event_date: datetime | None = None
    notes: str | None = None
    songs: list[ExportedSong] = Field(default_factory=list)

    def to_setlist(self, song_ids: list[str]) -> Setlist:
        """A new local setlist carrying this document's metadata and *song_ids*.

        The local id is always fresh: remote ids belong to another device.
        """
        now = utc_now()
        return Setlist(
            name=self.name,
            song_ids=song_ids,
            date_created=now,
            date_modified=now,
            event=self.event,
            venue=self.venue,
            event_date=self.event_date,
            notes=self.notes,
        )


# ---------------------------------------------------------------------------
# Upgraders
# ---------------------------------------------------------------------------


def _songs(doc: Document) -> list[Document]:
    songs = doc.get("songs")
    if not isinstance(songs, list):
        return []
    return [s for s in songs if isinstance(s, dict)]


def upgrade_v1_to_v2(doc: Document) -> Document:
    """v2 introduced flat MIDI fields; v1 songs simply have none."""
    upgraded = copy.deepcopy(doc)
    for song in _songs(upgraded):
        for key in ("midiChannel", "midiProgramNumber", "midiBankMSB", "midiBankLSB"):
            song.setdefault(key, None)
    upgraded["version"] = 2
    return upgraded


def upgrade_v2_to_v3(doc: Document) -> Document:
    """v3 introduced ``midiProfiles``; lift a flat program change into a keyboard profile."""
    upgraded = copy.deepcopy(doc)
    for song in _songs(upgraded):
        if song.get("midiProfiles"):
            continue
        program = song.get("midiProgramNumber")
        if isinstance(program, int) and not isinstance(program, bool):
            song["midiProfiles"] = [
                {
                    "instrumentType": MIDIInstrumentType.KEYBOARD.value,
                    "channel": song.get("midiChannel"),
                    "programNumber": program,
                    "bankMSB": song.get("midiBankMSB"),
                    "bankLSB": song.get("midiBankLSB"),
                }
            ]
        else:
            song["midiProfiles"] = []
    upgraded["version"] = 3
    return upgraded


def upgrade_v3_to_v4(doc: Document) -> Document:
    """v4 introduced ``annotationProfiles``; older songs say nothing about annotations."""
    upgraded = copy.deepcopy(doc)
    for song in _songs(upgraded):
        song.setdefault("annotationProfiles", None)
    upgraded["version"] = 4
    return upgraded


_UPGRADERS: dict[int, Callable[[Document], Document]] = {
    1: upgrade_v1_to_v2,
    2: upgrade_v2_to_v3,
    3: upgrade_v3_to_v4,
}


def declared_version(doc: Mapping[str, Any]) -> int:
    """The document's version, clamped to [1, current]; missing or malformed reads as 1."""
    version = doc.get("version")
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        return 1
    return min(version, CURRENT_SCHEMA_VERSION)


def upgrade_document(doc: Document) -> Document:
    """Run every upgrader from the declared version up to the current one."""
    version = declared_version(doc)
    if version < CURRENT_SCHEMA_VERSION:
        logger.debug("📄 Upgrading export document from v%d", version)
    while version < CURRENT_SCHEMA_VERSION:
        doc = _UPGRADERS[version](doc)
        version += 1
    return doc


def _drop_non_objects(doc: Document) -> Document:
    """Remove non-object entries from the nested lists so one bad entry
    does not invalidate its siblings."""
    doc = dict(doc)
    songs = []
    for song in _songs(doc):
        song = dict(song)
        for key in ("midiProfiles", "annotationProfiles"):
            if isinstance(song.get(key), list):
                song[key] = [e for e in song[key] if isinstance(e, dict)]
        profiles = song.get("annotationProfiles")
        for profile in profiles if isinstance(profiles, list) else []:
            if isinstance(profile.get("annotations"), list):
                profile["annotations"] = [a for a in profile["annotations"] if isinstance(a, dict)]
        songs.append(song)
    doc["songs"] = songs
    return doc


def decode_export_document(data: bytes | str) -> ExportedSetlist:
    """Parse any known export version into the current shape.

    Raises:
        InvalidFormatError: ``stage=json`` when the payload is not a JSON
            object or has no ``songs`` key.
    """
    try:
        doc = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidFormatError(ArchiveStage.JSON, "malformed JSON") from exc
    if not isinstance(doc, dict):
        raise InvalidFormatError(ArchiveStage.JSON, "top level is not an object")
    if "songs" not in doc:
        raise InvalidFormatError(ArchiveStage.JSON, "missing songs")

    exported = ExportedSetlist.model_validate(_drop_non_objects(upgrade_document(doc)))
    logger.info("📄 Decoded export %r with %d song(s)", exported.name, len(exported.songs))
    return exported


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _midi_profile_entry(profile: MIDIProfile) -> Document:
    entry: Document = {"id": profile.id, "instrumentType": profile.instrument_type.value}
    optional = {
        "channel": profile.channel,
        "programNumber": profile.program_number,
        "bankMSB": profile.bank_msb,
        "bankLSB": profile.bank_lsb,
        "label": profile.label,
    }
    entry.update({k: v for k, v in optional.items() if v is not None})
    return entry


def _annotation_profile_entry(profile: AnnotationProfile) -> Document:
    entry: Document = {
        "id": profile.id,
        "name": profile.name,
        "isDefault": profile.is_default,
        "createdAt": profile.created_at.isoformat(),
        "modifiedAt": profile.modified_at.isoformat(),
    }
    if profile.owner_name is not None:
        entry["ownerName"] = profile.owner_name
    if profile.annotations:
        entry["annotations"] = [
            {
                "id": a.id,
                "pageIndex": a.page_index,
                "relativeX": a.relative_x,
                "relativeY": a.relative_y,
                "text": a.text,
                "color": a.color.value,
                "fontSize": a.font_size.value,
                "isBold": a.is_bold,
            }
            for a in profile.annotations
        ]
    return entry


def _song_entry(
    song: Song,
    annotation_profiles: list[AnnotationProfile],
    include_file_data: bool,
) -> Document:
    entry: Document = {
        "id": song.id,
        "title": song.title,
        "fileName": song.file_name,
        "fileExtension": song.file_extension,
    }
    optional = {
        "artist": song.artist,
        "key": song.key,
        "tempo": song.tempo,
        "notes": song.notes,
        "pageCount": song.page_count,
    }
    entry.update({k: v for k, v in optional.items() if v is not None})

    active = song.active_midi_profiles
    if active:
        entry["midiProfiles"] = [_midi_profile_entry(p) for p in active]

    # Flat fields for v2-era readers, mirroring the keyboard profile.
    if song.has_midi_program_change:
        legacy = song.primary_midi_profile
        flat = {
            "midiChannel": legacy.channel if legacy else song.midi_channel,
            "midiProgramNumber": legacy.program_number if legacy else song.midi_program_number,
            "midiBankMSB": legacy.bank_msb if legacy else song.midi_bank_msb,
            "midiBankLSB": legacy.bank_lsb if legacy else song.midi_bank_lsb,
        }
        entry.update({k: v for k, v in flat.items() if v is not None})

    if annotation_profiles:
        entry["annotationProfiles"] = [_annotation_profile_entry(p) for p in annotation_profiles]

    if include_file_data and song.file_data:
        entry["fileData"] = base64.b64encode(song.file_data).decode("ascii")
    return entry


def build_export_document(
    setlist: Setlist,
    songs: list[Song],
    annotations: Mapping[str, list[AnnotationProfile]] | None = None,
    *,
    include_file_data: bool = True,
) -> Document:
    """Build the current-version export document.

    *songs* are the already-resolved songs of *setlist*, in order.
    *annotations* maps a song's full file name to its annotation profiles.
    """
    annotations = annotations or {}
    doc: Document = {
        "version": CURRENT_SCHEMA_VERSION,
        "name": setlist.name,
        "id": setlist.id,
        "event": setlist.event,
        "venue": setlist.venue,
        "dateCreated": setlist.date_created.isoformat(),
        "dateModified": setlist.date_modified.isoformat(),
        "songs": [
            _song_entry(song, annotations.get(song.full_file_name, []), include_file_data)
            for song in songs
        ],
    }
    if setlist.event_date is not None:
        doc["eventDate"] = setlist.event_date.isoformat()
    if setlist.notes is not None:
        doc["notes"] = setlist.notes
    return doc


def encode_setlist(
    setlist: Setlist,
    songs: list[Song],
    annotations: Mapping[str, list[AnnotationProfile]] | None = None,
    *,
    include_file_data: bool = True,
) -> bytes:
    """Serialize *setlist* as pretty-printed UTF-8 JSON in the current version."""
    doc = build_export_document(setlist, songs, annotations, include_file_data=include_file_data)
    return json.dumps(doc, indent=2, ensure_ascii=False).encode("utf-8")

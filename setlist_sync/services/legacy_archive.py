"""Decoder for setlists written by the predecessor app.

Those blobs are keyed archives: a binary property list whose ``$objects``
array holds every object of the graph, with links between objects stored
as integer indices into that array.  The old app archived its setlist twice:
the setlist graph was archived, and the resulting bytes were archived
again as an ``NSData``.  The result was usually gzip-compressed:

    gzip?                                 (magic 1f 8b)
    └── outer plist   $objects[3]["NS.data"]  → bytes
        └── inner plist   $objects[1]         → root setlist dict
                songlistName, songlistID, songs → {"NS.objects": [ref, ...]}
                    song dict: songName, songPath, actualFile, midiCommands

Every field access in the inner graph goes through
:func:`resolve_reference`, the one place the back-reference rule lives.
Decoding is pure: the same bytes always yield an equal
:class:`~setlist_sync.models.LegacySetlist`.  Either the whole setlist
decodes or an error is raised; no partial setlist is ever returned.
"""
from __future__ import annotations

import gzip
import logging
import plistlib
import zlib
from collections.abc import Sequence
from xml.parsers.expat import ExpatError

from setlist_sync.errors import ArchiveStage, DecompressionFailedError, InvalidFormatError
from setlist_sync.models import LegacySetlist, LegacySong

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"

# Keyed archives reserve index 0 for this placeholder; a reference to it means nil.
NULL_SENTINEL = "$null"

_UID_KEY = "CF$UID"
_OUTER_PAYLOAD_INDEX = 3
_ROOT_SETLIST_INDEX = 1


def is_gzip(data: bytes) -> bool:
    return len(data) > 2 and data[:2] == GZIP_MAGIC


def gunzip(data: bytes) -> bytes:
    """Decompress gzip-framed *data*, raising :class:`DecompressionFailedError` on corrupt input."""
    try:
        plain = gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as exc:
        logger.error("❌ Gzip decompression failed: %s", exc)
        raise DecompressionFailedError() from exc
    logger.debug("📦 Gzip: %d → %d bytes", len(data), len(plain))
    return plain


def _reference_index(value: object) -> int | None:
    """Return the object-table index *value* points at, or ``None`` if it is not a reference.

    plistlib surfaces binary-plist UIDs as :class:`plistlib.UID`; archives
    that went through an XML round trip carry ``{"CF$UID": <int>}`` dicts.
    """
    if isinstance(value, plistlib.UID):
        return value.data
    if isinstance(value, dict) and len(value) == 1 and isinstance(value.get(_UID_KEY), int):
        return value[_UID_KEY]
    return None


def resolve_reference(value: object, objects: Sequence[object]) -> object | None:
    """Follow *value* through the object table when it is a back-reference.

    - A reference to an index outside the table resolves to ``None``.
    - A reference to the ``"$null"`` sentinel resolves to ``None`` (absent),
      never to the string itself.
    - Anything that is not a reference is returned unchanged.
    """
    if value is None:
        return None
    index = _reference_index(value)
    if index is None:
        return value
    if not 0 <= index < len(objects):
        return None
    resolved = objects[index]
    if resolved == NULL_SENTINEL:
        return None
    return resolved


def _load_object_table(data: bytes, stage: ArchiveStage) -> list[object]:
    try:
        archive = plistlib.loads(data)
    except (
        plistlib.InvalidFileException,
        ExpatError,
        ValueError,
        TypeError,
        OverflowError,
        # plistlib itself: malformed <date> text, self-referencing binary tables
        AttributeError,
        RecursionError,
    ) as exc:
        raise InvalidFormatError(stage, "not a property list") from exc
    if not isinstance(archive, dict):
        raise InvalidFormatError(stage, "top level is not a dictionary")
    objects = archive.get("$objects")
    if not isinstance(objects, list):
        raise InvalidFormatError(stage, "missing $objects")
    return objects


def _resolved_str(value: object, objects: Sequence[object]) -> str | None:
    resolved = resolve_reference(value, objects)
    return resolved if isinstance(resolved, str) else None


def _resolved_bytes(value: object, objects: Sequence[object]) -> bytes | None:
    resolved = resolve_reference(value, objects)
    return bytes(resolved) if isinstance(resolved, (bytes, bytearray)) else None


def _resolved_int(value: object, objects: Sequence[object]) -> int | None:
    resolved = resolve_reference(value, objects)
    if isinstance(resolved, bool) or not isinstance(resolved, int):
        return None
    return resolved


def _decode_song(entry: dict[str, object], objects: Sequence[object]) -> LegacySong:
    return LegacySong(
        name=_resolved_str(entry.get("songName"), objects) or "",
        path=_resolved_str(entry.get("songPath"), objects) or "",
        file_data=_resolved_bytes(entry.get("actualFile"), objects),
        midi_commands=_resolved_str(entry.get("midiCommands"), objects),
    )


def decode_legacy_archive(data: bytes) -> LegacySetlist:
    """Decode one legacy setlist blob.

    Raises:
        DecompressionFailedError: gzip framing present but the stream is corrupt.
        InvalidFormatError: the outer or inner archive is missing or malformed.
    """
    if is_gzip(data):
        data = gunzip(data)

    outer = _load_object_table(data, ArchiveStage.OUTER)
    if len(outer) <= _OUTER_PAYLOAD_INDEX:
        raise InvalidFormatError(ArchiveStage.OUTER, "object table too short")
    payload = outer[_OUTER_PAYLOAD_INDEX]
    inner_bytes = payload.get("NS.data") if isinstance(payload, dict) else None
    if not isinstance(inner_bytes, (bytes, bytearray)):
        raise InvalidFormatError(ArchiveStage.OUTER, "no NS.data payload")

    objects = _load_object_table(bytes(inner_bytes), ArchiveStage.INNER)
    if len(objects) <= _ROOT_SETLIST_INDEX or not isinstance(objects[_ROOT_SETLIST_INDEX], dict):
        raise InvalidFormatError(ArchiveStage.INNER, "no root setlist object")
    root: dict[str, object] = objects[_ROOT_SETLIST_INDEX]

    name = _resolved_str(root.get("songlistName"), objects) or "Unknown"
    legacy_id = _resolved_int(root.get("songlistID"), objects) or 0

    songs: list[LegacySong] = []
    container = resolve_reference(root.get("songs"), objects)
    refs = container.get("NS.objects") if isinstance(container, dict) else None
    if isinstance(refs, list):
        for ref in refs:
            entry = resolve_reference(ref, objects)
            if isinstance(entry, dict):
                songs.append(_decode_song(entry, objects))

    logger.info("📋 Legacy setlist %r (ID: %d) with %d song(s)", name, legacy_id, len(songs))
    return LegacySetlist(name=name, legacy_id=legacy_id, songs=tuple(songs))

from setlist_sync.models.annotation import (
    Annotation,
    AnnotationColor,
    AnnotationFontSize,
    AnnotationProfile,
)
from setlist_sync.models.legacy import LegacySetlist, LegacySong
from setlist_sync.models.midi import MIDIInstrumentType, MIDIProfile, one_per_instrument
from setlist_sync.models.song import Setlist, Song

__all__ = [
    "Annotation",
    "AnnotationColor",
    "AnnotationFontSize",
    "AnnotationProfile",
    "LegacySetlist",
    "LegacySong",
    "MIDIInstrumentType",
    "MIDIProfile",
    "one_per_instrument",
    "Setlist",
    "Song",
]

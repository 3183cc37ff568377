"""MIDI program-change profiles attached to songs.

A song carries at most one profile per instrument type.  A profile without a
program number is a placeholder left behind by the settings UI: it is not
active, is never sent to a device, and is never exported.
"""
from __future__ import annotations

import enum
import uuid

from pydantic import Field

from setlist_sync.models.base import CamelModel


class MIDIInstrumentType(str, enum.Enum):
    KEYBOARD = "keyboard"
    GUITAR = "guitar"
    BASS = "bass"
    SYNTH = "synth"
    CUSTOM = "custom"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class MIDIProfile(CamelModel):
    """Program change (plus optional bank select) for one instrument."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    instrument_type: MIDIInstrumentType
    channel: int | None = Field(default=None, ge=0, le=15)
    program_number: int | None = Field(default=None, ge=0, le=127)
    bank_msb: int | None = Field(default=None, ge=0, le=127, alias="bankMSB")
    bank_lsb: int | None = Field(default=None, ge=0, le=127, alias="bankLSB")
    label: str | None = None

    @property
    def is_active(self) -> bool:
        return self.program_number is not None

    @property
    def description(self) -> str:
        """Human-readable summary; channels are shown 1-based as on hardware."""
        if self.program_number is None:
            return "Not configured"
        ch = (self.channel or 0) + 1
        if self.bank_msb is not None and self.bank_lsb is not None:
            return f"Ch{ch} Bank:{self.bank_msb}/{self.bank_lsb} Prog:{self.program_number}"
        if self.bank_msb is not None:
            return f"Ch{ch} Bank:{self.bank_msb} Prog:{self.program_number}"
        return f"Ch{ch} Prog:{self.program_number}"

    @classmethod
    def from_legacy(
        cls,
        channel: int | None,
        program: int | None,
        bank_msb: int | None,
        bank_lsb: int | None,
        instrument_type: MIDIInstrumentType = MIDIInstrumentType.KEYBOARD,
    ) -> MIDIProfile | None:
        """Build a profile from the flat per-song MIDI fields, or ``None`` without a program."""
        if program is None:
            return None
        return cls(
            instrument_type=instrument_type,
            channel=channel,
            program_number=program,
            bank_msb=bank_msb,
            bank_lsb=bank_lsb,
        )


def one_per_instrument(profiles: list[MIDIProfile]) -> list[MIDIProfile]:
    """Collapse *profiles* so each instrument type appears once; the last one wins.

    Ordering matches repeated :meth:`Song.set_midi_profile` calls: a replaced
    profile moves to the end.
    """
    by_type: dict[MIDIInstrumentType, MIDIProfile] = {}
    for profile in profiles:
        by_type.pop(profile.instrument_type, None)
        by_type[profile.instrument_type] = profile
    return list(by_type.values())

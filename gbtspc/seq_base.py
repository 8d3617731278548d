"""
Shared data model for the SPC sequence converter.

Holds the driver constants, the per-conversion state (sequence, tracks and
notes), the patch-fix table and the immutable conversion configuration.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from aram import AramImage
from seq_events import OpcodeKind


APP_NAME = "GBT SPC2MIDI"
APP_VERSION = "1.0.0"

SPC_TRACK_MAX = 8        # tracks addressable by the sequence header
TRACK_SLOT_MAX = 16      # track slots held in the sequence state
SPC_NOTE_KEYSHIFT = 24   # driver key 0 is MIDI C1
DEFAULT_TIMEBASE = 48
DEFAULT_SPC_TEMPO = 0x40

# Driver register defaults applied at every track reset
DEFAULT_NOTE_LENGTH = 48
DEFAULT_QUANTIZE = 7
DEFAULT_VELOCITY_INDEX = 15
STACK_DEPTH_MAX = 8

# Note velocity table indexed by the low nibble of the note parameter byte
VELOCITY_TABLE = [
    0x19, 0x32, 0x4C, 0x65, 0x72, 0x7F, 0x8C, 0x98,
    0xA5, 0xB2, 0xBF, 0xCB, 0xD8, 0xE5, 0xF2, 0xFC,
]

NOTE_NAMES = ["C ", "C#", "D ", "D#", "E ", "F ", "F#",
              "G ", "G#", "A ", "A#", "B "]


class DriverVersion(Enum):
    """Sound driver variants the detector can identify."""
    UNKNOWN = "Unknown Version / Unsupported"
    GBT = "Gokinjo Bouken Tai"

    @property
    def display_name(self) -> str:
        return self.value


class ResetType(Enum):
    """System reset messages inserted at the start of the MIDI output."""
    GM1 = "gm1"
    GS = "gs"
    XG = "xg"
    GM2 = "gm2"

    @property
    def sysex_messages(self) -> List[bytes]:
        """Complete sysex messages (including F0/F7) for this reset."""
        gm1_on = b"\xf0\x7e\x7f\x09\x01\xf7"
        if self == ResetType.GS:
            return [gm1_on, b"\xf0\x41\x10\x42\x12\x40\x00\x7f\x00\x41\xf7"]
        if self == ResetType.XG:
            return [gm1_on, b"\xf0\x43\x10\x4c\x00\x00\x7e\x00\xf7"]
        if self == ResetType.GM2:
            return [b"\xf0\x7e\x7f\x09\x03\xf7"]
        return [gm1_on]


@dataclass(frozen=True)
class PatchFix:
    """MIDI remapping for one driver patch number."""
    bank_msb: int = 0
    bank_lsb: int = 0
    patch: int = 0      # zero-based program number
    key: int = 0        # key shift in semitones
    mml_key: int = 0    # carried for MML export, unused by MIDI output


def default_patch_fix(patch: int) -> PatchFix:
    """Identity mapping for a driver patch number."""
    return PatchFix(bank_msb=0, bank_lsb=patch >> 7, patch=patch & 0x7F)


def default_patch_fix_table() -> List[PatchFix]:
    return [default_patch_fix(patch) for patch in range(256)]


@dataclass(frozen=True)
class ConversionConfig:
    """Settings for one conversion. Built once, never mutated mid-conversion.

    loop_count of 0 disables the loop ceiling (the time limit still applies);
    text_loop_count of 0 keeps diagnostic records for every loop.
    """
    loop_count: int = 2
    text_loop_count: int = 1
    time_limit: float = 1200.0
    less_text: bool = False
    linear_volume: bool = False
    reset_type: ResetType = ResetType.GM1
    timebase: int = DEFAULT_TIMEBASE
    patch_fix: Optional[Tuple[PatchFix, ...]] = None
    force_song_index: Optional[int] = None
    force_song_list_addr: Optional[int] = None
    max_events_per_tick: int = 4096

    def __post_init__(self):
        if self.patch_fix is not None and len(self.patch_fix) != 256:
            raise ValueError(f"patch_fix must have 256 entries, got {len(self.patch_fix)}")
        if self.timebase <= 0:
            raise ValueError(f"timebase must be positive, got {self.timebase}")

    def patch_fix_table(self) -> List[PatchFix]:
        """Patch-fix table for a conversion: the override, or the defaults."""
        if self.patch_fix is not None:
            return list(self.patch_fix)
        return default_patch_fix_table()


def spc_tempo_to_bpm(tempo: int) -> float:
    """Convert a driver tempo value into beats per minute."""
    # timer0 4ms * 48 TPQN * 256 * 2
    return tempo * 60000000 / 98304000


def midi_velocity_of(value: int, linear: bool = False) -> int:
    """Convert a driver velocity (0-255) into a MIDI velocity."""
    if linear:
        return value // 2
    return int(math.floor(math.sqrt(value / 255) * 127 + 0.5))


def midi_volume_of(value: int, linear: bool = False) -> int:
    """Convert a driver channel volume (0-255) into a MIDI CC7 value."""
    if linear:
        return value // 2
    return int(math.floor(math.sqrt(value / 255) * 127 + 0.5))


def note_name(key: int) -> str:
    """Readable name of a MIDI key, e.g. 'C 4'."""
    return f"{NOTE_NAMES[key % 12]}{key // 12 - 1}"


@dataclass
class NoteParam:
    """A note candidate: either being built or pending commit."""
    active: bool = False
    tick: int = 0
    dur: int = 0
    vel: int = 0
    tied: bool = False
    key: int = 0
    transpose: int = 0
    patch: int = 0


@dataclass
class RepeatFrame:
    """Open repeat block: where to jump back to and how many passes remain."""
    start_addr: int
    remaining: int


@dataclass
class TrackStat:
    """Playback state of one track slot."""
    active: bool = False
    used: bool = False
    pos: int = 0
    tick: int = 0
    prev_tick: int = 0
    note: NoteParam = field(default_factory=NoteParam)
    last_note: NoteParam = field(default_factory=NoteParam)
    last_note_len: int = DEFAULT_NOTE_LENGTH
    looped: int = 0
    patch: int = 0

    # Driver registers; track transpose and velocity live in the current note
    quantize: int = DEFAULT_QUANTIZE
    velocity_index: int = DEFAULT_VELOCITY_INDEX
    tie_ready: bool = False
    repeat_stack: List[RepeatFrame] = field(default_factory=list)
    call_stack: List[int] = field(default_factory=list)
    events_this_tick: int = 0

    def reset(self, linear_volume: bool = False):
        """Reset per-song registers; the tick cursor is left alone."""
        self.used = False
        self.prev_tick = self.tick
        self.looped = 0
        self.note = NoteParam(vel=midi_velocity_of(VELOCITY_TABLE[DEFAULT_VELOCITY_INDEX], linear_volume))
        self.last_note = NoteParam()
        self.last_note_len = DEFAULT_NOTE_LENGTH
        self.patch = 0
        self.quantize = DEFAULT_QUANTIZE
        self.velocity_index = DEFAULT_VELOCITY_INDEX
        self.tie_ready = False
        self.repeat_stack = []
        self.call_stack = []
        self.events_this_tick = 0

    @property
    def in_subroutine(self) -> bool:
        return bool(self.call_stack)


@dataclass
class VersionInfo:
    """Result of driver detection for one memory image."""
    version: DriverVersion = DriverVersion.UNKNOWN
    song_list_addr: Optional[int] = None
    song_index: Optional[int] = None
    header_addr: Optional[int] = None
    opcode_table: List[OpcodeKind] = field(
        default_factory=lambda: [OpcodeKind.UNIDENTIFIED] * 256)
    patch_fix: List[PatchFix] = field(default_factory=default_patch_fix_table)
    seq_detected: bool = False

    @property
    def is_known(self) -> bool:
        return self.version != DriverVersion.UNKNOWN


@dataclass
class SeqStat:
    """Whole-conversion state: one instance per memory image."""
    aram: AramImage
    config: ConversionConfig = field(default_factory=ConversionConfig)
    tick: int = 0
    time: float = 0.0
    tempo: int = DEFAULT_SPC_TEMPO
    transpose: int = 0
    looped: int = 0
    active: bool = False
    ver: VersionInfo = field(default_factory=VersionInfo)
    tracks: List[TrackStat] = field(
        default_factory=lambda: [TrackStat() for _ in range(TRACK_SLOT_MAX)])

    @property
    def timebase(self) -> int:
        return self.config.timebase

    @property
    def tempo_bpm(self) -> float:
        # A zero tempo would stall elapsed-time accounting; treat it as 1
        return spc_tempo_to_bpm(max(self.tempo, 1))

    def reset(self):
        """Reset before converting the detected song."""
        self.tick = 0
        self.time = 0.0
        self.tempo = DEFAULT_SPC_TEMPO
        self.transpose = 0
        self.looped = 0
        self.active = True

        for track in self.tracks:
            track.tick = 0
            track.reset(self.config.linear_volume)

        self.ver.patch_fix = self.config.patch_fix_table()

    def any_track_active(self) -> bool:
        return any(track.active for track in self.tracks[:SPC_TRACK_MAX])

#!/usr/bin/env python3
"""
Opcode kinds and per-event diagnostic records for SPC sequences.

The opcode kinds are what the dispatch table maps each raw byte value to.
Every decoded event produces a SeqEventReport which is handed to an
EventLog sink; report renderers format those records afterwards.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class OpcodeKind(Enum):
    """Kinds of sequence opcodes."""
    END_TRACK = "end_track"
    NOTE_PARAM = "note_param"
    NOTE = "note"
    TIE = "tie"
    REST = "rest"
    PATCH = "patch"
    VOLUME = "volume"
    PAN = "pan"
    TEMPO = "tempo"
    GLOBAL_TRANSPOSE = "global_transpose"
    TRACK_TRANSPOSE = "track_transpose"
    REPEAT_START = "repeat_start"
    REPEAT_END = "repeat_end"
    JUMP = "jump"
    CALL = "call"
    RETURN = "return"
    ECHO = "echo"
    NOP = "nop"
    UNKNOWN0 = "unknown0"
    UNKNOWN1 = "unknown1"
    UNKNOWN2 = "unknown2"
    UNKNOWN3 = "unknown3"
    UNKNOWN4 = "unknown4"
    UNKNOWN5 = "unknown5"
    UNIDENTIFIED = "unidentified"

    @property
    def unknown_arg_count(self) -> Optional[int]:
        """Trailing byte count for the unsupported tiers, None otherwise."""
        return _UNKNOWN_ARGS.get(self)


_UNKNOWN_ARGS = {
    OpcodeKind.UNKNOWN0: 0,
    OpcodeKind.UNKNOWN1: 1,
    OpcodeKind.UNKNOWN2: 2,
    OpcodeKind.UNKNOWN3: 3,
    OpcodeKind.UNKNOWN4: 4,
    OpcodeKind.UNKNOWN5: 5,
}


@dataclass
class SeqEventReport:
    """Diagnostic record for one decoded event.

    Holds what a report renderer needs to show the event as a table row:
    where it was read, how many bytes it spans, when it happened and a
    short human-readable description.
    """
    track: int
    tick: int
    addr: int
    code: int
    size: int = 1
    classes: List[str] = field(default_factory=list)
    note: str = ""
    unidentified: bool = False
    in_subroutine: bool = False

    @property
    def class_str(self) -> str:
        """Classification tags joined for display, e.g. 'evE2 patch'."""
        return ' '.join([f"ev{self.code:02X}"] + self.classes + (['sub'] if self.in_subroutine else []))

    def hex_dump(self, aram) -> str:
        """Raw bytes of this event as space separated hex."""
        return ' '.join(f"{aram[(self.addr + i) & 0xFFFF]:02X}" for i in range(self.size))


class EventLog:
    """Collects diagnostic output for one conversion.

    Passed explicitly into the conversion pipeline; nothing is written to
    a global stream.
    """

    def __init__(self):
        self.events: List[SeqEventReport] = []
        self.info: List[str] = []
        self.messages: List[str] = []

    def emit(self, report: SeqEventReport):
        """Record one decoded event."""
        self.events.append(report)

    def add_info(self, text: str):
        """Record a header line (detected version, addresses) for the report."""
        self.info.append(text)

    def message(self, text: str):
        """Record a warning or error line for the report."""
        self.messages.append(text)

    def __len__(self) -> int:
        return len(self.events)

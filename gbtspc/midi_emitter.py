"""
MIDI output for converted SPC sequences.

Collects timestamped events per track in absolute ticks and serializes
them into a format 1 Standard MIDI File through mido.
"""

import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Tuple

import mido

from seq_base import ResetType


# Ordering of events sharing a tick: note-offs first, note-ons last
PRIORITY_NOTE_OFF = 0
PRIORITY_NORMAL = 1
PRIORITY_NOTE_ON = 2

MAX_TEMPO_USEC = 0xFFFFFF

# Controller numbers
CONTROL_BANK_SELECT_MSB = 0
CONTROL_VOLUME = 7
CONTROL_PAN = 10
CONTROL_BANK_SELECT_LSB = 32
CONTROL_REVERB = 91
CONTROL_MONO = 126


class MetaKind(Enum):
    """Text meta event kinds the converter writes."""
    TEXT = "text"
    SEQUENCE_NAME = "sequence_name"
    TRACK_NAME = "track_name"


@dataclass(frozen=True)
class NoteRecord:
    """A note as inserted, kept for inspection."""
    tick: int
    track: int
    channel: int
    key: int
    velocity: int
    duration: int


class MidiEmitter:
    """Accumulates MIDI events and writes them as a Standard MIDI File."""

    def __init__(self, timebase: int):
        """Initialize an empty sequence.

        Args:
            timebase: Ticks per quarter note
        """
        self.timebase = timebase
        self.notes: List[NoteRecord] = []
        self.texts: List[Tuple[int, int, MetaKind, str]] = []
        self._events: Dict[int, List[Tuple[int, int, int, mido.Message]]] = {}
        self._end_ticks: Dict[int, int] = {}
        self._serial = 0

    def _add(self, tick: int, track: int, message, priority: int = PRIORITY_NORMAL):
        if tick < 0:
            raise ValueError(f"Negative tick {tick} on track {track}")
        self._serial += 1
        self._events.setdefault(track, []).append((tick, priority, self._serial, message))

    @property
    def track_count(self) -> int:
        used = set(self._events) | set(self._end_ticks)
        return max(used) + 1 if used else 0

    def insert_note(self, tick: int, track: int, channel: int, key: int,
                    velocity: int, duration: int) -> bool:
        """Insert a note as a note-on/note-off pair.

        Returns:
            False if the key is outside the MIDI range and the note was skipped
        """
        if not 0 <= key <= 127:
            print(f"WARNING: Track {track + 1} note key {key} at tick {tick} is out of range, skipped",
                  file=sys.stderr)
            return False

        velocity = min(max(velocity, 1), 127)
        duration = max(duration, 1)
        self._add(tick, track, mido.Message('note_on', channel=channel, note=key, velocity=velocity),
                  PRIORITY_NOTE_ON)
        self._add(tick + duration, track, mido.Message('note_off', channel=channel, note=key, velocity=0),
                  PRIORITY_NOTE_OFF)
        self.notes.append(NoteRecord(tick, track, channel, key, velocity, duration))
        return True

    def insert_meta_text(self, tick: int, track: int, kind: MetaKind, text: str):
        """Insert a text meta event (sequence names go to the given track as a track name)."""
        if kind in (MetaKind.SEQUENCE_NAME, MetaKind.TRACK_NAME):
            message = mido.MetaMessage('track_name', name=text)
        else:
            message = mido.MetaMessage(kind.value, text=text)
        self._add(tick, track, message)
        self.texts.append((tick, track, kind, text))

    def insert_tempo(self, tick: int, track: int, bpm: float):
        usec = min(mido.bpm2tempo(bpm), MAX_TEMPO_USEC)
        self._add(tick, track, mido.MetaMessage('set_tempo', tempo=int(usec)))

    def insert_control(self, tick: int, track: int, channel: int, controller: int, value: int):
        value = min(max(value, 0), 127)
        self._add(tick, track, mido.Message('control_change', channel=channel,
                                            control=controller, value=value))

    def insert_program_change(self, tick: int, track: int, channel: int, program: int):
        self._add(tick, track, mido.Message('program_change', channel=channel, program=program & 0x7F))

    def insert_sysex(self, tick: int, track: int, data: bytes):
        """Insert a system exclusive message given with its F0/F7 framing."""
        payload = bytes(data)
        if payload[:1] == b'\xf0':
            payload = payload[1:]
        if payload[-1:] == b'\xf7':
            payload = payload[:-1]
        self._add(tick, track, mido.Message('sysex', data=payload))

    def insert_reset(self, tick: int, track: int, reset_type: ResetType):
        """Insert the system reset sysex messages for GM1/GS/XG/GM2."""
        for message in reset_type.sysex_messages:
            self.insert_sysex(tick, track, message)

    def set_end_of_track(self, track: int, tick: int):
        """Place the end-of-track marker of a track at the given tick."""
        self._end_ticks[track] = tick

    def end_of_track(self, track: int) -> int:
        """Tick at which the track's end-of-track marker will be written."""
        events = self._events.get(track, [])
        last_tick = max((e[0] for e in events), default=0)
        return max(last_tick, self._end_ticks.get(track, 0))

    def to_midi_file(self) -> mido.MidiFile:
        """Build the mido MidiFile (format 1) from the collected events."""
        midi = mido.MidiFile(type=1, ticks_per_beat=self.timebase)

        for track in range(self.track_count):
            midi_track = mido.MidiTrack()
            last_tick = 0
            for tick, _, _, message in sorted(self._events.get(track, []), key=lambda e: e[:3]):
                midi_track.append(message.copy(time=tick - last_tick))
                last_tick = tick

            end_tick = max(last_tick, self._end_ticks.get(track, 0))
            midi_track.append(mido.MetaMessage('end_of_track', time=end_tick - last_tick))
            midi.tracks.append(midi_track)

        return midi

    def write(self, output_path):
        """Serialize to a .mid file."""
        self.to_midi_file().save(str(Path(output_path)))

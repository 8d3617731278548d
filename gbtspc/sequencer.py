"""
Conversion driver for SPC sequences.

Runs the tick scheduler over all tracks of the detected song, hands each
decode step to the track interpreter and finally drains pending notes into
the MIDI emitter.

Pipeline:
    INIT -> DETECTING -> HEADER_PARSED -> RUNNING -> DRAINING -> DONE

Hard failures (unknown driver, malformed header, out-of-range reads) are
raised and produce no MIDI. An unidentified opcode stops the conversion
but still returns the partial MIDI in a failed ConversionResult.
"""

import sys
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from aram import AramImage, load_spc_file
from seq_base import (
    APP_NAME, APP_VERSION, ConversionConfig, SeqStat, VersionInfo, SPC_TRACK_MAX,
)
from seq_errors import FormatUnrecognizedError, SpcSequenceError
from seq_events import EventLog
from midi_emitter import MidiEmitter, MetaKind, CONTROL_MONO, CONTROL_REVERB
from notes import NoteQueue
from format_gbt import TrackInterpreter, detect_version, parse_sequence_header


class ConversionState(Enum):
    INIT = "init"
    DETECTING = "detecting"
    HEADER_PARSED = "header_parsed"
    RUNNING = "running"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ConversionResult:
    """Outcome of one conversion.

    success is False when an unidentified opcode aborted the song; midi then
    holds everything converted up to that point.
    """
    success: bool
    state: ConversionState
    seq: SeqStat
    midi: MidiEmitter
    log: EventLog
    error: Optional[str] = None

    @property
    def version(self) -> VersionInfo:
        return self.seq.ver


class SequenceConverter:
    """Converts the song found in one ARAM image into MIDI."""

    def __init__(self, aram: AramImage, config: Optional[ConversionConfig] = None,
                 log: Optional[EventLog] = None):
        self.aram = aram
        self.config = config if config is not None else ConversionConfig()
        self.log = log if log is not None else EventLog()
        self.state = ConversionState.INIT

        self.seq = SeqStat(aram=aram, config=self.config)
        self.midi = MidiEmitter(self.config.timebase)
        self.notes = NoteQueue(self.seq, self.midi)
        self.interpreter = TrackInterpreter(self.seq, self.midi, self.notes, self.log)
        self._aborted_by: Optional[str] = None

    def convert(self) -> ConversionResult:
        """Run the whole conversion.

        Returns:
            ConversionResult; success is False if an unidentified event stopped it

        Raises:
            FormatUnrecognizedError: no supported driver or song in the image
            HeaderFormatError: malformed sequence header
            StructuralBoundsError: a read left the memory image
        """
        try:
            self.state = ConversionState.DETECTING
            self.seq.ver = detect_version(self.aram, self.config)
            self._log_version()
            if not self.seq.ver.is_known:
                raise FormatUnrecognizedError("Unknown version / unsupported sound driver")

            self.seq.reset()
            tracks = parse_sequence_header(self.seq)
            self.seq.ver.seq_detected = True
            self.state = ConversionState.HEADER_PARSED

            self._setup_midi(tracks)

            self.state = ConversionState.RUNNING
            self._run()

            self.state = ConversionState.DRAINING
            self._drain()
        except SpcSequenceError as e:
            self.state = ConversionState.FAILED
            self.log.message(f"ERROR: {e}")
            raise

        if self._aborted_by is not None:
            self.state = ConversionState.FAILED
            return ConversionResult(False, self.state, self.seq, self.midi, self.log,
                                    error=self._aborted_by)

        self.state = ConversionState.DONE
        return ConversionResult(True, self.state, self.seq, self.midi, self.log)

    def _log_version(self):
        ver = self.seq.ver
        self.log.add_info(f"Version: {ver.version.display_name}")
        if ver.song_list_addr is not None:
            self.log.add_info(f"Song List: ${ver.song_list_addr:04X}")
        if ver.song_index is not None:
            self.log.add_info(f"Song Entry: ${ver.song_list_addr + ver.song_index * 2:04X}"
                              f" (index {ver.song_index})")
        if ver.header_addr is not None:
            self.log.add_info(f"Sequence Header: ${ver.header_addr:04X}")

    def _setup_midi(self, tracks: List[int]):
        """Sequence name, system reset, initial tempo and per-track defaults."""
        seq = self.seq
        midi = self.midi

        midi.insert_meta_text(0, 0, MetaKind.SEQUENCE_NAME, f"{APP_NAME} {APP_VERSION}")
        midi.insert_reset(0, 0, self.config.reset_type)
        midi.insert_tempo(0, 0, seq.tempo_bpm)

        for track in sorted(set(tracks)):
            tr = seq.tracks[track]
            midi.insert_meta_text(0, track, MetaKind.TRACK_NAME,
                                  f"Track {track + 1} - ${tr.pos:04X}")
            midi.insert_control(0, track, track, CONTROL_REVERB, 0)
            midi.insert_control(0, track, track, CONTROL_MONO, 127)

    def _text_enabled(self) -> bool:
        text_loop = self.config.text_loop_count
        return text_loop == 0 or self.seq.looped < text_loop

    def _run(self):
        """Tick scheduler main loop."""
        seq = self.seq
        brake = self.config.max_events_per_tick

        while seq.active:
            for track in range(SPC_TRACK_MAX):
                tr = seq.tracks[track]
                while seq.active and tr.active and tr.tick <= seq.tick:
                    tick_before = tr.tick
                    ev = self.interpreter.step(track)
                    if self._text_enabled():
                        self.log.emit(ev)

                    if ev.unidentified:
                        self._aborted_by = ev.note
                        seq.active = False
                        break

                    if tr.tick == tick_before:
                        tr.events_this_tick += 1
                        if tr.events_this_tick > brake:
                            self._warn(f"WARNING: Track {track + 1} hit max event limit ({brake})"
                                       f" at tick {seq.tick}, possible infinite loop")
                            seq.active = False
                    else:
                        tr.events_this_tick = 0

            if seq.active:
                self.advance_tick()

    def advance_tick(self):
        """Move the sequence tick to the earliest pending track tick.

        Also accumulates elapsed time and stops the sequence at the time limit.
        """
        seq = self.seq
        ticks = [tr.tick for tr in seq.tracks[:SPC_TRACK_MAX] if tr.active]
        if not ticks:
            seq.active = False
            return

        next_tick = min(ticks)
        if next_tick > seq.tick:
            seq.time += (60.0 / seq.tempo_bpm) * (next_tick - seq.tick) / seq.timebase
            seq.tick = next_tick

        if seq.time >= self.config.time_limit:
            self._warn(f"WARNING: Conversion time limit ({self.config.time_limit:g}s)"
                       f" reached at tick {seq.tick}")
            seq.active = False

    def _drain(self):
        seq = self.seq
        seq.active = False

        if 0 < self.config.loop_count <= seq.looped:
            self.log.message(f"Loop count {self.config.loop_count} reached at tick {seq.tick}")

        for track, tr in enumerate(seq.tracks[:SPC_TRACK_MAX]):
            tr.tick = seq.tick
            if tr.used:
                self.midi.set_end_of_track(track, seq.tick)

        self.notes.flush_all()

    def _warn(self, text: str):
        print(text, file=sys.stderr)
        self.log.message(text)


def convert_aram(aram: AramImage, config: Optional[ConversionConfig] = None,
                 log: Optional[EventLog] = None) -> ConversionResult:
    """Convert the song in an ARAM image."""
    return SequenceConverter(aram, config, log).convert()


def convert_spc_file(path, config: Optional[ConversionConfig] = None,
                     log: Optional[EventLog] = None) -> ConversionResult:
    """Load an SPC snapshot and convert its song."""
    return convert_aram(load_spc_file(path), config, log)

"""
Sequence format handler for the Gokinjo Bouken Tai sound driver.

Locates the song list by matching the driver's song-load routine in ARAM,
parses the song's track header and interprets each track's bytecode one
opcode at a time.

Opcode map:
    00        End of track
    01-7F     Note length [param: 0qqq vvvv quantize/velocity, optional]
    80-DF     Note (key = code - 80)
    E0        Tie
    E1        Rest
    E2 pp     Patch change
    E3 vv     Volume
    E4 pp     Pan
    E5 tt     Tempo
    E6 ss     Global transpose
    E7 ss     Track transpose
    E8 nn     Repeat start (nn times, 0 = 256)
    E9        Repeat end
    EA ll hh  Jump
    EB ll hh  Call subroutine
    EC        Return from subroutine
    ED ee     Echo depth
    EE        NOP
    EF-F4     Known but unsupported (0 to 5 argument bytes)
    F5-FF     Unidentified
"""

import sys
from typing import Dict, List, Optional, Tuple

from aram import AramImage, SPC_ARAM_SIZE, parse_hex_pattern
from seq_base import (
    ConversionConfig, DriverVersion, RepeatFrame, SeqStat, VersionInfo,
    SPC_TRACK_MAX, STACK_DEPTH_MAX, VELOCITY_TABLE,
    midi_velocity_of, midi_volume_of, note_name,
)
from seq_errors import HeaderFormatError, StructuralBoundsError
from seq_events import EventLog, OpcodeKind, SeqEventReport
from midi_emitter import (
    MidiEmitter, MetaKind,
    CONTROL_BANK_SELECT_LSB, CONTROL_BANK_SELECT_MSB, CONTROL_PAN,
    CONTROL_REVERB, CONTROL_VOLUME,
)
from notes import NoteQueue, add_track_loop_count, inactivate_track


# Song load routine:
#   asl a / mov y,a / mov a,TBL+y / mov PTR,a / mov a,TBL+1+y / mov PTR+1,a
#   mov y,#$00 / mov a,(PTR)+y
SONG_LOAD_PATTERN = parse_hex_pattern("1C FD F6 ?? ?? C4 ?? F6 ?? ?? C4 ?? 8D 00 F7 ??")
SONG_SEARCH_INDEX_MAX = 4

HEADER_END = 0xFF
NOTE_KEY_BASE = 0x80

# Fixed-code opcodes of the GBT driver
GBT_OPCODES: Dict[int, OpcodeKind] = {
    0x00: OpcodeKind.END_TRACK,
    0xE0: OpcodeKind.TIE,
    0xE1: OpcodeKind.REST,
    0xE2: OpcodeKind.PATCH,
    0xE3: OpcodeKind.VOLUME,
    0xE4: OpcodeKind.PAN,
    0xE5: OpcodeKind.TEMPO,
    0xE6: OpcodeKind.GLOBAL_TRANSPOSE,
    0xE7: OpcodeKind.TRACK_TRANSPOSE,
    0xE8: OpcodeKind.REPEAT_START,
    0xE9: OpcodeKind.REPEAT_END,
    0xEA: OpcodeKind.JUMP,
    0xEB: OpcodeKind.CALL,
    0xEC: OpcodeKind.RETURN,
    0xED: OpcodeKind.ECHO,
    0xEE: OpcodeKind.NOP,
    0xEF: OpcodeKind.UNKNOWN0,  # vibrato off
    0xF0: OpcodeKind.UNKNOWN1,  # fine tune
    0xF1: OpcodeKind.UNKNOWN2,  # volume fade
    0xF2: OpcodeKind.UNKNOWN3,  # vibrato
    0xF3: OpcodeKind.UNKNOWN4,  # pitch slide
    0xF4: OpcodeKind.UNKNOWN5,  # echo parameters
}

OPCODE_NAMES: Dict[OpcodeKind, str] = {
    OpcodeKind.END_TRACK: "End of Track",
    OpcodeKind.NOTE_PARAM: "Note Param",
    OpcodeKind.NOTE: "Note",
    OpcodeKind.TIE: "Tie",
    OpcodeKind.REST: "Rest",
    OpcodeKind.PATCH: "Patch Change",
    OpcodeKind.VOLUME: "Volume",
    OpcodeKind.PAN: "Pan",
    OpcodeKind.TEMPO: "Tempo",
    OpcodeKind.GLOBAL_TRANSPOSE: "Global Transpose",
    OpcodeKind.TRACK_TRANSPOSE: "Transpose",
    OpcodeKind.REPEAT_START: "Repeat Start",
    OpcodeKind.REPEAT_END: "Repeat End",
    OpcodeKind.JUMP: "Jump",
    OpcodeKind.CALL: "Call",
    OpcodeKind.RETURN: "Return",
    OpcodeKind.ECHO: "Echo Depth",
    OpcodeKind.NOP: "NOP",
}


def build_opcode_table(version: DriverVersion) -> List[OpcodeKind]:
    """Build the 256-entry dispatch table for a driver version.

    Every byte value maps to a kind; codes the version does not define map
    to UNIDENTIFIED.
    """
    table = [OpcodeKind.UNIDENTIFIED] * 256
    if version == DriverVersion.UNKNOWN:
        return table

    for code in range(0x01, NOTE_KEY_BASE):
        table[code] = OpcodeKind.NOTE_PARAM
    for code in range(NOTE_KEY_BASE, 0xE0):
        table[code] = OpcodeKind.NOTE
    for code, kind in GBT_OPCODES.items():
        table[code] = kind
    return table


def find_song_list(aram: AramImage) -> Optional[int]:
    """Locate the song list through the driver's song-load routine.

    Besides the byte pattern, the operands must describe one 16-bit pointer:
    the second table read is TBL+1, the second store is PTR+1 and the
    indirect read goes through PTR.

    Returns:
        Song list address, or None if the routine is absent
    """
    addr = aram.find_pattern(SONG_LOAD_PATTERN)
    if addr is None:
        return None

    table_lo = aram.read_u16(addr + 3)
    table_hi = aram.read_u16(addr + 8)
    ptr_lo = aram.read_u8(addr + 6)
    ptr_hi = aram.read_u8(addr + 11)
    ptr_read = aram.read_u8(addr + 15)

    if ((table_lo + 1) & 0xFFFF) != table_hi:
        return None
    if ((ptr_lo + 1) & 0xFF) != ptr_hi:
        return None
    if ptr_lo != ptr_read:
        return None
    return table_lo


def find_song_header(aram: AramImage, song_list_addr: int,
                     force_song_index: Optional[int] = None) -> Tuple[Optional[int], Optional[int]]:
    """Pick the song to convert from the song list.

    Probes up to four list slots and takes the first entry that is neither
    0 nor $FFFF. A forced song index probes only that slot.

    Returns:
        (song_index, header_addr), both None if no usable slot was found
    """
    if force_song_index is not None:
        indices = [force_song_index]
    else:
        indices = range(SONG_SEARCH_INDEX_MAX)

    for song_index in indices:
        ptr_addr = song_list_addr + song_index * 2
        if ptr_addr < 0 or ptr_addr + 2 > SPC_ARAM_SIZE:
            break
        candidate = aram.read_u16(ptr_addr)
        if candidate != 0 and candidate != 0xFFFF:
            return song_index, candidate

    return None, None


def detect_version(aram: AramImage, config: ConversionConfig) -> VersionInfo:
    """Identify the driver and the song header address.

    The version is only set to a known driver when a song header address
    was resolved; otherwise it stays UNKNOWN.
    """
    info = VersionInfo(patch_fix=config.patch_fix_table())

    if config.force_song_list_addr is not None:
        info.song_list_addr = config.force_song_list_addr & 0xFFFF
    else:
        info.song_list_addr = find_song_list(aram)

    if info.song_list_addr is not None:
        info.song_index, info.header_addr = find_song_header(
            aram, info.song_list_addr, config.force_song_index)

    if info.header_addr is not None:
        info.version = DriverVersion.GBT

    info.opcode_table = build_opcode_table(info.version)
    return info


def parse_sequence_header(seq: SeqStat) -> List[int]:
    """Bind tracks to their score addresses from the sequence header.

    The header is a list of (track index, signed 16-bit offset) entries
    ended by $FF. Offsets are relative to the byte after the offset field.

    Returns:
        Track indices that were activated, in header order

    Raises:
        HeaderFormatError: unsupported track index, or no track at all
        StructuralBoundsError: header or score address outside ARAM
    """
    aram = seq.aram
    read_ptr = seq.ver.header_addr
    if read_ptr is None:
        raise HeaderFormatError("No sequence header address")

    activated = []
    while True:
        track_index = aram.read_u8(read_ptr)
        if track_index == HEADER_END:
            break

        if track_index >= 0x80:
            raise HeaderFormatError(
                f"Unknown track index ${track_index:02X} at ${read_ptr:04X}")
        if track_index >= SPC_TRACK_MAX:
            raise HeaderFormatError(
                f"Unsupported track index ${track_index:02X} at ${read_ptr:04X}")

        read_ptr += 1
        if read_ptr + 2 >= SPC_ARAM_SIZE:
            raise StructuralBoundsError(f"Address ${read_ptr + 2:04X} is out of range")

        score_offset = aram.read_s16(read_ptr)
        score_addr = (read_ptr + 2) + score_offset
        if not 0 <= score_addr < SPC_ARAM_SIZE:
            raise StructuralBoundsError(
                f"Score offset ${score_offset & 0xFFFF:04X} at ${read_ptr:04X} is out of range")

        track = seq.tracks[track_index]
        track.pos = score_addr
        track.active = True
        activated.append(track_index)
        read_ptr += 2

    if not activated:
        raise HeaderFormatError(f"Sequence header at ${seq.ver.header_addr:04X} has no tracks")
    return activated


class TrackInterpreter:
    """Decodes and executes one opcode at a time for a track."""

    def __init__(self, seq: SeqStat, midi: MidiEmitter, notes: NoteQueue,
                 log: Optional[EventLog] = None):
        self.seq = seq
        self.midi = midi
        self.notes = notes
        self.log = log if log is not None else EventLog()

    def step(self, track: int) -> SeqEventReport:
        """Decode the opcode at the track's read cursor and run it.

        Returns:
            Diagnostic record of the event
        """
        seq = self.seq
        tr = seq.tracks[track]

        ev = SeqEventReport(track=track, tick=seq.tick, addr=tr.pos,
                            code=seq.aram.read_u8(tr.pos),
                            in_subroutine=tr.in_subroutine)
        tr.pos += 1
        tr.used = True

        self._dispatch(seq.ver.opcode_table[ev.code], ev)
        return ev

    def _read_arg(self, ev: SeqEventReport) -> int:
        """Consume one argument byte at the track's cursor."""
        tr = self.seq.tracks[ev.track]
        value = self.seq.aram.read_u8(tr.pos)
        tr.pos += 1
        ev.size += 1
        return value

    def _read_signed_arg(self, ev: SeqEventReport) -> int:
        value = self._read_arg(ev)
        return value - 0x100 if value >= 0x80 else value

    def _read_addr_arg(self, ev: SeqEventReport) -> int:
        lo = self._read_arg(ev)
        hi = self._read_arg(ev)
        return lo | (hi << 8)

    def _advance(self, track: int, step: int):
        tr = self.seq.tracks[track]
        tr.prev_tick = tr.tick
        tr.tick += step

    def _dispatch(self, kind: OpcodeKind, ev: SeqEventReport):
        seq = self.seq
        config = seq.config
        track = ev.track
        tr = seq.tracks[track]
        name = OPCODE_NAMES.get(kind, "")

        if kind == OpcodeKind.END_TRACK:
            ev.note = name
            ev.classes.append("end")
            self.end_track(track)

        elif kind == OpcodeKind.NOTE_PARAM:
            tr.last_note_len = ev.code
            ev.note = f"{name}, length = {ev.code}"
            if seq.aram.read_u8(tr.pos) < 0x80:
                param = self._read_arg(ev)
                tr.quantize = (param >> 4) & 0x07
                tr.velocity_index = param & 0x0F
                tr.note.vel = midi_velocity_of(VELOCITY_TABLE[tr.velocity_index], config.linear_volume)
                ev.note += f", quantize = {tr.quantize + 1}/8, velocity = {tr.note.vel}"
            ev.classes.append("param")

        elif kind == OpcodeKind.NOTE:
            key = ev.code - NOTE_KEY_BASE
            step = tr.last_note_len
            dur = step * (tr.quantize + 1) // 8
            self.notes.start_note(track, key, dur)
            tr.tie_ready = True
            self._advance(track, step)
            ev.note = f"{name} {note_name(key + 24)}, length = {step}, duration = {dur}"
            ev.classes.append("note")

        elif kind == OpcodeKind.TIE:
            step = tr.last_note_len
            dur = step * (tr.quantize + 1) // 8
            if tr.tie_ready and tr.last_note.active:
                self.notes.start_note(track, tr.last_note.key, dur, tied=True)
                ev.note = f"{name}, length = {step}"
            else:
                ev.note = f"{name}, length = {step} (no note to tie)"
            self._advance(track, step)
            ev.classes.append("tie")

        elif kind == OpcodeKind.REST:
            step = tr.last_note_len
            tr.tie_ready = False
            self._advance(track, step)
            ev.note = f"{name}, length = {step}"
            ev.classes.append("rest")

        elif kind == OpcodeKind.PATCH:
            patch = self._read_arg(ev)
            tr.patch = patch
            fix = seq.ver.patch_fix[patch]
            self.midi.insert_control(ev.tick, track, track, CONTROL_BANK_SELECT_MSB, fix.bank_msb)
            self.midi.insert_control(ev.tick, track, track, CONTROL_BANK_SELECT_LSB, fix.bank_lsb)
            self.midi.insert_program_change(ev.tick, track, track, fix.patch)
            ev.note = f"{name}, patch = {patch}"
            ev.classes.append("patch")

        elif kind == OpcodeKind.VOLUME:
            volume = self._read_arg(ev)
            self.midi.insert_control(ev.tick, track, track, CONTROL_VOLUME,
                                     midi_volume_of(volume, config.linear_volume))
            ev.note = f"{name}, vol = {volume}"
            ev.classes.append("volume")

        elif kind == OpcodeKind.PAN:
            pan = self._read_arg(ev)
            self.midi.insert_control(ev.tick, track, track, CONTROL_PAN, pan >> 1)
            ev.note = f"{name}, pan = {pan}"
            ev.classes.append("pan")

        elif kind == OpcodeKind.TEMPO:
            seq.tempo = self._read_arg(ev)
            self.midi.insert_tempo(ev.tick, 0, seq.tempo_bpm)
            ev.note = f"{name}, tempo = {seq.tempo} ({seq.tempo_bpm:.1f} bpm)"
            ev.classes.append("tempo")

        elif kind == OpcodeKind.GLOBAL_TRANSPOSE:
            seq.transpose = self._read_signed_arg(ev)
            ev.note = f"{name}, key = {seq.transpose}"
            ev.classes.append("transpose")

        elif kind == OpcodeKind.TRACK_TRANSPOSE:
            tr.note.transpose = self._read_signed_arg(ev)
            ev.note = f"{name}, key = {tr.note.transpose}"
            ev.classes.append("transpose")

        elif kind == OpcodeKind.REPEAT_START:
            count = self._read_arg(ev) or 256
            if len(tr.repeat_stack) >= STACK_DEPTH_MAX:
                raise StructuralBoundsError(
                    f"Repeat nesting too deep at ${ev.addr:04X} [Track {track + 1}]")
            tr.repeat_stack.append(RepeatFrame(start_addr=tr.pos, remaining=count - 1))
            ev.note = f"{name}, count = {count}"
            ev.classes.append("loop")

        elif kind == OpcodeKind.REPEAT_END:
            ev.classes.append("loop")
            if not tr.repeat_stack:
                ev.note = f"{name} (no repeat open)"
                self._warn(f"WARNING: Repeat end without repeat start at ${ev.addr:04X} [Track {track + 1}]")
            else:
                frame = tr.repeat_stack[-1]
                if frame.remaining > 0:
                    frame.remaining -= 1
                    tr.pos = frame.start_addr
                    ev.note = f"{name}, {frame.remaining} left"
                else:
                    tr.repeat_stack.pop()
                    ev.note = name

        elif kind == OpcodeKind.JUMP:
            target = self._read_addr_arg(ev)
            tr.pos = target
            ev.note = f"{name}, dest = ${target:04X}"
            if target <= ev.addr:
                ev.classes.append("loop")
                add_track_loop_count(seq, track, 1)
            else:
                ev.classes.append("jump")

        elif kind == OpcodeKind.CALL:
            target = self._read_addr_arg(ev)
            if len(tr.call_stack) >= STACK_DEPTH_MAX:
                raise StructuralBoundsError(
                    f"Subroutine nesting too deep at ${ev.addr:04X} [Track {track + 1}]")
            tr.call_stack.append(tr.pos)
            tr.pos = target
            ev.note = f"{name}, dest = ${target:04X}"
            ev.classes.append("call")

        elif kind == OpcodeKind.RETURN:
            ev.classes.append("return")
            if tr.call_stack:
                tr.pos = tr.call_stack.pop()
                ev.note = name
            else:
                ev.note = f"{name} (end of track)"
                self.end_track(track)

        elif kind == OpcodeKind.ECHO:
            depth = self._read_arg(ev)
            self.midi.insert_control(ev.tick, track, track, CONTROL_REVERB, depth >> 1)
            ev.note = f"{name}, depth = {depth}"
            ev.classes.append("echo")

        elif kind == OpcodeKind.NOP:
            ev.note = name

        elif kind == OpcodeKind.UNIDENTIFIED:
            ev.unidentified = True
            self._unknown_event(ev, [])

        else:
            arg_count = kind.unknown_arg_count
            if arg_count is None:
                raise AssertionError(f"Unhandled opcode kind {kind}")
            args = [self._read_arg(ev) for _ in range(arg_count)]
            self._unknown_event(ev, args)

    def end_track(self, track: int):
        """Finish a track: flush its pending note and deactivate it."""
        self.notes.flush(track)
        inactivate_track(self.seq, track)

    def _warn(self, text: str):
        print(text, file=sys.stderr)
        self.log.message(text)

    def _unknown_event(self, ev: SeqEventReport, args: List[int]):
        """Describe an unsupported or unidentified event and annotate the MIDI output."""
        ev.note = f"Unknown Event {ev.code:02X}"
        ev.classes.append("unknown")

        if args:
            ev.note += ''.join(f", arg{i + 1} = {value}" for i, value in enumerate(args))
        if len(args) == 2:
            ev.note += f", arg1/2 = {args[1] * 256 + args[0]}"

        if ev.unidentified:
            self._warn(f"ERROR: Encountered unidentified event {ev.code:02X} at ${ev.addr:04X} [Track {ev.track + 1}]")
        else:
            self._warn(f"WARNING: Skipped unknown event {ev.code:02X} at ${ev.addr:04X} [Track {ev.track + 1}]")

        if not self.seq.config.less_text:
            self.midi.insert_meta_text(ev.tick, ev.track, MetaKind.TEXT,
                                       f"{ev.note} at ${ev.addr:04X} [Track {ev.track + 1}]")

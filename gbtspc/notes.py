"""
Note lifecycle management.

Each track keeps at most one pending note. A note is only handed to the
MIDI emitter when the next note starts (or the track/sequence ends), so
that ties can still stretch it and the end of the song can truncate it.
"""

from dataclasses import replace

from seq_base import SeqStat, NoteParam, SPC_NOTE_KEYSHIFT, SPC_TRACK_MAX
from midi_emitter import MidiEmitter


class NoteQueue:
    """Holds and commits the pending note of every track."""

    def __init__(self, seq: SeqStat, midi: MidiEmitter):
        self.seq = seq
        self.midi = midi

    def start_note(self, track: int, key: int, dur: int, tied: bool = False) -> bool:
        """Start a note at the track's current tick.

        Velocity, transpose and patch come from the track's current note
        parameters. A tied note on the pending note's key extends that note
        instead of starting a new one.

        Args:
            track: Track index
            key: Driver key (before transpose and key shift)
            dur: Sounding length in ticks
            tied: True if this note slurs from the previous one

        Returns:
            True if a new pending note was started, False if a tie extended the pending one
        """
        tr = self.seq.tracks[track]
        last = tr.last_note

        if tied and last.active and last.key == key:
            end_tick = tr.tick + dur
            if end_tick > last.tick + last.dur:
                last.dur = end_tick - last.tick
            last.tied = True
            return False

        current = tr.note
        current.active = True
        current.tick = tr.tick
        current.dur = dur
        current.tied = tied
        current.key = key
        current.patch = tr.patch

        # Capture the transpose in effect now; the current slot keeps the track-local value
        pending = replace(current, transpose=current.transpose + self.seq.transpose)
        current.active = False

        self.commit(track)
        tr.last_note = pending
        return True

    def resolve_key(self, track: int, note: NoteParam) -> int:
        """MIDI key of a note: key + transpose + patch-fix key shift + driver key shift."""
        return (note.key + note.transpose
                + self.seq.ver.patch_fix[note.patch & 0xFF].key
                + SPC_NOTE_KEYSHIFT)

    def commit(self, track: int) -> bool:
        """Hand the pending note of a track to the MIDI emitter and clear it.

        Returns:
            True if a note was inserted
        """
        tr = self.seq.tracks[track]
        last = tr.last_note
        if not last.active:
            return False

        dur = last.dur if last.dur > 0 else 1
        vel = last.vel if last.vel > 0 else 1
        key = self.resolve_key(track, last)

        last.active = False
        return self.midi.insert_note(last.tick, track, track, key, vel, dur)

    def truncate(self, track: int):
        """Cut the pending note of a track so it ends no later than the sequence tick.

        A note shortened to nothing is dropped.
        """
        last = self.seq.tracks[track].last_note
        if last.active and last.dur > 0:
            overrun = (last.tick + last.dur) - self.seq.tick
            if overrun > 0:
                last.dur -= overrun
                if last.dur <= 0:
                    last.dur = 0
                    last.active = False

    def truncate_all(self):
        for track in range(SPC_TRACK_MAX):
            self.truncate(track)

    def commit_all(self):
        for track in range(SPC_TRACK_MAX):
            self.commit(track)

    def flush(self, track: int):
        """Truncate and commit the pending note of one track."""
        self.truncate(track)
        self.commit(track)

    def flush_all(self):
        """Truncate then commit every pending note (end of conversion)."""
        self.truncate_all()
        self.commit_all()


def inactivate_track(seq: SeqStat, track: int):
    """Stop a track; the sequence stops once no header track is left active."""
    seq.tracks[track].active = False
    if not seq.any_track_active():
        seq.active = False


def add_track_loop_count(seq: SeqStat, track: int, count: int):
    """Count a loop-back on a track and update the sequence loop count.

    The sequence has looped as many times as its least-looped active track.
    With a loop ceiling set, reaching it ends the sequence.
    """
    loop_max = seq.config.loop_count
    seq.tracks[track].looped += count

    counts = [tr.looped for tr in seq.tracks[:SPC_TRACK_MAX] if tr.active]
    if not counts:
        counts = [seq.tracks[track].looped]
    looped = min(counts)
    if loop_max > 0:
        looped = min(looped, loop_max)

    seq.looped = max(seq.looped, looped)
    if loop_max > 0 and seq.looped >= loop_max:
        seq.active = False

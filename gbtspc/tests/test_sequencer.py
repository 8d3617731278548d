#!/usr/bin/env python3
"""Tests for the tick scheduler, loop/time ceilings and MIDI setup."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import random

import pytest

import format_gbt
from seq_base import APP_NAME, APP_VERSION, ConversionConfig, ResetType
from seq_errors import FormatUnrecognizedError, HeaderFormatError
from seq_events import EventLog
from sequencer import ConversionState, SequenceConverter, convert_aram, convert_spc_file
from conftest import (
    HEADER_ADDR, SONG_LIST_ADDR, AramBuilder, build_song_aram, jump_to, note_tuples,
    score_addr, spc_file_bytes,
)


def looping_song():
    """Track 0 plays one note forever."""
    return build_song_aram({0: [0x80] + jump_to(score_addr(0))})


def test_loop_ceiling_stops_conversion():
    result = convert_aram(looping_song(), ConversionConfig(loop_count=2))
    assert result.success
    assert result.seq.looped == 2
    assert note_tuples(result.midi) == [(0, 24, 48, 126), (48, 24, 48, 126)]
    assert result.seq.tick == 96


def test_single_loop():
    result = convert_aram(looping_song(), ConversionConfig(loop_count=1))
    assert note_tuples(result.midi) == [(0, 24, 48, 126)]


def test_time_limit_stops_endless_song(capsys):
    config = ConversionConfig(loop_count=0, time_limit=10.0)
    result = convert_aram(looping_song(), config)
    assert result.success
    assert result.seq.time >= 10.0
    assert len(result.midi.notes) == 7
    assert any("time limit" in text for text in result.log.messages)
    assert "WARNING" in capsys.readouterr().err


def test_emergency_brake_on_zero_length_loop():
    aram = build_song_aram({0: jump_to(score_addr(0))})
    config = ConversionConfig(loop_count=0, max_events_per_tick=100)
    result = convert_aram(aram, config)
    assert result.success
    assert result.seq.tick == 0
    assert any("max event limit" in text for text in result.log.messages)


def test_text_loop_count_limits_event_records():
    result = convert_aram(looping_song(), ConversionConfig(loop_count=2, text_loop_count=1))
    assert [ev.code for ev in result.log.events] == [0x80]

    result = convert_aram(looping_song(), ConversionConfig(loop_count=2, text_loop_count=0))
    assert [ev.code for ev in result.log.events] == [0x80, 0xEA, 0x80, 0xEA]


def test_tracks_are_interleaved_by_tick():
    aram = build_song_aram({
        0: [0x18, 0x80, 0x81, 0x00],
        1: [0x83, 0x00],
    })
    converter = SequenceConverter(aram)
    result = converter.convert()
    assert note_tuples(result.midi, 0) == [(0, 24, 24, 126), (24, 25, 24, 126)]
    assert note_tuples(result.midi, 1) == [(0, 27, 48, 126)]
    assert [(ev.track, ev.tick) for ev in result.log.events] == [
        (0, 0), (0, 0), (1, 0), (0, 24), (0, 48), (1, 48),
    ]
    assert converter.state == ConversionState.DONE


def test_pending_notes_are_truncated_at_end():
    aram = build_song_aram({
        0: [0x60, 0x80, 0x00],
        1: [0x80, 0x80, 0x00],
    })
    result = convert_aram(aram, ConversionConfig(time_limit=1.0))
    assert result.seq.tick == 48
    assert note_tuples(result.midi, 0) == [(0, 24, 48, 126)]
    assert note_tuples(result.midi, 1) == [(0, 24, 48, 126)]


def test_end_of_track_for_used_tracks():
    aram = build_song_aram({0: [0x80, 0x80, 0x00], 2: [0x80, 0x00]})
    result = convert_aram(aram)
    assert result.midi.end_of_track(0) == 96
    assert result.midi.end_of_track(2) == 96
    assert result.midi.track_count == 3


def test_midi_setup_events():
    aram = build_song_aram({0: [0x80, 0x00], 1: [0x80, 0x00]})
    result = convert_aram(aram, ConversionConfig(reset_type=ResetType.GS))
    smf = result.midi.to_midi_file()

    track0 = smf.tracks[0]
    names = [m.name for m in track0 if m.type == 'track_name']
    assert names == [f"{APP_NAME} {APP_VERSION}", "Track 1 - $2000"]
    assert len([m for m in track0 if m.type == 'sysex']) == 2
    assert [m.tempo for m in track0 if m.type == 'set_tempo'] == [1536000]

    track1 = smf.tracks[1]
    assert [m.name for m in track1 if m.type == 'track_name'] == ["Track 2 - $2400"]
    setup = [(m.control, m.value) for m in track1 if m.type == 'control_change']
    assert setup == [(91, 0), (126, 127)]
    assert all(m.channel == 1 for m in track1 if m.type in ('note_on', 'control_change'))


def test_notes_start_after_setup_at_tick_zero():
    result = convert_aram(build_song_aram({0: [0x80, 0x00]}))
    types = [m.type for m in result.midi.to_midi_file().tracks[0]]
    assert types.index('note_on') > types.index('set_tempo')
    assert types.index('note_on') > types.index('control_change')


def test_conversion_is_deterministic():
    aram = build_song_aram({0: [0x18, 0x25, 0x80, 0xE0, 0x85, 0xE1, 0x87, 0x00]})
    first = convert_aram(aram)
    second = convert_aram(aram)
    assert first.midi.notes == second.midi.notes
    assert first.seq.time == second.seq.time


def test_version_info_is_logged():
    log = EventLog()
    result = convert_aram(build_song_aram({0: [0x80, 0x00]}, song_index=1), log=log)
    assert result.log is log
    assert result.version.song_index == 1
    assert log.info[0] == "Version: Gokinjo Bouken Tai"
    assert "Song List: $1000" in log.info


def test_failed_detection_sets_state(blank_aram):
    converter = SequenceConverter(blank_aram)
    with pytest.raises(FormatUnrecognizedError):
        converter.convert()
    assert converter.state == ConversionState.FAILED
    assert log_has(converter.log, "ERROR: Unknown version")


def test_convert_spc_file(tmp_path):
    path = tmp_path / "song.spc"
    path.write_bytes(spc_file_bytes(build_song_aram({0: [0x80, 0x00]})))
    result = convert_spc_file(path)
    assert result.success
    assert len(result.midi.notes) == 1


def log_has(log, prefix):
    return any(text.startswith(prefix) for text in log.messages)


def test_header_error_is_logged():
    aram = (AramBuilder().add_driver()
            .put_u16(SONG_LIST_ADDR, HEADER_ADDR)
            .put(HEADER_ADDR, [0xFF])
            .build())
    log = EventLog()
    with pytest.raises(HeaderFormatError):
        convert_aram(aram, log=log)
    assert "Sequence Header: $1100" in log.info
    assert log_has(log, "ERROR: Sequence header at $1100 has no tracks")


def random_score(rng, track):
    """Notes, ties, rests and length changes, ending or looping back."""
    code = []
    for _ in range(rng.randint(1, 30)):
        choice = rng.random()
        if choice < 0.2:
            code.append(rng.randint(0x01, 0x7F))
            if rng.random() < 0.5:
                code.append(rng.randint(0x00, 0x7F))
        elif choice < 0.7:
            code.append(0x80 + rng.randint(0, 0x3F))
        elif choice < 0.85:
            code.append(0xE0)
        else:
            code.append(0xE1)
    code.append(0xE1)
    if rng.random() < 0.5:
        code.append(0x00)
    else:
        code += jump_to(score_addr(track))
    return code


@pytest.mark.parametrize("seed", range(40))
def test_scheduler_invariants_on_random_songs(seed, monkeypatch):
    rng = random.Random(seed)
    tracks = rng.sample(range(8), rng.randint(1, 4))
    aram = build_song_aram({track: random_score(rng, track) for track in tracks})
    converter = SequenceConverter(aram, ConversionConfig(loop_count=2))
    seq = converter.seq

    loop_counts = []
    add_track_loop_count = format_gbt.add_track_loop_count

    def counted_loop(seq_, track, count):
        add_track_loop_count(seq_, track, count)
        loop_counts.append(seq_.looped)

    monkeypatch.setattr(format_gbt, 'add_track_loop_count', counted_loop)

    ticks = []
    advance_tick = converter.advance_tick

    def checked_advance():
        advance_tick()
        active = [tr.tick for tr in seq.tracks[:8] if tr.active]
        if active:
            # Nothing left behind the global tick, nothing skipped ahead of it
            assert seq.tick == min(active)
        ticks.append(seq.tick)

    converter.advance_tick = checked_advance
    result = converter.convert()

    assert result.success
    assert ticks == sorted(ticks)
    assert loop_counts == sorted(loop_counts)
    assert all(n.duration >= 1 for n in result.midi.notes)

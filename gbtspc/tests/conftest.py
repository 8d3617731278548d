"""Synthetic SPC memory images for the converter tests."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from typing import Dict, List, Optional

import pytest

from aram import AramImage, SPC_ARAM_SIZE, SPC_HEADER_SIZE, SPC_SIGNATURE


SONG_LOAD_ADDR = 0x0800
SONG_LIST_ADDR = 0x1000
HEADER_ADDR = 0x1100
SCORE_BASE = 0x2000
SCORE_STRIDE = 0x0400
POINTER_ZP = 0x40


def song_load_routine(table_addr: int = SONG_LIST_ADDR, ptr_zp: int = POINTER_ZP) -> bytes:
    """Driver code that reads a song pointer from the song list."""
    table_hi = (table_addr + 1) & 0xFFFF
    return bytes([
        0x1C, 0xFD,
        0xF6, table_addr & 0xFF, table_addr >> 8,
        0xC4, ptr_zp,
        0xF6, table_hi & 0xFF, table_hi >> 8,
        0xC4, (ptr_zp + 1) & 0xFF,
        0x8D, 0x00,
        0xF7, ptr_zp,
    ])


def u16(value: int) -> List[int]:
    return [value & 0xFF, (value >> 8) & 0xFF]


class AramBuilder:
    """Builds a 64KB memory image byte by byte."""

    def __init__(self):
        self.data = bytearray(SPC_ARAM_SIZE)

    def put(self, addr: int, data) -> 'AramBuilder':
        data = bytes(data)
        self.data[addr:addr + len(data)] = data
        return self

    def put_u16(self, addr: int, value: int) -> 'AramBuilder':
        return self.put(addr, u16(value))

    def add_driver(self, song_list_addr: int = SONG_LIST_ADDR) -> 'AramBuilder':
        return self.put(SONG_LOAD_ADDR, song_load_routine(song_list_addr))

    def add_header(self, header_addr: int, tracks: Dict[int, int]) -> 'AramBuilder':
        """Write a sequence header binding track index -> score address."""
        ptr = header_addr
        for track, score_addr in tracks.items():
            offset = (score_addr - (ptr + 3)) & 0xFFFF
            self.put(ptr, [track] + u16(offset))
            ptr += 3
        self.put(ptr, [0xFF])
        return self

    def build(self) -> AramImage:
        return AramImage(bytes(self.data))


def score_addr(track: int) -> int:
    return SCORE_BASE + track * SCORE_STRIDE


def build_song_aram(scores: Dict[int, List[int]], song_index: int = 0,
                    extra: Optional[Dict[int, List[int]]] = None) -> AramImage:
    """Memory image with the driver, a song list and one song.

    Args:
        scores: Bytecode per track index; each track's score sits at score_addr(track)
        song_index: Song list slot holding the header pointer (lower slots are empty)
        extra: Additional bytes to place, by address (subroutines and the like)
    """
    builder = AramBuilder().add_driver()
    builder.put_u16(SONG_LIST_ADDR + song_index * 2, HEADER_ADDR)
    builder.add_header(HEADER_ADDR, {track: score_addr(track) for track in scores})
    for track, code in scores.items():
        builder.put(score_addr(track), code)
    for addr, code in (extra or {}).items():
        builder.put(addr, code)
    return builder.build()


def jump_to(addr: int) -> List[int]:
    return [0xEA] + u16(addr)


def call(addr: int) -> List[int]:
    return [0xEB] + u16(addr)


def spc_file_bytes(aram: AramImage) -> bytes:
    """Wrap an ARAM image in an SPC snapshot container."""
    header = bytearray(SPC_HEADER_SIZE)
    header[:len(SPC_SIGNATURE)] = SPC_SIGNATURE
    body = bytes(aram.read_bytes(0, SPC_ARAM_SIZE))
    return bytes(header) + body + bytes(0x100)


@pytest.fixture
def blank_aram() -> AramImage:
    return AramBuilder().build()


@pytest.fixture
def simple_song() -> AramImage:
    """One track: a quarter note then end of track."""
    return build_song_aram({0: [0x80, 0x00]})


def note_tuples(midi, track: Optional[int] = None):
    """(tick, key, duration, velocity) of the emitted notes, optionally for one track."""
    return [(n.tick, n.key, n.duration, n.velocity)
            for n in midi.notes if track is None or n.track == track]

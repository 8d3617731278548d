#!/usr/bin/env python3
"""Tests for memory image access and the SPC container."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from aram import AramImage, aram_from_spc_bytes, load_spc_file, parse_hex_pattern
from seq_errors import FormatUnrecognizedError, StructuralBoundsError
from conftest import AramBuilder, spc_file_bytes


def test_reads_are_little_endian():
    aram = AramBuilder().put(0x1234, [0x34, 0x12, 0xFE, 0xFF]).build()
    assert aram.read_u8(0x1234) == 0x34
    assert aram.read_u16(0x1234) == 0x1234
    assert aram.read_s16(0x1236) == -2
    assert aram.read_s8(0x1236) == -2
    assert aram.read_bytes(0x1234, 2) == b'\x34\x12'
    assert aram[0x1235] == 0x12


def test_reads_outside_image_raise():
    aram = AramBuilder().build()
    assert aram.read_u8(0xFFFF) == 0
    with pytest.raises(StructuralBoundsError):
        aram.read_u8(0x10000)
    with pytest.raises(StructuralBoundsError):
        aram.read_u16(0xFFFF)
    with pytest.raises(StructuralBoundsError):
        aram.read_u8(-1)


def test_short_image_rejected():
    with pytest.raises(StructuralBoundsError):
        AramImage(bytes(0x8000))


def test_parse_hex_pattern_wildcards():
    assert parse_hex_pattern("1C ?? f6 .") == [0x1C, None, 0xF6, None]


def test_find_pattern():
    aram = AramBuilder().put(0x0300, [0x1C, 0x99, 0xF6]).put(0x0500, [0x1C, 0x00, 0xF6]).build()
    pattern = parse_hex_pattern("1C ?? F6")
    assert aram.find_pattern(pattern) == 0x0300
    assert aram.find_pattern(pattern, start=0x0301) == 0x0500
    assert aram.find_pattern(parse_hex_pattern("1C 55 F6")) is None


def test_find_pattern_at_end_of_image():
    aram = AramBuilder().put(0xFFFE, [0xAB, 0xCD]).build()
    assert aram.find_pattern([0xAB, 0xCD]) == 0xFFFE
    assert aram.find_pattern([0xCD, 0xEF]) is None


def test_spc_container_skips_header():
    aram = AramBuilder().put(0x0000, [0x11]).put(0xFFFF, [0x22]).build()
    loaded = aram_from_spc_bytes(spc_file_bytes(aram))
    assert loaded.read_u8(0x0000) == 0x11
    assert loaded.read_u8(0xFFFF) == 0x22


def test_spc_container_bad_signature():
    data = bytearray(spc_file_bytes(AramBuilder().build()))
    data[0:4] = b'RIFF'
    with pytest.raises(FormatUnrecognizedError):
        aram_from_spc_bytes(bytes(data))


def test_spc_container_too_short():
    with pytest.raises(FormatUnrecognizedError):
        aram_from_spc_bytes(b'SNES-SPC700 Sound File Data' + bytes(100))


def test_load_spc_file(tmp_path):
    path = tmp_path / "song.spc"
    path.write_bytes(spc_file_bytes(AramBuilder().put(0x4000, [0x5A]).build()))
    assert load_spc_file(path).read_u8(0x4000) == 0x5A

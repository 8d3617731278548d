"""
SPC700 memory image (ARAM) access.

Wraps the 64KB sound-chip address space captured in an SPC snapshot and
provides bounds-checked reads plus a wildcard byte-pattern search.
"""

from pathlib import Path
from typing import List, Optional, Sequence

from seq_errors import FormatUnrecognizedError, StructuralBoundsError


SPC_ARAM_SIZE = 0x10000

# SPC snapshot container layout
SPC_SIGNATURE = b"SNES-SPC700 Sound File Data"
SPC_HEADER_SIZE = 0x100
SPC_MIN_FILE_SIZE = SPC_HEADER_SIZE + SPC_ARAM_SIZE


def parse_hex_pattern(text: str) -> List[Optional[int]]:
    """Build a search pattern from a hex string.

    Tokens are whitespace separated hex bytes; '??' (or '.') is a wildcard.

    Args:
        text: Pattern such as "1C FD F6 ?? ?? C4"

    Returns:
        List of byte values, with None at don't-care positions
    """
    pattern: List[Optional[int]] = []
    for token in text.split():
        if token in ('??', '.'):
            pattern.append(None)
        else:
            pattern.append(int(token, 16))
    return pattern


class AramImage:
    """Read-only view of the 65536-byte SPC700 address space."""

    def __init__(self, data: bytes):
        if len(data) < SPC_ARAM_SIZE:
            raise StructuralBoundsError(
                f"ARAM image is {len(data)} bytes, expected {SPC_ARAM_SIZE}")
        self._data = bytes(data[:SPC_ARAM_SIZE])

    def __len__(self) -> int:
        return SPC_ARAM_SIZE

    def __getitem__(self, addr: int) -> int:
        return self.read_u8(addr)

    def _check(self, addr: int, length: int = 1):
        if addr < 0 or addr + length > SPC_ARAM_SIZE:
            raise StructuralBoundsError(
                f"Address ${addr:04X} (+{length}) is out of range")

    def read_u8(self, addr: int) -> int:
        self._check(addr)
        return self._data[addr]

    def read_s8(self, addr: int) -> int:
        value = self.read_u8(addr)
        return value - 0x100 if value >= 0x80 else value

    def read_u16(self, addr: int) -> int:
        """Read a little-endian 16-bit word."""
        self._check(addr, 2)
        return self._data[addr] | (self._data[addr + 1] << 8)

    def read_s16(self, addr: int) -> int:
        value = self.read_u16(addr)
        return value - 0x10000 if value >= 0x8000 else value

    def read_bytes(self, addr: int, length: int) -> bytes:
        self._check(addr, length)
        return self._data[addr:addr + length]

    def find_pattern(self, pattern: Sequence[Optional[int]], start: int = 0) -> Optional[int]:
        """Find the first address matching a wildcard byte pattern.

        Args:
            pattern: Byte values, None matching any byte
            start: First address to consider

        Returns:
            Address of the first match, or None if the pattern is absent
        """
        if not pattern:
            return None

        # Anchor the scan on the first fixed byte of the pattern
        anchor = next((i for i, b in enumerate(pattern) if b is not None), None)
        if anchor is None:
            return start if start + len(pattern) <= SPC_ARAM_SIZE else None

        anchor_byte = bytes([pattern[anchor]])
        last_start = SPC_ARAM_SIZE - len(pattern)
        pos = self._data.find(anchor_byte, start + anchor)
        while pos != -1:
            addr = pos - anchor
            if addr > last_start:
                break
            if all(b is None or self._data[addr + i] == b for i, b in enumerate(pattern)):
                return addr
            pos = self._data.find(anchor_byte, pos + 1)
        return None


def aram_from_spc_bytes(data: bytes) -> AramImage:
    """Extract the ARAM image from an in-memory SPC snapshot.

    The snapshot starts with a fixed 0x100-byte header which is skipped.
    """
    if len(data) < SPC_MIN_FILE_SIZE or not data.startswith(SPC_SIGNATURE):
        raise FormatUnrecognizedError("Not an SPC snapshot (bad signature or size)")
    return AramImage(data[SPC_HEADER_SIZE:SPC_HEADER_SIZE + SPC_ARAM_SIZE])


def load_spc_file(path) -> AramImage:
    """Load an SPC snapshot file and return its ARAM image."""
    with open(Path(path), 'rb') as f:
        data = f.read()
    return aram_from_spc_bytes(data)

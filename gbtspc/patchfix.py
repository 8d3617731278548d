"""
Patch-fix configuration loading.

A patch-fix table remaps each of the 256 driver patch numbers to a MIDI
bank/program pair plus a key shift. Loading always yields a complete
256-entry table: sources not listed keep their default mapping.
"""

from pathlib import Path
from typing import Dict, List, Tuple

from seq_base import PatchFix, default_patch_fix_table
from seq_errors import PatchFixError


def _leading_ints(tokens: List[str]) -> List[int]:
    """Integers at the start of a token list, stopping at the first non-integer."""
    values = []
    for token in tokens:
        try:
            values.append(int(token, 10))
        except ValueError:
            break
    return values


def make_patch_fix(bank_msb: int, bank_lsb: int, patch: int, key: int = 0, mml_key: int = 0) -> PatchFix:
    """Build an entry from user-facing values (patch numbers are 1-128).

    Raises:
        PatchFixError: patch outside 1-128 or bank outside 0-127
    """
    if not 1 <= patch <= 128:
        raise PatchFixError(f"Patch number {patch} is out of range (1-128)")
    for label, bank in (('MSB', bank_msb), ('LSB', bank_lsb)):
        if not 0 <= bank <= 127:
            raise PatchFixError(f"Bank {label} {bank} is out of range (0-127)")

    return PatchFix(
        bank_msb=bank_msb,
        bank_lsb=bank_lsb,
        patch=patch - 1,
        key=key,
        mml_key=mml_key,
    )


def parse_patch_fix_lines(lines) -> Tuple[PatchFix, ...]:
    """Parse patch-fix text lines.

    Each line reads "src bankMSB bankLSB patch [key [mmlKey]]"; anything after
    ';' is a comment and lines with fewer than four numbers are ignored.

    Returns:
        Tuple of 256 PatchFix entries
    """
    table = default_patch_fix_table()

    for line_num, line in enumerate(lines, 1):
        values = _leading_ints(line.split(';', 1)[0].split())
        if len(values) < 4:
            continue

        src = values[0]
        if not 0 <= src <= 255:
            raise PatchFixError(f"Line {line_num}: source patch {src} is out of range")

        key = values[4] if len(values) > 4 else 0
        mml_key = values[5] if len(values) > 5 else 0
        try:
            table[src] = make_patch_fix(values[1], values[2], values[3], key, mml_key)
        except PatchFixError as e:
            raise PatchFixError(f"Line {line_num}: {e}") from e

    return tuple(table)


def load_patch_fix_file(path) -> Tuple[PatchFix, ...]:
    """Read a patch-fix text file into a full 256-entry table."""
    try:
        with open(Path(path), 'r') as f:
            return parse_patch_fix_lines(f)
    except OSError as e:
        raise PatchFixError(f"Unable to import patchfix {path}: {e}") from e


def patch_fix_from_mapping(mapping: Dict) -> Tuple[PatchFix, ...]:
    """Build a full table from a YAML 'patch_fix' section.

    Keys are source patch numbers ('0x10' style strings accepted); values are
    dicts with 'patch' (1-128) and optional 'bank_msb', 'bank_lsb', 'key',
    'mml_key', or a bare int giving just the patch number.
    """
    table = default_patch_fix_table()

    for src_key, info in mapping.items():
        src = int(src_key, 0) if isinstance(src_key, str) else src_key
        if not 0 <= src <= 255:
            raise PatchFixError(f"Source patch {src} is out of range")

        if isinstance(info, dict):
            if 'patch' not in info:
                raise PatchFixError(f"Patch-fix entry {src} has no 'patch' value")
            table[src] = make_patch_fix(
                info.get('bank_msb', 0),
                info.get('bank_lsb', 0),
                info['patch'],
                info.get('key', 0),
                info.get('mml_key', 0),
            )
        elif isinstance(info, int):
            table[src] = make_patch_fix(0, 0, info)
        else:
            raise PatchFixError(f"Patch-fix entry {src} has unsupported value {info!r}")

    return tuple(table)

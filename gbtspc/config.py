"""
Conversion configuration loading from YAML files.

Example file:

    loop_count: 2
    time_limit: 600
    reset: gs
    linear_volume: false
    song_list_addr: 0x1A00
    patch_fix_file: gbt_patchfix.txt
    patch_fix:
      0x03: {patch: 25, key: -12}
"""

from pathlib import Path
from typing import Dict, Optional

import yaml

from seq_base import ConversionConfig, ResetType
from patchfix import load_patch_fix_file, patch_fix_from_mapping


def _parse_int(value) -> int:
    """Convert a YAML value to int (handles '0x1A00', '170', etc)."""
    return int(value, 0) if isinstance(value, str) else int(value)


def parse_reset_type(name: str) -> ResetType:
    try:
        return ResetType(name.lower())
    except ValueError:
        raise ValueError(f"Unknown reset type: {name} (expected gm1, gs, xg or gm2)")


def config_from_dict(data: Dict, base_dir: Optional[Path] = None) -> ConversionConfig:
    """Build a ConversionConfig from a parsed YAML mapping.

    Args:
        data: Mapping of configuration keys
        base_dir: Directory that relative 'patch_fix_file' paths are resolved against

    Returns:
        Immutable conversion configuration
    """
    kwargs = {}

    if 'loop_count' in data:
        kwargs['loop_count'] = _parse_int(data['loop_count'])
    if 'text_loop_count' in data:
        kwargs['text_loop_count'] = _parse_int(data['text_loop_count'])
    if 'time_limit' in data:
        kwargs['time_limit'] = float(data['time_limit'])
    if 'less_text' in data:
        kwargs['less_text'] = bool(data['less_text'])
    if 'linear_volume' in data:
        kwargs['linear_volume'] = bool(data['linear_volume'])
    if 'reset' in data:
        kwargs['reset_type'] = parse_reset_type(str(data['reset']))
    if 'timebase' in data:
        kwargs['timebase'] = _parse_int(data['timebase'])
    if data.get('song_index') is not None:
        kwargs['force_song_index'] = _parse_int(data['song_index'])
    if data.get('song_list_addr') is not None:
        kwargs['force_song_list_addr'] = _parse_int(data['song_list_addr'])
    if 'max_events_per_tick' in data:
        kwargs['max_events_per_tick'] = _parse_int(data['max_events_per_tick'])

    # Inline table wins over a referenced file
    if data.get('patch_fix'):
        kwargs['patch_fix'] = patch_fix_from_mapping(data['patch_fix'])
    elif data.get('patch_fix_file'):
        patch_path = Path(data['patch_fix_file'])
        if base_dir is not None and not patch_path.is_absolute():
            patch_path = base_dir / patch_path
        kwargs['patch_fix'] = load_patch_fix_file(patch_path)

    return ConversionConfig(**kwargs)


def load_config(config_path) -> ConversionConfig:
    """Load a YAML configuration file."""
    config_path = Path(config_path)
    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration {config_path} must be a mapping")
    return config_from_dict(data, base_dir=config_path.parent)

#!/usr/bin/env python3
"""
GBT SPC2MIDI
Converts the song in an SPC snapshot of Gokinjo Bouken Tai into a Standard
MIDI File, optionally writing a text or HTML event report.
"""

import sys
import traceback
from dataclasses import replace

from aram import load_spc_file
from config import load_config, parse_reset_type
from patchfix import load_patch_fix_file
from report import write_error_report, write_report
from seq_base import APP_NAME, APP_VERSION, ConversionConfig
from seq_errors import SpcSequenceError
from seq_events import EventLog
from sequencer import convert_aram


USAGE = "Usage: gbtspc2mid [options] <spcfile> <midfile> [reportfile]"

# Options taking one value
VALUE_OPTIONS = ('--loop', '--patchfix', '--config', '--song', '--songlist')


def print_usage():
    print(f"{APP_NAME} {APP_VERSION}")
    print(USAGE)
    print()
    print("Arguments:")
    print("  spcfile                 - SPC snapshot to convert")
    print("  midfile                 - MIDI file to write")
    print("  reportfile              - Optional event report (.htm/.html for HTML, text otherwise)")
    print()
    print("Options:")
    print("  --help                  - Show this help")
    print("  --loop <count>          - Loop count (0 = until the time limit)")
    print("  --patchfix <file>       - Load a patch-fix table")
    print("  --config <file>         - Load settings from a YAML file")
    print("  --gs / --xg / --gm2     - System reset to insert (default GM1)")
    print("  --song <index>          - Song list index to convert (decimal or hex with 0x)")
    print("  --songlist <addr>       - Song list address in hex, skips the driver search")
    print("  --linear-volume         - Linear velocity/volume curve instead of square root")
    print("  --less-text             - No text events for unknown opcodes")
    print()
    print("Examples:")
    print("  gbtspc2mid gbt-01.spc gbt-01.mid")
    print("  gbtspc2mid --loop 1 --gs gbt-01.spc gbt-01.mid gbt-01.html")


def parse_args(argv):
    """Parse command-line arguments.

    Returns:
        (config, positional args, show_help)

    Raises:
        ValueError: unknown option, missing or malformed option value
    """
    overrides = {}
    config_file = None
    patch_fix_file = None
    show_help = False
    args = []

    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in VALUE_OPTIONS:
            if i + 1 >= len(argv):
                raise ValueError(f"too few arguments for option \"{arg}\"")
            value = argv[i + 1]
            i += 1
            if arg == '--loop':
                overrides['loop_count'] = int(value, 0)
            elif arg == '--patchfix':
                patch_fix_file = value
            elif arg == '--config':
                config_file = value
            elif arg == '--song':
                overrides['force_song_index'] = int(value, 0)
            elif arg == '--songlist':
                overrides['force_song_list_addr'] = int(value, 16)
        elif arg in ('--help', '-h', '-?'):
            show_help = True
        elif arg in ('--gs', '--xg', '--gm2'):
            overrides['reset_type'] = parse_reset_type(arg[2:])
        elif arg == '--linear-volume':
            overrides['linear_volume'] = True
        elif arg == '--less-text':
            overrides['less_text'] = True
        elif arg.startswith('-') and arg != '-':
            raise ValueError(f"unknown option \"{arg}\"")
        else:
            args.append(arg)
        i += 1

    config = load_config(config_file) if config_file else ConversionConfig()
    if patch_fix_file:
        overrides['patch_fix'] = load_patch_fix_file(patch_fix_file)
    if overrides:
        config = replace(config, **overrides)

    return config, args, show_help


def print_info(log: EventLog):
    for line in log.info:
        print(f"  {line}")


def run(argv) -> int:
    """Run a conversion from command-line arguments and return the exit status."""
    try:
        config, args, show_help = parse_args(argv)
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if show_help:
        print_usage()
        return 0
    if len(args) < 2 or len(args) > 3:
        print_usage()
        return 1

    spc_file, midi_file = args[0], args[1]
    report_file = args[2] if len(args) > 2 else None

    log = EventLog()
    print(f"Converting {spc_file}...")
    try:
        aram = load_spc_file(spc_file)
    except (SpcSequenceError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        result = convert_aram(aram, config, log)
    except SpcSequenceError as e:
        print_info(log)
        print(f"Error: {e}", file=sys.stderr)
        if report_file:
            write_error_report(log, e, report_file)
            print(f"  Wrote {report_file}")
        return 1

    print_info(log)

    if report_file:
        write_report(result, aram, report_file)
        print(f"  Wrote {report_file}")

    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    result.midi.write(midi_file)
    print(f"  Wrote {midi_file} ({len(result.midi.notes)} notes, {result.seq.time:.1f}s)")
    return 0


def main():
    """Main entry point."""
    try:
        status = run(sys.argv[1:])
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        print("\nFull traceback:", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)
    sys.exit(status)


if __name__ == '__main__':
    main()

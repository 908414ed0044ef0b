"""SPU Bridge CLI: convert audio files to PSX SPU ADPCM.

Usage:
    spu-bridge sfx/*.wav                         Encode, write outputs/spu.bin
    spu-bridge sfx/*.wav -d sounds.def           Apply loop points / tuning
    spu-bridge sfx/*.ogg -m map.json -j 4        Address map, 4 encoder threads

Pipeline:
    1. Load sound definitions
    2. Decode, resample to 44.1kHz, downmix
    3. Encode to SPU ADPCM
    4. Assign SPU RAM addresses
    5. Write image + address map
"""

import argparse
import json
import logging
import os
import sys
import time

from .errors import SpuBridgeError
from .layout import (DEFAULT_UPLOAD_ADDRESS, SPU_RAM_SIZE, address_map,
                     build_spu_ram, check_capacity, format_upload_info)
from .registry import SoundBridge


def _int_arg(text: str) -> int:
    """Accept decimal, 0x.. or $.. values."""
    text = text.strip()
    if text.startswith('$'):
        text = '0x' + text[1:]
    try:
        return int(text, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {text!r}")


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='spu-bridge',
        description='Convert audio files to PSX SPU ADPCM and lay them out in SPU RAM.',
        epilog="""Examples:
  spu-bridge sfx/*.wav                     Encode with default metadata
  spu-bridge sfx/*.wav -d sounds.def       Loop points / tuning from definitions
  spu-bridge sfx/*.wav --full-image        Write the whole 512KB SPU RAM
  spu-bridge sfx/*.wav --start 0x2000      Upload from $2000""")

    parser.add_argument('inputs', nargs='+',
                        help='Input audio files (WAV, OGG, FLAC, ...)')

    parser.add_argument('-d', '--definitions', default=None,
                        help='Sound definition file (missing file = defaults)')
    parser.add_argument('--strict-metadata', action='store_true',
                        help='Fail on malformed definitions instead of using defaults')

    parser.add_argument('-o', '--output', default=None,
                        help='Output image (default: outputs/spu.bin)')
    parser.add_argument('-m', '--map', default=None,
                        help='Write the address map as JSON')
    parser.add_argument('--full-image', action='store_true',
                        help='Write a full SPU RAM image instead of the uploaded range')

    parser.add_argument('-s', '--start', type=_int_arg, default=DEFAULT_UPLOAD_ADDRESS,
                        help=f'Upload start address (default: ${DEFAULT_UPLOAD_ADDRESS:05X})')
    parser.add_argument('-c', '--capacity', type=_int_arg, default=SPU_RAM_SIZE,
                        help=f'SPU RAM size in bytes (default: {SPU_RAM_SIZE})')
    parser.add_argument('-j', '--workers', type=int, default=1,
                        help='Encoder threads (default: 1)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Show per-sound details and log messages')

    args = parser.parse_args(argv)

    if args.workers < 1:
        parser.error(f"--workers must be >= 1, got {args.workers}")

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s")

    try:
        return run(args)
    except SpuBridgeError as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        return 130


def _derive_output(args) -> str:
    if args.output:
        return args.output
    os.makedirs('outputs', exist_ok=True)
    return os.path.join('outputs', 'spu.bin')


def run(args) -> int:
    """Execute the conversion pipeline."""
    t0 = time.time()
    bridge = SoundBridge()

    # ── 1. Definitions ──
    if args.definitions:
        n = bridge.load_metadata(args.definitions, strict=args.strict_metadata)
        print(f"Definitions: {args.definitions} ({n} sounds)")

    # ── 2-3. Load and encode ──
    print(f"\nEncoding {len(args.inputs)} sounds "
          f"({args.workers} thread{'s' if args.workers > 1 else ''})...")

    def progress(done, total, name):
        print(f"\r  [{done}/{total}] {name:<32}", end='', flush=True)

    report = bridge.load_many(args.inputs, workers=args.workers,
                              progress_fn=progress)
    print()

    for name, err in report.failed.items():
        print(f"  Skipped {name}: {err}", file=sys.stderr)

    if args.verbose:
        for asset in bridge.registry:
            loop = (f"loop blocks {asset.stream.loop_start_block}-"
                    f"{asset.stream.loop_end_block}"
                    if asset.stream.looping else "one-shot")
            print(f"  {asset.name}: {asset.pcm.sample_rate} Hz "
                  f"{asset.pcm.channels}ch -> {asset.stream.num_blocks} blocks, {loop}")

    if len(bridge.registry) == 0:
        print("\nNo sounds encoded.", file=sys.stderr)
        return 1

    # ── 4. Upload ──
    total = bridge.upload(args.start)
    check_capacity(args.start, total, args.capacity)
    print(f"\nSPU RAM layout:")
    print(format_upload_info(bridge.registry, args.start, total, args.capacity))

    # ── 5. Write ──
    out_path = _derive_output(args)
    if args.full_image:
        data = bytes(build_spu_ram(bridge.registry, args.capacity))
    else:
        data = bridge.registry.image()
    with open(out_path, 'wb') as f:
        f.write(data)
    print(f"\n  {out_path} ({len(data):,} bytes)")

    if args.map:
        with open(args.map, 'w', encoding='utf-8') as f:
            json.dump({
                'start_address': args.start,
                'total_bytes': total,
                'sounds': address_map(bridge.registry),
            }, f, indent=2)
        print(f"  {args.map}")

    elapsed = time.time() - t0
    print(f"\n{'=' * 50}")
    print(f"  {len(bridge.registry)} sounds, {total:,} bytes")
    if report.failed:
        print(f"  {len(report.failed)} skipped")
    print(f"  Completed in {elapsed:.1f}s")
    print(f"{'=' * 50}")

    return 0

"""Loop point quantization onto ADPCM block boundaries.

The SPU can only loop on whole 28-sample blocks.  Loop markers are
moved onto blocks and turned into the per-block flag byte (byte 1 of
every block):

  bit 0  LOOP_END    jump to the loop address (or stop) after this block
  bit 1  REPEAT      with LOOP_END: keep playing from the loop address
  bit 2  LOOP_START  this block is the loop address

A one-shot sound only carries LOOP_END on its last block, which makes
the voice go silent after a single pass.
"""

from typing import NamedTuple

import numpy as np

SAMPLES_PER_BLOCK = 28

FLAG_LOOP_END = 0x01
FLAG_REPEAT = 0x02
FLAG_LOOP_START = 0x04


class LoopPoints(NamedTuple):
    start_block: int
    end_block: int
    looping: bool


def block_count(n_samples: int) -> int:
    """Number of blocks needed for `n_samples` (last block zero-padded)."""
    return (n_samples + SAMPLES_PER_BLOCK - 1) // SAMPLES_PER_BLOCK


def quantize_loop_points(total_blocks: int, loop_start_sample: int = 0,
                         loop_end_sample: int = 0,
                         force_loop: bool = False) -> LoopPoints:
    """Map sample loop markers to block indices.

    Args:
        total_blocks: number of blocks in the encoded stream
        loop_start_sample: first sample of the loop
        loop_end_sample: loop end sample, 0 = end of stream
        force_loop: loop even when both markers are 0

    Returns:
        LoopPoints; both block indices are 0 when not looping.
    """
    looping = bool(loop_start_sample or loop_end_sample or force_loop)
    if not looping or total_blocks <= 0:
        return LoopPoints(0, 0, looping and total_blocks > 0)

    last = total_blocks - 1

    start = min(max(loop_start_sample // SAMPLES_PER_BLOCK, 0), last)
    if loop_end_sample == 0:
        end = last
    else:
        end = min(max(-(-loop_end_sample // SAMPLES_PER_BLOCK), 0), last)

    # an inverted loop collapses onto the end block
    if start > end:
        start = end

    return LoopPoints(start, end, True)


def loop_flags(total_blocks: int, loop: LoopPoints) -> np.ndarray:
    """Build the flag byte for every block of a stream."""
    flags = np.zeros(total_blocks, dtype=np.uint8)
    if total_blocks == 0:
        return flags

    if loop.looping:
        flags[loop.start_block] |= FLAG_LOOP_START
        flags[loop.end_block] |= FLAG_LOOP_END | FLAG_REPEAT
    else:
        flags[-1] |= FLAG_LOOP_END

    return flags

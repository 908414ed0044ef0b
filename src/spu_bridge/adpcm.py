"""PSX SPU ADPCM block encoder and decoder.

Block format (16 bytes, 28 samples):
    byte 0      bits 0-3 shift, bits 4-6 filter, bit 7 reserved
    byte 1      loop flags (see loops.py)
    bytes 2-15  28 signed 4-bit nibbles, low nibble first

Decoding one sample:
    pred   = (prev1 * POS[filter] + prev2 * NEG[filter]) >> 6
    sample = clamp((nibble << shift) + pred, -32768, 32767)

The encoder tries every filter/shift pair on a frame, reconstructing the
frame the way the decoder will, and keeps the pair with the smallest
squared error.  Prediction always runs on reconstructed samples, never on
the source, so the error a decoder sees is the error that was measured.
All 80 candidates are evaluated together as numpy vectors; samples within
a frame stay sequential because each prediction needs the previous output.
"""

from dataclasses import dataclass
from typing import NamedTuple, Sequence

import numpy as np

from .loops import (SAMPLES_PER_BLOCK, block_count, loop_flags,
                    quantize_loop_points)

BYTES_PER_BLOCK = 16

# Hardware predictor coefficients, fixed-point /64
FILTER_POS = (0, 60, 115, 98, 122)
FILTER_NEG = (0, 0, -52, -55, -60)

N_FILTERS = len(FILTER_POS)
N_SHIFTS = 16
N_CANDIDATES = N_FILTERS * N_SHIFTS

# Candidate c = filter * N_SHIFTS + shift, so argmin's first hit is the
# lowest filter, then the lowest shift.
_CAND_FILTER = np.repeat(np.arange(N_FILTERS, dtype=np.int64), N_SHIFTS)
_CAND_SHIFT = np.tile(np.arange(N_SHIFTS, dtype=np.int64), N_FILTERS)
_CAND_K0 = np.array(FILTER_POS, dtype=np.int64)[_CAND_FILTER]
_CAND_K1 = np.array(FILTER_NEG, dtype=np.int64)[_CAND_FILTER]


class EncodedBlock(NamedTuple):
    shift: int
    filter_id: int
    flags: int
    nibbles: tuple      # 28 signed values in [-8, 7]

    def pack(self) -> bytes:
        out = bytearray(BYTES_PER_BLOCK)
        out[0] = (self.shift & 0x0F) | ((self.filter_id & 0x07) << 4)
        out[1] = self.flags & 0xFF
        for i in range(0, SAMPLES_PER_BLOCK, 2):
            lo = self.nibbles[i] & 0x0F
            hi = self.nibbles[i + 1] & 0x0F
            out[2 + i // 2] = lo | (hi << 4)
        return bytes(out)

    @classmethod
    def unpack(cls, data: bytes) -> 'EncodedBlock':
        if len(data) != BYTES_PER_BLOCK:
            raise ValueError(f"ADPCM block must be {BYTES_PER_BLOCK} bytes, got {len(data)}")
        nibbles = []
        for b in data[2:]:
            nibbles.append(_sign_extend4(b & 0x0F))
            nibbles.append(_sign_extend4(b >> 4))
        return cls(data[0] & 0x0F, (data[0] >> 4) & 0x07, data[1], tuple(nibbles))


def _sign_extend4(n: int) -> int:
    return n - 16 if n >= 8 else n


@dataclass
class EncodedStream:
    """Packed ADPCM blocks plus the block indices of the loop."""

    data: bytes
    loop_start_block: int = 0
    loop_end_block: int = 0
    looping: bool = False

    @property
    def num_blocks(self) -> int:
        return len(self.data) // BYTES_PER_BLOCK

    @property
    def loop_offset(self) -> int:
        """Byte offset of the loop start block."""
        return self.loop_start_block * BYTES_PER_BLOCK

    def __len__(self) -> int:
        return len(self.data)

    def block(self, index: int) -> EncodedBlock:
        if not 0 <= index < self.num_blocks:
            raise IndexError(f"block {index} out of range (0-{self.num_blocks - 1})")
        pos = index * BYTES_PER_BLOCK
        return EncodedBlock.unpack(self.data[pos:pos + BYTES_PER_BLOCK])


@dataclass
class EncoderState:
    """Last two reconstructed samples, carried from block to block."""

    prev1: int = 0
    prev2: int = 0


class BlockSearch(NamedTuple):
    filter_id: int
    shift: int
    error: int
    nibbles: np.ndarray     # (28,) int64
    decoded: np.ndarray     # (28,) int64


# ══════════════════════════════════════════════════════════════════════
# Encoder
# ══════════════════════════════════════════════════════════════════════

def _run_predictor(frame, prev1, prev2, k0, k1, shift):
    """Quantize and reconstruct `frame` for every candidate in parallel.

    k0, k1 and shift are equal-length int64 arrays, one entry per
    candidate.  Returns (nibbles, decoded, error) where nibbles/decoded
    have shape (len(frame), n_candidates) and error has shape
    (n_candidates,).
    """
    p1 = np.full(k0.shape, prev1, dtype=np.int64)
    p2 = np.full(k0.shape, prev2, dtype=np.int64)

    nibbles = np.empty((len(frame),) + k0.shape, dtype=np.int64)
    decoded = np.empty_like(nibbles)
    error = np.zeros(k0.shape, dtype=np.int64)

    for i, x in enumerate(frame):
        pred = (p1 * k0 + p2 * k1) >> 6
        nib = np.clip((x - pred) >> shift, -8, 7)
        rec = np.clip((nib << shift) + pred, -32768, 32767)

        diff = rec - x
        error += diff * diff

        nibbles[i] = nib
        decoded[i] = rec
        p2 = p1
        p1 = rec

    return nibbles, decoded, error


def candidate_errors(frame: Sequence[int], prev1: int = 0, prev2: int = 0) -> np.ndarray:
    """Squared reconstruction error of every (filter, shift) pair.

    Returns:
        int64 array of shape (N_FILTERS, N_SHIFTS)
    """
    frame = np.asarray(frame, dtype=np.int64)
    _, _, error = _run_predictor(frame, prev1, prev2, _CAND_K0, _CAND_K1, _CAND_SHIFT)
    return error.reshape(N_FILTERS, N_SHIFTS)


def search_block(frame: Sequence[int], prev1: int = 0, prev2: int = 0) -> BlockSearch:
    """Find the filter/shift pair with the lowest error for one frame.

    Ties go to the lowest filter index, then the lowest shift.
    """
    frame = np.asarray(frame, dtype=np.int64)
    if len(frame) != SAMPLES_PER_BLOCK:
        raise ValueError(f"Expected {SAMPLES_PER_BLOCK} samples, got {len(frame)}")

    nibbles, decoded, error = _run_predictor(
        frame, prev1, prev2, _CAND_K0, _CAND_K1, _CAND_SHIFT)

    best = int(np.argmin(error))
    return BlockSearch(int(_CAND_FILTER[best]), int(_CAND_SHIFT[best]),
                       int(error[best]), nibbles[:, best], decoded[:, best])


def encode_block(frame: Sequence[int], state: EncoderState, flags: int = 0) -> EncodedBlock:
    """Encode one 28-sample frame and advance `state`."""
    best = search_block(frame, state.prev1, state.prev2)
    state.prev1 = int(best.decoded[-1])
    state.prev2 = int(best.decoded[-2])
    return EncodedBlock(best.shift, best.filter_id, flags,
                        tuple(int(n) for n in best.nibbles))


def encode_adpcm(samples, loop_start_sample: int = 0, loop_end_sample: int = 0,
                 force_loop: bool = False) -> EncodedStream:
    """Encode mono 16-bit samples into an SPU ADPCM stream.

    Args:
        samples: mono int16 samples at the SPU rate
        loop_start_sample: loop start, in samples
        loop_end_sample: loop end, in samples (0 = end of stream)
        force_loop: loop the whole stream even with both markers at 0

    Returns:
        EncodedStream with ceil(len(samples) / 28) blocks.  An empty input
        gives an empty stream.
    """
    samples = np.asarray(samples, dtype=np.int16).reshape(-1)
    n_blocks = block_count(len(samples))

    loop = quantize_loop_points(n_blocks, loop_start_sample, loop_end_sample,
                                force_loop)
    if n_blocks == 0:
        return EncodedStream(b'', 0, 0, False)

    frames = np.zeros(n_blocks * SAMPLES_PER_BLOCK, dtype=np.int64)
    frames[:len(samples)] = samples
    frames = frames.reshape(n_blocks, SAMPLES_PER_BLOCK)
    flags = loop_flags(n_blocks, loop)

    state = EncoderState()
    data = b''.join(encode_block(frames[b], state, int(flags[b])).pack()
                    for b in range(n_blocks))

    return EncodedStream(data, loop.start_block, loop.end_block, loop.looping)


# ══════════════════════════════════════════════════════════════════════
# Decoder
# ══════════════════════════════════════════════════════════════════════

def decode_block(data: bytes, prev1: int = 0, prev2: int = 0) -> list:
    """Decode one 16-byte block to 28 samples."""
    block = EncodedBlock.unpack(data)
    if block.filter_id >= N_FILTERS:
        raise ValueError(f"Invalid ADPCM filter: {block.filter_id}")

    k0 = FILTER_POS[block.filter_id]
    k1 = FILTER_NEG[block.filter_id]

    out = []
    for n in block.nibbles:
        pred = (prev1 * k0 + prev2 * k1) >> 6
        s = max(-32768, min(32767, (n << block.shift) + pred))
        out.append(s)
        prev2 = prev1
        prev1 = s
    return out


def decode_adpcm(data: bytes) -> np.ndarray:
    """Decode a whole stream (one pass, loops not followed)."""
    if len(data) % BYTES_PER_BLOCK != 0:
        raise ValueError(f"ADPCM data must be a multiple of {BYTES_PER_BLOCK} bytes")

    out = []
    prev1 = prev2 = 0
    for pos in range(0, len(data), BYTES_PER_BLOCK):
        samples = decode_block(data[pos:pos + BYTES_PER_BLOCK], prev1, prev2)
        out.extend(samples)
        prev1, prev2 = samples[-1], samples[-2]
    return np.array(out, dtype=np.int16)

"""PCM buffers, audio loading, resampling and downmixing for the SPU.

The SPU plays mono 16-bit samples at 44.1 kHz. Everything entering the
encoder is brought to that shape here:

    load_pcm()  ->  resample()  ->  downmix_to_mono()  ->  adpcm encoder

Resampling is plain linear interpolation on purpose: the aliasing it adds
is part of the sound the hardware is known for.
"""

import os
import wave
from dataclasses import dataclass

import numpy as np

from .errors import AudioLoadError, InvalidFormatError

# PSX SPU native rate (CD audio rate)
SPU_SAMPLE_RATE = 44100


@dataclass
class PcmBuffer:
    """Signed 16-bit PCM samples, interleaved when stereo."""

    samples: np.ndarray
    sample_rate: int
    channels: int = 1

    def __post_init__(self):
        self.samples = np.asarray(self.samples, dtype=np.int16).reshape(-1)

    @property
    def frames(self) -> int:
        """Number of sample frames (samples per channel)."""
        if self.channels <= 0:
            return 0
        return len(self.samples) // self.channels

    def copy(self) -> 'PcmBuffer':
        return PcmBuffer(self.samples.copy(), self.sample_rate, self.channels)


def validate_pcm(pcm: PcmBuffer):
    """Raise InvalidFormatError unless `pcm` can be fed to the encoder."""
    if pcm.channels not in (1, 2):
        raise InvalidFormatError(
            f"Unsupported channel count: {pcm.channels} (expected 1 or 2)")
    if pcm.sample_rate <= 0:
        raise InvalidFormatError(f"Invalid sample rate: {pcm.sample_rate}")
    if len(pcm.samples) == 0:
        raise InvalidFormatError("PCM buffer has no samples")
    if len(pcm.samples) % pcm.channels != 0:
        raise InvalidFormatError(
            f"{len(pcm.samples)} samples is not a whole number of "
            f"{pcm.channels}-channel frames")


# ══════════════════════════════════════════════════════════════════════
# Loading
# ══════════════════════════════════════════════════════════════════════

def load_audio(path: str) -> tuple:
    """Load audio file and return (samples_int16, sample_rate, n_channels).

    Loading priority:
      1. soundfile (handles WAV, OGG, FLAC, AIFF, no external binaries)
      2. Native WAV loader (stdlib, 16-bit PCM only)

    Returns:
        (audio_data, sample_rate, n_channels)
        Stereo: audio_data shape (N, 2). Mono: (N,).
    """
    if not os.path.exists(path):
        raise AudioLoadError(f"File not found: {path}")

    try:
        return _load_via_soundfile(path)
    except _SoundfileUnavailable:
        pass
    except AudioLoadError:
        # soundfile is installed but can't read this file, try the stdlib
        if os.path.splitext(path)[1].lower() != '.wav':
            raise

    return _load_wav(path)


class _SoundfileUnavailable(Exception):
    """Raised when soundfile is not installed."""
    pass


def _load_via_soundfile(path: str) -> tuple:
    """Load audio via the soundfile library (wraps libsndfile)."""
    try:
        import soundfile as sf
    except ImportError:
        raise _SoundfileUnavailable()

    try:
        data, sample_rate = sf.read(path, dtype='int16', always_2d=True)
    except Exception as e:
        raise AudioLoadError(f"soundfile cannot read '{path}': {e}")

    n_channels = data.shape[1]
    if n_channels == 1:
        data = data[:, 0]

    if len(data) == 0:
        raise AudioLoadError(f"No audio samples in: {path}")

    return data, sample_rate, n_channels


def _load_wav(path: str) -> tuple:
    """Load a 16-bit WAV file using the standard library."""
    try:
        with wave.open(path, 'rb') as wf:
            n_channels = wf.getnchannels()
            sample_width = wf.getsampwidth()
            sample_rate = wf.getframerate()
            n_frames = wf.getnframes()

            if n_frames == 0:
                raise AudioLoadError(f"WAV file is empty: {path}")

            raw_data = wf.readframes(n_frames)
    except (wave.Error, EOFError) as e:
        raise AudioLoadError(f"Invalid WAV file: {e}")

    if sample_width != 2:
        raise AudioLoadError(
            f"Unsupported sample width: {sample_width} bytes (expected 16-bit)")

    samples = np.frombuffer(raw_data, dtype='<i2').astype(np.int16)
    if n_channels > 1:
        samples = samples[:len(samples) - (len(samples) % n_channels)]
        samples = samples.reshape(-1, n_channels)

    return samples, sample_rate, n_channels


def load_pcm(path: str) -> PcmBuffer:
    """Load an audio file into an interleaved PcmBuffer."""
    data, sample_rate, n_channels = load_audio(path)
    return PcmBuffer(np.ascontiguousarray(data).reshape(-1),
                     int(sample_rate), int(n_channels))


# ══════════════════════════════════════════════════════════════════════
# Resampling / downmixing
# ══════════════════════════════════════════════════════════════════════

def resample(pcm: PcmBuffer, target_rate: int = SPU_SAMPLE_RATE) -> PcmBuffer:
    """Resample to `target_rate` Hz with linear interpolation.

    Output sample i is interpolated at source position
    ``i * src_rate / target_rate``.  Positions past the last source sample
    repeat the last sample.  A buffer already at the target rate is
    returned as an exact copy.
    """
    if pcm.sample_rate == target_rate:
        return pcm.copy()

    channels = max(pcm.channels, 1)
    src = pcm.samples[:pcm.frames * channels].reshape(-1, channels)
    n_in = src.shape[0]
    n_out = n_in * target_rate // pcm.sample_rate

    out = np.empty((n_out, channels), dtype=np.int16)
    if n_out > 0:
        positions = np.arange(n_out, dtype=np.float64) * pcm.sample_rate / target_rate
        xp = np.arange(n_in, dtype=np.float64)
        for ch in range(channels):
            # np.interp holds the last value for positions beyond xp[-1]
            y = np.interp(positions, xp, src[:, ch].astype(np.float64))
            out[:, ch] = np.clip(np.rint(y), -32768, 32767).astype(np.int16)

    return PcmBuffer(out.reshape(-1), target_rate, pcm.channels)


def downmix_to_mono(pcm: PcmBuffer) -> PcmBuffer:
    """Average interleaved stereo down to mono, rounding toward zero.

    Mono buffers pass through unchanged.  Other channel counts are left
    untouched; `validate_pcm` reports them.
    """
    if pcm.channels != 2:
        return pcm

    pairs = pcm.samples[:pcm.frames * 2].reshape(-1, 2).astype(np.int32)
    total = pairs[:, 0] + pairs[:, 1]
    mono = np.sign(total) * (np.abs(total) // 2)
    return PcmBuffer(mono.astype(np.int16), pcm.sample_rate, 1)


def prepare_pcm(pcm: PcmBuffer, target_rate: int = SPU_SAMPLE_RATE) -> PcmBuffer:
    """Validate, resample and downmix a buffer for the ADPCM encoder.

    Returns a mono buffer at `target_rate`.  The input is not modified.

    Raises:
        InvalidFormatError if the buffer cannot be converted.
    """
    validate_pcm(pcm)
    out = downmix_to_mono(resample(pcm, target_rate))
    if out.frames == 0:
        raise InvalidFormatError(
            f"{pcm.frames} frames at {pcm.sample_rate} Hz leave no samples "
            f"at {target_rate} Hz")
    return out

"""spu-bridge: Convert PCM audio to PSX SPU ADPCM at load time.

Supports:
  - Any audio format soundfile reads (WAV, OGG, FLAC, AIFF)
  - Linear-interpolation resampling to 44.1kHz, stereo downmix
  - Exhaustive 5-filter x 16-shift ADPCM block search
  - Loop points snapped to 28-sample blocks with SPU loop flags
  - Per-sound definitions (loop, pitch variance, reverb, priority)
  - Reproducible SPU RAM layout and address map

Architecture:
  SoundBridge loads definitions and audio into an AssetRegistry.
  The registry owns the encoded sounds and assigns SPU addresses.
  The sound driver looks sounds up by name afterwards.
"""

__version__ = '1.0.0'

from .adpcm import EncodedBlock, EncodedStream, decode_adpcm, encode_adpcm
from .audio import PcmBuffer, SPU_SAMPLE_RATE, downmix_to_mono, resample
from .errors import (AudioLoadError, CapacityExceededError, InvalidFormatError,
                     MetadataParseError, SpuBridgeError)
from .metadata import SoundMetadata, load_metadata, parse_metadata
from .registry import AssetRegistry, LoadReport, SoundAsset, SoundBridge

"""Sound asset registry and the bridge that feeds it.

`AssetRegistry` owns every encoded sound of a session (typically one
level) and lays them out in SPU RAM.  `SoundBridge` ties a registry to a
set of sound definitions and loads audio files or buffers into it, one at
a time or on a worker pool.

Layout is deterministic: `upload()` always places sounds in registration
order, so the same sounds registered in the same order produce the same
addresses and the same bytes every time.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Iterable, Iterator, Optional

from .adpcm import EncodedStream, encode_adpcm
from .audio import PcmBuffer, SPU_SAMPLE_RATE, load_pcm, prepare_pcm
from .errors import SpuBridgeError
from .metadata import SoundMetadata, check_name, load_metadata, lookup

log = logging.getLogger("spu_bridge.registry")


@dataclass
class SoundAsset:
    metadata: SoundMetadata
    pcm: PcmBuffer              # kept for diagnostics only
    stream: EncodedStream
    address: Optional[int] = None

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def size(self) -> int:
        return len(self.stream.data)

    @property
    def loop_address(self) -> Optional[int]:
        if self.address is None:
            return None
        return self.address + self.stream.loop_offset


def encode_sound(metadata: SoundMetadata, pcm: PcmBuffer,
                 target_rate: int = SPU_SAMPLE_RATE) -> SoundAsset:
    """Run the resample -> downmix -> encode pipeline for one sound.

    Loop markers in `metadata` are sample offsets in the converted
    (target rate, mono) stream.

    Raises:
        InvalidFormatError if `pcm` cannot be encoded.
    """
    mono = prepare_pcm(pcm, target_rate)
    stream = encode_adpcm(mono.samples,
                          metadata.loop_start_sample,
                          metadata.loop_end_sample,
                          metadata.loop)
    return SoundAsset(metadata, pcm, stream)


# Thread Safety: all methods acquire `_lock` before touching `_assets`.
class AssetRegistry:
    """Named SPU sounds and their upload addresses."""

    def __init__(self, target_rate: int = SPU_SAMPLE_RATE):
        self._lock = threading.Lock()
        self._assets = {}   # name -> SoundAsset, in registration order
        self.target_rate = target_rate

    def register(self, name: str, metadata: Optional[SoundMetadata],
                 pcm: PcmBuffer) -> SoundAsset:
        """Encode `pcm` and store it under `name`.

        Registering an existing name replaces that sound but keeps its
        place in the upload order.  The new sound has no address until
        the next upload.

        Raises:
            InvalidFormatError if `pcm` cannot be encoded.
            ValueError if `name` is not a valid sound name.
        """
        check_name(name)
        if metadata is None:
            metadata = SoundMetadata(name)
        elif metadata.name != name:
            metadata = replace(metadata, name=name)

        asset = encode_sound(metadata, pcm, self.target_rate)
        self.add(asset)
        return asset

    def add(self, asset: SoundAsset):
        """Store an already encoded asset."""
        with self._lock:
            asset.address = None
            self._assets[asset.name] = asset

    def upload(self, start_address: int) -> int:
        """Assign SPU addresses to every sound, starting at `start_address`.

        Previous addresses are discarded first.  Sounds are laid out
        back to back in registration order.

        Returns:
            Total number of bytes placed.  The caller checks this against
            the space available in SPU RAM.
        """
        if start_address < 0:
            raise ValueError(f"Invalid SPU start address: {start_address:#x}")

        with self._lock:
            for asset in self._assets.values():
                asset.address = None

            addr = start_address
            for asset in self._assets.values():
                asset.address = addr
                addr += asset.size

            total = addr - start_address

        log.debug("Uploaded %d sounds, %d bytes at %#x",
                  len(self._assets), total, start_address)
        return total

    def address_of(self, name: str) -> Optional[int]:
        """SPU address of `name`, None if unknown or not uploaded."""
        with self._lock:
            asset = self._assets.get(name)
            return None if asset is None else asset.address

    def metadata_of(self, name: str) -> Optional[SoundMetadata]:
        with self._lock:
            asset = self._assets.get(name)
            return None if asset is None else asset.metadata

    def asset(self, name: str) -> Optional[SoundAsset]:
        with self._lock:
            return self._assets.get(name)

    def names(self) -> list:
        with self._lock:
            return list(self._assets)

    def assets(self) -> list:
        with self._lock:
            return list(self._assets.values())

    def remove(self, name: str) -> bool:
        with self._lock:
            return self._assets.pop(name, None) is not None

    def clear(self):
        """Drop every sound (e.g. on level unload)."""
        with self._lock:
            self._assets.clear()

    def image(self) -> bytes:
        """All encoded sounds back to back, in upload order."""
        with self._lock:
            return b''.join(a.stream.data for a in self._assets.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._assets)

    def __contains__(self, name) -> bool:
        with self._lock:
            return name in self._assets

    def __iter__(self) -> Iterator[SoundAsset]:
        return iter(self.assets())


# ══════════════════════════════════════════════════════════════════════
# Bridge
# ══════════════════════════════════════════════════════════════════════

@dataclass
class LoadReport:
    loaded: list = field(default_factory=list)     # names, in registration order
    failed: dict = field(default_factory=dict)     # name -> SpuBridgeError
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled


def sound_name_for(path: str) -> str:
    """Default sound name for a file: lower-case basename, no extension."""
    return os.path.splitext(os.path.basename(path))[0].lower()


class SoundBridge:
    """Loads sounds into an `AssetRegistry` using a definition mapping.

    One bridge per session; there is no global instance.
    """

    def __init__(self, metadata: Optional[dict] = None,
                 registry: Optional[AssetRegistry] = None):
        self.metadata = dict(metadata) if metadata else {}
        self.registry = registry if registry is not None else AssetRegistry()

    def load_metadata(self, path: str, strict: bool = False) -> int:
        """Merge definitions from `path`.  Returns the number of entries read."""
        entries = load_metadata(path, strict)
        self.metadata.update(entries)
        return len(entries)

    def metadata_for(self, name: str) -> SoundMetadata:
        return lookup(self.metadata, name)

    def load_sound(self, name: str, pcm: PcmBuffer) -> SoundAsset:
        """Encode and register a decoded buffer.

        Raises:
            InvalidFormatError if `pcm` cannot be encoded.
        """
        return self.registry.register(name, self.metadata_for(name), pcm)

    def load_file(self, path: str, name: Optional[str] = None) -> SoundAsset:
        """Decode, encode and register an audio file (WAV, OGG, ...).

        Raises:
            AudioLoadError, InvalidFormatError
        """
        if name is None:
            name = sound_name_for(path)
        return self.load_sound(name, load_pcm(path))

    def load_many(self, sources: Iterable, workers: int = 1,
                  cancel: Optional[threading.Event] = None,
                  progress_fn=None) -> LoadReport:
        """Load several sounds, skipping the ones that fail.

        Args:
            sources: (name, PcmBuffer) pairs or file paths
            workers: encoder threads (1 = encode on the calling thread)
            cancel: checked before each sound is started and again, in
                `sources` order, before it is registered
            progress_fn: called as progress_fn(done, total, name)

        Returns:
            LoadReport.  Sounds are registered in `sources` order whatever
            order the workers finish in.  A name given twice is listed
            once; the later sound replaces the earlier one.
        """
        items = [self._normalize_source(s) for s in sources]
        report = LoadReport()

        def is_cancelled():
            return cancel is not None and cancel.is_set()

        def task(item):
            name, src = item
            if is_cancelled():
                return None
            pcm = load_pcm(src) if isinstance(src, str) else src
            check_name(name)
            return encode_sound(self.metadata_for(name), pcm,
                                self.registry.target_rate)

        def collect(i, name, get_result):
            try:
                asset = get_result()
            except (SpuBridgeError, ValueError) as e:
                log.warning("Skipping sound '%s': %s", name, e)
                report.failed[name] = e
            else:
                if asset is None:
                    report.cancelled = True
                elif name in report.loaded:
                    log.warning("Sound '%s' given more than once, keeping the last one", name)
                    self.registry.add(asset)
                else:
                    self.registry.add(asset)
                    report.loaded.append(name)
            if progress_fn is not None:
                progress_fn(i + 1, len(items), name)

        if workers <= 1:
            for i, item in enumerate(items):
                if is_cancelled():
                    report.cancelled = True
                    break
                collect(i, item[0], lambda: task(item))
            return report

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(task, item) for item in items]
            for i, (item, future) in enumerate(zip(items, futures)):
                # workers may run ahead; nothing after a cancel is registered
                if is_cancelled():
                    report.cancelled = True
                    for f in futures[i:]:
                        f.cancel()
                    break
                collect(i, item[0], future.result)

        return report

    @staticmethod
    def _normalize_source(source):
        if isinstance(source, str):
            return sound_name_for(source), source
        name, src = source
        return name, src

    def upload(self, start_address: int) -> int:
        return self.registry.upload(start_address)

    def address_of(self, name: str) -> Optional[int]:
        return self.registry.address_of(name)

    def metadata_of(self, name: str) -> Optional[SoundMetadata]:
        return self.registry.metadata_of(name)

    def clear(self):
        self.registry.clear()

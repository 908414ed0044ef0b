"""SPU RAM layout for uploaded sounds.

SPU RAM: 512KB, byte addressed (the SPU registers hold address / 8).
  $00000-$00FFF  CD audio / voice capture buffers (reserved)
  $01000-$0100F  commonly a silent looping block for idle voices
  $01010-$7FFFF  sample data

The registry assigns addresses; this module checks that they fit and
turns them into an SPU RAM image and an address map.
"""

from .errors import CapacityExceededError

SPU_RAM_SIZE = 512 * 1024
DEFAULT_UPLOAD_ADDRESS = 0x1010


def check_capacity(start_address: int, total_bytes: int,
                   capacity: int = SPU_RAM_SIZE):
    """Raise CapacityExceededError if an upload does not fit.

    Args:
        start_address: address passed to `AssetRegistry.upload`
        total_bytes: byte count it returned
        capacity: size of the destination region
    """
    end = start_address + total_bytes
    if end > capacity:
        over = end - capacity
        raise CapacityExceededError(
            f"Sounds ({total_bytes:,} bytes from ${start_address:05X}) exceed "
            f"SPU RAM ({capacity // 1024}KB) by {over:,} bytes.\n"
            f"Try: fewer or shorter sounds, or a lower start address.")


def _uploaded(registry) -> list:
    assets = registry.assets()
    missing = [a.name for a in assets if a.address is None]
    if missing:
        raise ValueError(f"Sounds not uploaded yet: {', '.join(missing)}")
    return assets


def build_spu_ram(registry, capacity: int = SPU_RAM_SIZE) -> bytearray:
    """Build a full SPU RAM image with every sound at its address.

    Raises:
        CapacityExceededError if a sound lies outside `capacity` bytes.
        ValueError if the registry has not been uploaded.
    """
    ram = bytearray(capacity)
    for asset in _uploaded(registry):
        check_capacity(asset.address, asset.size, capacity)
        ram[asset.address:asset.address + asset.size] = asset.stream.data
    return ram


def address_map(registry) -> dict:
    """Describe where each sound lives, keyed by name (JSON friendly)."""
    out = {}
    for asset in _uploaded(registry):
        md = asset.metadata
        out[asset.name] = {
            'address': asset.address,
            'size': asset.size,
            'blocks': asset.stream.num_blocks,
            'loop_address': asset.loop_address if asset.stream.looping else None,
            'pitch_variance': md.pitch_variance,
            'reverb_depth': md.reverb_depth,
            'priority': md.priority,
        }
    return out


def format_upload_info(registry, start_address: int, total_bytes: int,
                       capacity: int = SPU_RAM_SIZE) -> str:
    """Format human-readable SPU RAM usage info."""
    free = capacity - start_address - total_bytes
    lines = [
        f"  Sounds: {len(registry)}",
        f"  SPU RAM: ${start_address:05X}-${start_address + total_bytes:05X} "
        f"({total_bytes:,} bytes, {total_bytes // 1024}KB)",
        f"  Free: {max(free, 0):,} bytes",
    ]
    return '\n'.join(lines)

"""Error types for spu-bridge."""


class SpuBridgeError(Exception):
    """Base error for spu-bridge."""
    pass


class AudioLoadError(SpuBridgeError):
    """Failed to load or decode audio file."""
    pass


class InvalidFormatError(SpuBridgeError):
    """PCM buffer has an unsupported channel count, rate or no samples."""
    pass


class MetadataParseError(SpuBridgeError):
    """Sound definition text is malformed."""

    def __init__(self, message: str, line: int = 0):
        if line:
            message = f"line {line}: {message}"
        super().__init__(message)
        self.line = line


class CapacityExceededError(SpuBridgeError):
    """Uploaded sounds do not fit in SPU RAM."""
    pass

"""Sound definition file parsing.

The definition file gives each sound the properties that cannot be read
from the waveform itself:

    # comment
    [sfx_pistol]
    loop_start = 0
    loop_end = 0
    pitch_variance = 50
    reverb_depth = 255
    priority = 10

Unknown keys are ignored so newer files still load.  A section with a
bad value falls back to the default metadata for that sound instead of
failing the whole file, unless `strict` is set.
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

from .errors import MetadataParseError

log = logging.getLogger("spu_bridge.metadata")

MAX_SOUND_NAME_LEN = 32     # including the C terminator

REVERB_INHERIT = 255
MAX_REVERB_DEPTH = 127
DEFAULT_PRIORITY = 64


@dataclass(frozen=True)
class SoundMetadata:
    name: str
    loop_start_sample: int = 0
    loop_end_sample: int = 0
    pitch_variance: int = 0
    reverb_depth: int = REVERB_INHERIT
    priority: int = DEFAULT_PRIORITY
    loop: bool = False

    @property
    def looping(self) -> bool:
        return bool(self.loop or self.loop_start_sample or self.loop_end_sample)

    @property
    def inherits_reverb(self) -> bool:
        return self.reverb_depth == REVERB_INHERIT


def default_metadata(name: str) -> SoundMetadata:
    """No loop, map reverb, default priority."""
    return SoundMetadata(name)


def check_name(name: str):
    if not name:
        raise ValueError("Sound name is empty")
    if len(name) >= MAX_SOUND_NAME_LEN:
        raise ValueError(
            f"Sound name '{name}' is too long ({len(name)} chars, "
            f"max {MAX_SOUND_NAME_LEN - 1})")


def _check_reverb(v: int) -> bool:
    return 0 <= v <= MAX_REVERB_DEPTH or v == REVERB_INHERIT


# key -> (field, validator, description)
_FIELDS = {
    'loop_start': ('loop_start_sample', lambda v: 0 <= v <= 0xFFFFFFFF, 'a u32'),
    'loop_end': ('loop_end_sample', lambda v: 0 <= v <= 0xFFFFFFFF, 'a u32'),
    'pitch_variance': ('pitch_variance', lambda v: -32768 <= v <= 32767, 'an i16'),
    'reverb_depth': ('reverb_depth', _check_reverb, '0-127 or 255'),
    'priority': ('priority', lambda v: 0 <= v <= 255, '0-255'),
    'loop': ('loop', lambda v: v in (0, 1), '0 or 1'),
}


def _parse_int(text: str) -> int:
    try:
        return int(text, 0)
    except ValueError:
        # int(x, 0) rejects zero-padded decimals such as "010"
        return int(text, 10)


class _Section:
    def __init__(self, name: str, line: int):
        self.name = name
        self.line = line
        self.values = {}
        self.error: Optional[MetadataParseError] = None

    def fail(self, message: str, line: int):
        if self.error is None:
            self.error = MetadataParseError(f"[{self.name}] {message}", line)

    def build(self) -> SoundMetadata:
        md = default_metadata(self.name)
        if self.error is not None:
            return md
        values = dict(self.values)
        if 'loop' in values:
            values['loop'] = bool(values['loop'])
        return replace(md, **values)


def parse_metadata(text: str, strict: bool = False) -> dict:
    """Parse definition text into a {name: SoundMetadata} dict.

    Args:
        text: definition file contents
        strict: raise on the first malformed entry instead of falling
            back to defaults

    Raises:
        MetadataParseError (strict mode only)
    """
    result = {}
    section: Optional[_Section] = None

    def finish(sec: Optional[_Section]):
        if sec is None:
            return
        if sec.error is not None:
            if strict:
                raise sec.error
            log.warning("%s, using default metadata for '%s'", sec.error, sec.name)
        result[sec.name] = sec.build()

    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line[0] in '#;':
            continue

        if line.startswith('['):
            finish(section)
            section = None

            if not line.endswith(']'):
                err = MetadataParseError(f"Unterminated section header: {line}", lineno)
                if strict:
                    raise err
                log.warning("%s, section skipped", err)
                continue

            name = line[1:-1].strip()
            try:
                check_name(name)
            except ValueError as e:
                if strict:
                    raise MetadataParseError(str(e), lineno)
                log.warning("line %d: %s, section skipped", lineno, e)
                continue

            section = _Section(name, lineno)
            continue

        if section is None:
            # keys before the first section have nothing to apply to
            continue

        key, sep, value = line.partition('=')
        if not sep:
            section.fail(f"Expected 'key = value', got: {line}", lineno)
            continue

        key = key.strip().lower()
        field = _FIELDS.get(key)
        if field is None:
            continue
        attr, check, desc = field

        try:
            v = _parse_int(value.strip())
        except ValueError:
            section.fail(f"{key}: not an integer: {value.strip()!r}", lineno)
            continue
        if not check(v):
            section.fail(f"{key} must be {desc}, got {v}", lineno)
            continue

        section.values[attr] = v

    finish(section)
    return result


def load_metadata(path: str, strict: bool = False) -> dict:
    """Load a definition file.

    A missing file is not an error: an empty mapping is returned and every
    sound gets the default metadata.  So is a file that cannot be read or
    decoded, unless `strict` is set.

    Raises:
        MetadataParseError (strict mode only)
    """
    if not os.path.exists(path):
        log.info("No sound definitions at %s, using defaults", path)
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        if strict:
            raise MetadataParseError(f"Cannot read {path}: {e}")
        log.warning("Cannot read sound definitions %s (%s), using defaults", path, e)
        return {}

    return parse_metadata(text, strict)


def lookup(store: dict, name: str) -> SoundMetadata:
    """Metadata for `name`, or the defaults if it has no entry."""
    md = store.get(name)
    if md is None:
        return default_metadata(name)
    return md

"""
Conversion Rule Models
======================

Typed representation of the conversion matrix.

Matrix syntax (comma separated items):
    codec|bitrateLow|bitrateHigh|channelsLow|channelsHigh=outCodec|outBitrate|outChannels

    - "0" in any condition field is a wildcard
    - "0" on a bound means unbounded on that side
    - "copy" as outCodec keeps the source parameters
    - An item without "=" is a bare fallback action

Example:
    "0|1|48000|1|1=opus|24000|1,0|0|0|0|0=opus|64000|2"
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple


WILDCARD = "0"
COPY_CODEC = "copy"


@dataclass(frozen=True, slots=True)
class ConversionAction:
    """
    Target encoding parameters.

    bitrate and channels are kept as strings; they are passed through to the
    encode request untouched.
    """

    codec: str
    bitrate: str
    channels: str

    @property
    def is_copy(self) -> bool:
        """Whether this action keeps the source parameters."""
        return self.codec.lower() == COPY_CODEC


@dataclass(frozen=True, slots=True)
class Condition:
    """
    Rule condition. Zero means wildcard / unbounded.

    Attributes:
        codec: Codec name or "0" for any codec
        bitrate_low: Inclusive lower bitrate bound (0 = unbounded)
        bitrate_high: Inclusive upper bitrate bound (0 = unbounded)
        channels_low: Inclusive lower channel bound (0 = unbounded)
        channels_high: Inclusive upper channel bound (0 = unbounded)
    """

    codec: str = WILDCARD
    bitrate_low: int = 0
    bitrate_high: int = 0
    channels_low: int = 0
    channels_high: int = 0

    @property
    def is_fallback(self) -> bool:
        """Whether every field is a wildcard."""
        return (
            self.codec == WILDCARD
            and self.bitrate_low == 0
            and self.bitrate_high == 0
            and self.channels_low == 0
            and self.channels_high == 0
        )

    def matches(self, codec: str, bit_rate: int, channels: int) -> bool:
        if self.codec != WILDCARD and self.codec.lower() != codec.lower():
            return False
        return _within(bit_rate, self.bitrate_low, self.bitrate_high) and _within(
            channels, self.channels_low, self.channels_high
        )


def _within(value: int, low: int, high: int) -> bool:
    if low != 0 and value < low:
        return False
    if high != 0 and value > high:
        return False
    return True


@dataclass(frozen=True, slots=True)
class ConversionRule:
    """A condition and the action applied when it holds."""

    condition: Condition
    action: ConversionAction


@dataclass(frozen=True)
class RuleTable:
    """
    Parsed conversion matrix.

    Attributes:
        rules: Explicit rules in declaration order (first match wins)
        fallback: Action for inputs no rule matches, if any
    """

    rules: Tuple[ConversionRule, ...] = field(default_factory=tuple)
    fallback: Optional[ConversionAction] = None

    def __len__(self) -> int:
        return len(self.rules) + (1 if self.fallback is not None else 0)

    def describe(self) -> str:
        """Compact one-line description for logging."""
        parts = [
            f"{r.condition.codec}|{r.condition.bitrate_low}|{r.condition.bitrate_high}"
            f"|{r.condition.channels_low}|{r.condition.channels_high}"
            f"->{r.action.codec}|{r.action.bitrate}|{r.action.channels}"
            for r in self.rules
        ]
        if self.fallback is not None:
            f = self.fallback
            parts.append(f"*->{f.codec}|{f.bitrate}|{f.channels}")
        return ", ".join(parts) if parts else "<empty>"

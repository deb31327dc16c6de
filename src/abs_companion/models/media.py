"""
Media Descriptor
================

Per-attempt snapshot of an item's primary audio stream.

Design Rules:
    - Built fresh for every dispatch attempt, never cached
    - Codec is normalized to lower case
    - Immutable (frozen)
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class MediaDescriptor:
    """
    Source audio parameters used for rule matching.

    Attributes:
        codec: Source codec name, lower case (e.g. "mp3", "aac")
        bit_rate: Source bitrate in bits per second
        channels: Source channel count
    """

    codec: str
    bit_rate: int = 0
    channels: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "codec", (self.codec or "").strip().lower())
        if self.bit_rate < 0:
            raise ValueError(f"bit_rate must be >= 0, got {self.bit_rate}")
        if self.channels < 0:
            raise ValueError(f"channels must be >= 0, got {self.channels}")

    def __repr__(self) -> str:
        return (
            f"MediaDescriptor(codec={self.codec}, "
            f"bit_rate={self.bit_rate}, channels={self.channels})"
        )

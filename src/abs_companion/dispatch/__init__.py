"""
Dispatch Module
===============

Bounded, self-correcting queue of items waiting for an encode.
"""

from abs_companion.dispatch.queue import DispatchQueue, EncodingBackend


__all__ = [
    "DispatchQueue",
    "EncodingBackend",
]

"""
Data Models
===========

Models for the encoding companion.

This module re-exports all data models for convenient access.

Models:
    Media:
        - MediaDescriptor: Source codec/bitrate/channels snapshot

    Rules:
        - Condition, ConversionAction, ConversionRule, RuleTable

    API:
        - AudioFile, ItemDetails, Library: control-plane responses

    State:
        - SessionState: Realtime session lifecycle
        - DispatchState: Queue and running-job accounting
"""

from abs_companion.models.media import MediaDescriptor
from abs_companion.models.rules import (
    Condition,
    ConversionAction,
    ConversionRule,
    RuleTable,
)
from abs_companion.models.api import AudioFile, ItemDetails, ItemMedia, Library
from abs_companion.models.state import DispatchState, SessionState

__all__ = [
    # Media
    "MediaDescriptor",
    # Rules
    "Condition",
    "ConversionAction",
    "ConversionRule",
    "RuleTable",
    # API
    "AudioFile",
    "ItemDetails",
    "ItemMedia",
    "Library",
    # State
    "DispatchState",
    "SessionState",
]

"""
Realtime Frames
===============

Encode/decode for the two nested framing layers spoken by the media server's
realtime endpoint.

Outer layer (engine frames):
    <engineKind><rest>
        '0' open, '2' ping, '3' pong, '4' message

Inner layer (body of a message frame):
    <socketKind><payload>
        '0' namespace connect, '1' namespace disconnect, '2' event

Event payload is a JSON array: [eventName, eventPayload]

Example:
    from abs_companion.protocol.frames import decode_frame, decode_packet

    frame = decode_frame('42["item_added",{"id":"li_123"}]')
    packet = decode_packet(frame.data)
    print(packet.event_name, packet.payload)

Design Rules:
    - Pure functions, no I/O
    - Event payloads stay generic JSON values
    - Only the subset needed by the companion is supported
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ProtocolDecodeError(ValueError):
    """Raised when a frame or its payload cannot be decoded."""


class EngineKind(str, Enum):
    """Leading character of an engine frame."""

    OPEN = "0"
    PING = "2"
    PONG = "3"
    MESSAGE = "4"


class SocketKind(str, Enum):
    """Leading character of a message frame body."""

    CONNECT = "0"
    DISCONNECT = "1"
    EVENT = "2"


@dataclass(frozen=True, slots=True)
class RawFrame:
    """
    Engine-level frame.

    Attributes:
        kind: Engine frame kind
        data: Remaining text after the kind character (may be empty)
    """

    kind: EngineKind
    data: str = ""


@dataclass(frozen=True, slots=True)
class NamespaceFrame:
    """
    Decoded body of a message frame.

    Attributes:
        kind: Socket frame kind
        event_name: Event name (EVENT frames only)
        payload: Decoded JSON payload, or None when absent
    """

    kind: SocketKind
    event_name: Optional[str] = None
    payload: Any = None


# =============================================================================
# Decoding
# =============================================================================

def decode_frame(text: str) -> RawFrame:
    """
    Decode one engine frame.

    Raises:
        ProtocolDecodeError: Empty frame or unknown engine kind
    """
    if not text:
        raise ProtocolDecodeError("Empty frame")

    try:
        kind = EngineKind(text[0])
    except ValueError:
        raise ProtocolDecodeError(f"Unknown engine frame kind: {text[0]!r}")

    return RawFrame(kind=kind, data=text[1:])


def decode_packet(text: str) -> NamespaceFrame:
    """
    Decode the body of a message frame.

    Args:
        text: Frame data following the '4' engine kind

    Returns:
        NamespaceFrame with event name and payload filled in for events

    Raises:
        ProtocolDecodeError: Unknown socket kind or malformed event body
    """
    if not text:
        raise ProtocolDecodeError("Empty message frame")

    try:
        kind = SocketKind(text[0])
    except ValueError:
        raise ProtocolDecodeError(f"Unknown socket frame kind: {text[0]!r}")

    body = text[1:]

    if kind is not SocketKind.EVENT:
        # Connect acks carry an optional {"sid": ...} object
        payload = _loads(body) if body else None
        return NamespaceFrame(kind=kind, payload=payload)

    data = _loads(body)
    if not isinstance(data, list) or not data:
        raise ProtocolDecodeError(f"Event body is not a non-empty array: {body[:80]}")

    event_name = data[0]
    if not isinstance(event_name, str):
        raise ProtocolDecodeError(f"Event name is not a string: {event_name!r}")

    payload = data[1] if len(data) > 1 and data[1] is not None else {}

    return NamespaceFrame(kind=kind, event_name=event_name, payload=payload)


def _loads(body: str) -> Any:
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise ProtocolDecodeError(f"Invalid JSON in frame: {e}") from e


# =============================================================================
# Encoding
# =============================================================================

def encode_frame(frame: RawFrame) -> str:
    """Encode an engine frame."""
    return f"{frame.kind.value}{frame.data}"


def encode_pong() -> str:
    return encode_frame(RawFrame(EngineKind.PONG))


def encode_namespace_connect() -> str:
    return encode_frame(RawFrame(EngineKind.MESSAGE, SocketKind.CONNECT.value))


def encode_namespace_disconnect() -> str:
    return encode_frame(RawFrame(EngineKind.MESSAGE, SocketKind.DISCONNECT.value))


def encode_event(event_name: str, payload: Any) -> str:
    """
    Encode an event frame.

    Args:
        event_name: Event name
        payload: Any JSON-serializable value

    Returns:
        Frame text, e.g. '42["auth","token"]'
    """
    body = json.dumps([event_name, payload], separators=(",", ":"))
    return encode_frame(RawFrame(EngineKind.MESSAGE, f"{SocketKind.EVENT.value}{body}"))


# =============================================================================
# Connection URLs
# =============================================================================

SOCKET_PATH = "/socket.io/"
SOCKET_QUERY = "EIO=4&transport=websocket"


def build_socket_url(host: str) -> str:
    """
    Derive the realtime endpoint URL from a host string.

    'http://h' -> 'ws://h/...', 'https://h' -> 'wss://h/...', 'h' -> 'ws://h/...'
    """
    host = host.strip().rstrip("/")
    if host.startswith("https://"):
        base = "wss://" + host[len("https://"):]
    elif host.startswith("http://"):
        base = "ws://" + host[len("http://"):]
    else:
        base = "ws://" + host
    return f"{base}{SOCKET_PATH}?{SOCKET_QUERY}"


def build_api_base_url(host: str) -> str:
    """Derive the HTTP API base URL from a host string."""
    host = host.strip().rstrip("/")
    if host.startswith("http://") or host.startswith("https://"):
        return host
    return f"http://{host}"

"""
Protocol Module
===============

Framing for the media server's realtime connection.

    - RawFrame / EngineKind: outer keepalive/open/message frames
    - NamespaceFrame / SocketKind: inner connect/disconnect/event frames
    - decode_* / encode_*: pure codec functions
"""

from abs_companion.protocol.frames import (
    EngineKind,
    NamespaceFrame,
    ProtocolDecodeError,
    RawFrame,
    SocketKind,
    build_api_base_url,
    build_socket_url,
    decode_frame,
    decode_packet,
    encode_event,
    encode_frame,
    encode_namespace_connect,
    encode_namespace_disconnect,
    encode_pong,
)


__all__ = [
    "EngineKind",
    "NamespaceFrame",
    "ProtocolDecodeError",
    "RawFrame",
    "SocketKind",
    "build_api_base_url",
    "build_socket_url",
    "decode_frame",
    "decode_packet",
    "encode_event",
    "encode_frame",
    "encode_namespace_connect",
    "encode_namespace_disconnect",
    "encode_pong",
]

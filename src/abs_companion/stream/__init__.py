"""
Stream Module
=============

Realtime connection to the media server.

This module provides the ingestion layer for the companion:
    - SocketSession: WebSocket session with handshake, keepalive and reconnect
    - SessionMetrics: Counters for health monitoring

Example:
    from abs_companion.stream import SocketSession

    session = SocketSession(url, token, on_event=dispatcher.dispatch)
    session.start()
    ...
    await session.close()
"""

from abs_companion.stream.session import SessionMetrics, SocketSession


__all__ = [
    "SessionMetrics",
    "SocketSession",
]

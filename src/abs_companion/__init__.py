"""
ABS Encoding Companion
======================

Long-running companion for Audiobookshelf that listens to the server's
realtime event stream and requests M4B encodes for newly added items.

Components:
    - protocol: Nested realtime frame codec
    - stream: WebSocket session (handshake, keepalive, reconnect)
    - events: Event routing
    - rules: Conversion matrix parsing and matching
    - dispatch: Bounded encode queue
    - api: HTTP control-plane client

Example:
    from abs_companion.config import load_config
    from abs_companion.companion import Companion

    companion = Companion(load_config())
    companion.start()

    # Normally started via the FastAPI application, see main.py
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]

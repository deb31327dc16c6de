"""
Events Module
=============

Application-level event routing for the realtime session.
"""

from abs_companion.events.dispatcher import EventDispatcher, MalformedPayload


__all__ = [
    "EventDispatcher",
    "MalformedPayload",
]

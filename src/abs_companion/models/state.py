"""
Runtime State Models
====================

Session states and the dispatch bookkeeping owned by the queue.

Session lifecycle:
    DISCONNECTED -> CONNECTING -> AWAITING_HANDSHAKE -> NAMESPACE_CONNECTED
        -> AUTHENTICATED -> DISCONNECTED_RETRYING -> CONNECTING ...

Dispatch accounting:
    running_count is a best-effort estimate of remote in-flight jobs. It is
    adjusted locally on dispatch/skip/completion and replaced by the server's
    active job count on resync. Transient drift is tolerated.
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque


class SessionState(str, Enum):
    """
    Realtime session states.

    Attributes:
        DISCONNECTED: Not started, or closed by shutdown
        CONNECTING: Opening the websocket
        AWAITING_HANDSHAKE: Socket open, namespace connect not yet acknowledged
        NAMESPACE_CONNECTED: Namespace acknowledged, auth sent
        AUTHENTICATED: Server accepted the token
        DISCONNECTED_RETRYING: Connection lost, reconnect scheduled
    """

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    AWAITING_HANDSHAKE = "AWAITING_HANDSHAKE"
    NAMESPACE_CONNECTED = "NAMESPACE_CONNECTED"
    AUTHENTICATED = "AUTHENTICATED"
    DISCONNECTED_RETRYING = "DISCONNECTED_RETRYING"


@dataclass
class DispatchState:
    """
    Mutable dispatch bookkeeping.

    Only mutated from the event loop thread, so no locking.

    Attributes:
        queue: Pending item identifiers, FIFO
        running_count: Estimated jobs in flight on the server
        concurrency_limit: Maximum jobs the companion will keep in flight
    """

    concurrency_limit: int = 1
    queue: Deque[str] = field(default_factory=deque)
    running_count: int = 0

    def __post_init__(self) -> None:
        if self.concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")

    @property
    def has_capacity(self) -> bool:
        return self.running_count < self.concurrency_limit

    @property
    def free_slots(self) -> int:
        return max(0, self.concurrency_limit - self.running_count)

    def to_dict(self) -> dict:
        """Export for metrics."""
        return {
            "queue_size": len(self.queue),
            "running_count": self.running_count,
            "concurrency_limit": self.concurrency_limit,
        }

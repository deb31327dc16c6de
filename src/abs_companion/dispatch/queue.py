"""
Dispatch Queue
==============

FIFO of pending item IDs gated by a concurrency ceiling.

Each dispatch attempt owns exactly one entry end to end:
    pop -> fetch descriptor -> exclusion check -> rule match -> start encode

Accounting Rules:
    - running_count is incremented when an entry is popped
    - Every skip or failure decrements it exactly once and moves on to the
      next entry, so a run of unconvertible items never stalls the queue
    - After a successful encode request, running_count is replaced by the
      server's active job count when that call succeeds
    - Completion events decrement (clamped at 0) and backfill free slots
    - A periodic resync corrects drift from missed completion events

Tasks:
    - Settle-delay attempts are fire-and-forget and survive shutdown
    - The periodic resync task is cancelled by close()
"""

import asyncio
import logging
from typing import Callable, Coroutine, Iterable, Optional, Protocol, Set

from abs_companion.api.client import ControlPlaneError
from abs_companion.models.media import MediaDescriptor
from abs_companion.models.rules import RuleTable
from abs_companion.models.state import DispatchState
from abs_companion.rules.engine import match


logger = logging.getLogger(__name__)


class EncodingBackend(Protocol):
    """Control-plane calls used by the dispatch queue."""

    async def get_media_descriptor(self, item_id: str) -> Optional[MediaDescriptor]:
        ...

    async def start_encoding(
        self, item_id: str, codec: str, bitrate: str, channels: str
    ) -> None:
        ...

    async def count_active_jobs(self) -> int:
        ...


class DispatchQueue:
    """
    Bounded dispatcher for encode requests.

    Attributes:
        state: Queue contents and running-job accounting
        excluded_codecs: Lower-case codecs that are never converted
        drain_then_exit: Call on_drained whenever an attempt finds the queue empty

    Example:
        queue = DispatchQueue(client, rules, concurrency_limit=2)
        queue.enqueue("li_123")
        queue.schedule_dispatch(15.0)
    """

    def __init__(
        self,
        backend: EncodingBackend,
        rules: RuleTable,
        excluded_codecs: Iterable[str] = ("opus",),
        concurrency_limit: int = 1,
        drain_then_exit: bool = False,
        on_drained: Optional[Callable[[], None]] = None,
        resync_interval: float = 0.0,
    ) -> None:
        """
        Initialize the dispatch queue.

        Args:
            backend: Control-plane client
            rules: Parsed conversion matrix
            excluded_codecs: Codecs to skip (case-insensitive)
            concurrency_limit: Maximum encodes in flight, >= 1
            drain_then_exit: Trigger on_drained when the queue runs empty
            on_drained: Shutdown hook for drain-then-exit
            resync_interval: Seconds between running-count resyncs (0 = off)
        """
        self.backend = backend
        self.rules = rules
        self.excluded_codecs = frozenset(c.strip().lower() for c in excluded_codecs if c.strip())
        self.drain_then_exit = drain_then_exit
        self.resync_interval = resync_interval
        self.state = DispatchState(concurrency_limit=concurrency_limit)

        self._on_drained = on_drained
        self._tasks: Set[asyncio.Task] = set()
        self._resync_task: Optional[asyncio.Task] = None

        # Metrics
        self.dispatched_count: int = 0
        self.skipped_count: int = 0
        self.failed_count: int = 0

    @property
    def size(self) -> int:
        return len(self.state.queue)

    @property
    def running_count(self) -> int:
        return self.state.running_count

    @property
    def concurrency_limit(self) -> int:
        return self.state.concurrency_limit

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    def enqueue(self, item_id: str) -> None:
        """Append an item. Event-driven insertions are not deduplicated."""
        self.state.queue.append(item_id)
        logger.info(f"Item {item_id} added to queue. Queue size: {self.size}")

    def enqueue_many(self, item_ids: Iterable[str]) -> int:
        """
        Append items skipping any already queued.

        Returns:
            Number of items actually added
        """
        seen = set(self.state.queue)
        added = 0
        for item_id in item_ids:
            if not item_id or item_id in seen:
                continue
            self.state.queue.append(item_id)
            seen.add(item_id)
            added += 1
        return added

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def schedule_dispatch(self, delay: float) -> None:
        """Run one dispatch attempt after delay seconds."""
        self._spawn(self._dispatch_later(delay), name="dispatch_settle")

    def fill(self) -> None:
        """Start an attempt for every free concurrency slot."""
        for _ in range(self.state.free_slots):
            self._spawn(self.try_dispatch(), name="dispatch_attempt")

    def complete(self) -> None:
        """Record a finished remote job."""
        self.state.running_count = max(0, self.state.running_count - 1)
        logger.debug(f"Job completed, running: {self.state.running_count}")

    def start(self) -> None:
        """Start the periodic resync task."""
        if self.resync_interval > 0 and self._resync_task is None:
            self._resync_task = asyncio.create_task(
                self._resync_loop(), name="dispatch_resync"
            )

    async def close(self) -> None:
        """Cancel the resync task. Pending settle attempts are left running."""
        if self._resync_task is not None:
            self._resync_task.cancel()
            try:
                await self._resync_task
            except asyncio.CancelledError:
                pass
            self._resync_task = None

    async def _dispatch_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.try_dispatch()

    def _spawn(self, coro: Coroutine, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def try_dispatch(self) -> None:
        """
        Dispatch the next convertible entry if there is capacity.

        Skipped and failed entries are discarded and the next entry is tried
        immediately. Returns once an encode has been requested, the queue is
        empty, or the concurrency limit is reached.
        """
        while True:
            if not self.state.queue:
                if self.drain_then_exit and self._on_drained is not None:
                    logger.info("Queue empty in drain-then-exit mode, shutting down")
                    self._on_drained()
                return

            if not self.state.has_capacity:
                logger.info(
                    f"Max parallel tasks ({self.state.concurrency_limit}) reached. "
                    f"Waiting for completion. Queue size: {self.size}"
                )
                return

            # Check and increment happen without an await in between
            item_id = self.state.queue.popleft()
            self.state.running_count += 1
            logger.info(f"Processing item {item_id} from queue")

            try:
                dispatched = await self._process(item_id)
            except ControlPlaneError as e:
                self.failed_count += 1
                logger.error(f"Error processing item {item_id}: {e}")
                dispatched = False
            except Exception as e:
                self.failed_count += 1
                logger.error(f"Unexpected error processing item {item_id}: {e}", exc_info=True)
                dispatched = False

            if dispatched:
                self.dispatched_count += 1
                return

            self.state.running_count = max(0, self.state.running_count - 1)

    async def _process(self, item_id: str) -> bool:
        """
        Run one attempt for an already-popped entry.

        Returns:
            True if an encode was requested, False if the item was skipped

        Raises:
            ControlPlaneError: Any control-plane call failed
        """
        descriptor = await self.backend.get_media_descriptor(item_id)
        if descriptor is None:
            self.skipped_count += 1
            logger.info(f"No audio files found for item {item_id}. Skipping.")
            return False

        if descriptor.codec in self.excluded_codecs:
            self.skipped_count += 1
            logger.info(f"Codec {descriptor.codec} for item {item_id} is excluded. Skipping.")
            return False

        action = match(self.rules, descriptor.codec, descriptor.bit_rate, descriptor.channels)
        if action is None:
            self.skipped_count += 1
            logger.info(
                f"No conversion profile for item {item_id} "
                f"({descriptor.codec}, {descriptor.bit_rate}bps, {descriptor.channels}ch). Skipping."
            )
            return False

        logger.info(
            f"Converting item {item_id}: {descriptor.codec} {descriptor.bit_rate}bps "
            f"{descriptor.channels}ch -> {action.codec} {action.bitrate} {action.channels}ch"
        )
        await self.backend.start_encoding(item_id, action.codec, action.bitrate, action.channels)

        try:
            self.state.running_count = await self.backend.count_active_jobs()
        except ControlPlaneError as e:
            logger.debug(f"Running count resync failed, keeping {self.state.running_count}: {e}")

        return True

    # -------------------------------------------------------------------------
    # Resync
    # -------------------------------------------------------------------------

    async def resync(self) -> bool:
        """
        Replace running_count with the server's active job count.

        Returns:
            True if the count was refreshed
        """
        try:
            remote = await self.backend.count_active_jobs()
        except ControlPlaneError as e:
            logger.warning(f"Running count resync failed: {e}")
            return False

        if remote != self.state.running_count:
            logger.info(f"Running count resynced: {self.state.running_count} -> {remote}")
        self.state.running_count = remote
        return True

    async def _resync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.resync_interval)
            if await self.resync() and self.state.queue:
                self.fill()

"""
Companion
=========

Wires the realtime session, event dispatcher, dispatch queue and control-plane
client together, and owns the process-level behaviors:

    - One-time library scan after the first namespace connect
    - Shutdown, including drain-then-exit

Shutdown only drains what is visibly queued: if the queue is empty the exit
callback fires even when encodes are still running on the server.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from abs_companion.api.client import ControlPlaneClient, ControlPlaneError
from abs_companion.config import Settings
from abs_companion.dispatch.queue import DispatchQueue
from abs_companion.events.dispatcher import EventDispatcher
from abs_companion.rules.engine import parse_rule_table
from abs_companion.stream.session import Connector, SocketSession


logger = logging.getLogger(__name__)


BOOK_MEDIA_TYPE = "book"
SCAN_MIN_DELAY_SECONDS = 2.0


class Companion:
    """
    Encoding companion.

    Attributes:
        settings: Loaded settings
        client: Control-plane client
        queue: Dispatch queue
        dispatcher: Event dispatcher
        session: Realtime session
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[Any] = None,
        connector: Optional[Connector] = None,
        on_exit: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Build all components from settings.

        Args:
            settings: Loaded settings
            client: Control-plane client (defaults to ControlPlaneClient)
            connector: WebSocket connect coroutine for the session
            on_exit: Called when shutdown finds the queue empty
        """
        self.settings = settings
        self.client = client or ControlPlaneClient(
            base_url=settings.abs.api_base_url,
            token=settings.abs.token,
        )
        self._on_exit = on_exit

        d = settings.dispatch
        self.rules = parse_rule_table(d.conversion_matrix)
        logger.info(f"Parsed conversion matrix: {self.rules.describe()}")

        self.queue = DispatchQueue(
            backend=self.client,
            rules=self.rules,
            excluded_codecs=d.excluded_codecs,
            concurrency_limit=d.max_parallel,
            drain_then_exit=d.dry_run,
            on_drained=self.request_shutdown,
            resync_interval=d.resync_interval_seconds,
        )
        self.dispatcher = EventDispatcher(
            queue=self.queue,
            embedder=self.client,
            settle_delay=d.conversion_delay_seconds,
            embed_metadata=d.embed_metadata,
            embed_delay=d.embed_delay_seconds,
        )
        self.session = SocketSession(
            url=settings.abs.socket_url,
            token=settings.abs.token,
            on_event=self.dispatcher.dispatch,
            on_namespace_connected=self._on_namespace_connected,
            handshake_delay=settings.session.handshake_delay_seconds,
            reconnect_delay=settings.session.reconnect_delay_seconds,
            connector=connector,
        )

        self._scan_started: bool = False
        self._scan_task: Optional[asyncio.Task] = None
        self._shutdown_task: Optional[asyncio.Task] = None
        self._exited: bool = False
        self._closed: bool = False

    @property
    def scan_performed(self) -> bool:
        return self._scan_started and self._scan_task is not None and self._scan_task.done()

    def start(self) -> None:
        """Start the resync task and the realtime session."""
        logger.info("Starting encoding companion")
        self.queue.start()
        self.session.start()

    # -------------------------------------------------------------------------
    # Library scan
    # -------------------------------------------------------------------------

    def _on_namespace_connected(self) -> None:
        if not self.settings.dispatch.encode_library or self._scan_started:
            return
        self._scan_started = True
        self._scan_task = asyncio.create_task(self._run_scan(), name="library_scan")

    async def _run_scan(self) -> None:
        try:
            added = await self.scan_library()
        except ControlPlaneError as e:
            logger.error(f"Initial library scan failed: {e}")
            return

        if added == 0 and not self.settings.dispatch.dry_run:
            return

        delay = self.settings.dispatch.conversion_delay_seconds or SCAN_MIN_DELAY_SECONDS
        logger.info(f"Processing queue after initial scan in {delay:.1f} seconds...")
        await asyncio.sleep(delay)
        self.queue.fill()

    async def scan_library(self) -> int:
        """
        Enqueue every item of every book library.

        Per-library failures are logged and skipped.

        Returns:
            Number of items enqueued (duplicates of queued items are skipped)

        Raises:
            ControlPlaneError: Library listing failed
        """
        logger.info("Starting library scan...")
        libraries = await self.client.list_libraries()
        if not libraries:
            logger.info("No libraries found to scan")
            return 0

        added = 0
        for library in libraries:
            if library.media_type != BOOK_MEDIA_TYPE:
                continue
            try:
                item_ids = await self.client.list_library_items(library.id)
            except ControlPlaneError as e:
                logger.error(f"Failed to fetch items for library {library.id}: {e}")
                continue
            count = self.queue.enqueue_many(item_ids)
            logger.info(f"Library {library.id}: {len(item_ids)} items, {count} enqueued")
            added += count

        logger.info(f"Library scan complete. Enqueued: {added}. Queue size: {self.queue.size}")
        return added

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def request_shutdown(self) -> None:
        """Schedule shutdown from synchronous code; repeated calls share one task."""
        if self._shutdown_task is None or self._shutdown_task.done():
            self._shutdown_task = asyncio.create_task(self.shutdown(), name="companion_shutdown")

    async def shutdown(self) -> bool:
        """
        Close the realtime session and exit if nothing is queued.

        Returns:
            True if the exit callback was invoked
        """
        await self.session.close()

        if self.queue.size > 0:
            logger.info(f"Items remaining in queue: {self.queue.size}. Not exiting.")
            return False

        logger.info("No items in queue. Exiting.")
        if self._on_exit is not None and not self._exited:
            self._exited = True
            self._on_exit()
        return True

    async def close(self) -> None:
        """Release all resources."""
        if self._closed:
            return
        self._closed = True

        await self.session.close()
        await self.queue.close()

        if self._scan_task is not None and not self._scan_task.done():
            self._scan_task.cancel()
            try:
                await self._scan_task
            except asyncio.CancelledError:
                pass

        aclose = getattr(self.client, "aclose", None)
        if aclose is not None:
            await aclose()

    def metrics(self) -> dict:
        return {
            "session_state": self.session.state.value,
            **self.session.metrics.to_dict(),
            **self.queue.state.to_dict(),
            "dispatched": self.queue.dispatched_count,
            "skipped": self.queue.skipped_count,
            "failed": self.queue.failed_count,
            "events_handled": self.dispatcher.events_handled,
            "events_dropped": self.dispatcher.events_dropped,
            "scan_performed": self.scan_performed,
        }

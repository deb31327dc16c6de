"""
Event Dispatcher
================

Routes decoded realtime events to their handlers.

Handled events:
    auth_success / auth_error  -> log only
    item_added                 -> enqueue + settle-delayed dispatch attempt
    task_finished (encode*)    -> complete job, optional metadata embed, backfill
    task_progress              -> coarse progress log

Design Rules:
    - Handlers are synchronous; anything slow is spawned as a task
    - Malformed payloads are logged and dropped, never raised
    - Unknown events are ignored
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Protocol, Set

from abs_companion.api.client import ControlPlaneError
from abs_companion.dispatch.queue import DispatchQueue


logger = logging.getLogger(__name__)


PROGRESS_LOG_STEP = 10
PROGRESS_MARKS_LIMIT = 1000


class MalformedPayload(ValueError):
    """Event payload is missing a required field."""


class MetadataEmbedder(Protocol):
    async def embed_metadata(self, item_id: str) -> None:
        ...


class EventDispatcher:
    """
    Demultiplexes (name, payload) events.

    Attributes:
        queue: Dispatch queue fed by item_added and drained by task_finished
        settle_delay: Seconds to wait after item_added before dispatching
        embed_metadata: Request metadata embedding after each finished encode
        embed_delay: Seconds to wait before the embed request
    """

    def __init__(
        self,
        queue: DispatchQueue,
        embedder: Optional[MetadataEmbedder] = None,
        settle_delay: float = 15.0,
        embed_metadata: bool = False,
        embed_delay: float = 60.0,
    ) -> None:
        self.queue = queue
        self.embedder = embedder
        self.settle_delay = settle_delay
        self.embed_metadata = embed_metadata
        self.embed_delay = embed_delay

        self._handlers: Dict[str, Callable[[Any], None]] = {
            "auth_success": self._on_auth_success,
            "auth_error": self._on_auth_error,
            "item_added": self._on_item_added,
            "task_finished": self._on_task_finished,
            "task_progress": self._on_task_progress,
        }
        self._progress_marks: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()

        self.events_handled: int = 0
        self.events_dropped: int = 0

    def dispatch(self, event_name: str, payload: Any) -> None:
        """
        Route one event.

        Args:
            event_name: Event name from the event frame
            payload: Decoded JSON payload
        """
        handler = self._handlers.get(event_name)
        if handler is None:
            return

        try:
            handler(payload)
            self.events_handled += 1
        except (MalformedPayload, AttributeError, KeyError, TypeError, ValueError) as e:
            self.events_dropped += 1
            logger.error(f"Dropped malformed '{event_name}' event: {e}")

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _on_auth_success(self, payload: Any) -> None:
        logger.info("Realtime authentication successful")

    def _on_auth_error(self, payload: Any) -> None:
        logger.error(f"Realtime authentication failed: {payload}")

    def _on_item_added(self, payload: Any) -> None:
        item_id = _get(payload, "id")
        if not item_id:
            raise MalformedPayload("item_added without id")

        logger.info(f"Item added: {item_id}")
        self.queue.enqueue(str(item_id))
        self.queue.schedule_dispatch(self.settle_delay)

    def _on_task_finished(self, payload: Any) -> None:
        action = _get(payload, "action")
        data = _get(payload, "data")
        item_id = data.get("libraryItemId") if isinstance(data, dict) else None
        if item_id:
            self._progress_marks.pop(item_id, None)

        if not isinstance(action, str) or "encode" not in action:
            return

        logger.info(f"Encoding finished: task={_get(payload, 'id')} item={item_id}")
        self.queue.complete()

        if self.embed_metadata and item_id and self.embedder is not None:
            self._spawn(self._embed_later(str(item_id)))

        self.queue.fill()

    def _on_task_progress(self, payload: Any) -> None:
        item_id = _get(payload, "libraryItemId")
        progress = _get(payload, "progress")

        if not item_id or not isinstance(progress, (int, float)) or isinstance(progress, bool):
            logger.warning("Task progress event without libraryItemId/progress, skipping")
            return

        bucket = int(progress // PROGRESS_LOG_STEP)
        if self._progress_marks.get(item_id) == bucket:
            return
        if item_id not in self._progress_marks and len(self._progress_marks) >= PROGRESS_MARKS_LIMIT:
            # Oldest entry first; its completion was never seen
            self._progress_marks.pop(next(iter(self._progress_marks)))
        self._progress_marks[item_id] = bucket
        logger.info(f"Task {item_id} progress: {round(progress, 2)}%")

    # -------------------------------------------------------------------------
    # Deferred work
    # -------------------------------------------------------------------------

    async def _embed_later(self, item_id: str) -> None:
        await asyncio.sleep(self.embed_delay)
        try:
            await self.embedder.embed_metadata(item_id)
        except ControlPlaneError as e:
            logger.error(f"Failed to embed metadata for {item_id}: {e}")
        except Exception as e:
            logger.error(f"Unexpected error embedding metadata for {item_id}: {e}", exc_info=True)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro, name="embed_metadata")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def _get(payload: Any, key: str) -> Any:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise MalformedPayload(f"expected an object, got {type(payload).__name__}")
    return payload.get(key)

"""
Test Configuration
==================

Pytest fixtures and fakes for the encoding companion.
"""

import asyncio
from typing import Callable, Dict, List, Optional, Union

import pytest

from abs_companion.api.client import ControlPlaneError
from abs_companion.models.api import Library
from abs_companion.models.media import MediaDescriptor


class FakeBackend:
    """In-memory stand-in for ControlPlaneClient."""

    def __init__(
        self,
        descriptors: Optional[Dict[str, Union[MediaDescriptor, None, Exception]]] = None,
        active_jobs: Optional[int] = None,
    ) -> None:
        self.descriptors = descriptors or {}
        self.default_descriptor = MediaDescriptor(codec="mp3", bit_rate=128000, channels=2)
        # None makes count_active_jobs fail, keeping the local count
        self.active_jobs = active_jobs
        self.start_error: Optional[Exception] = None
        self.embed_error: Optional[Exception] = None

        self.libraries: List[Library] = []
        self.library_items: Dict[str, Union[List[str], Exception]] = {}

        self.descriptor_calls: List[str] = []
        self.started: List[tuple] = []
        self.embedded: List[str] = []
        self.embed_calls: List[str] = []
        self.library_calls: List[str] = []
        self.list_libraries_calls = 0

    async def get_media_descriptor(self, item_id: str) -> Optional[MediaDescriptor]:
        self.descriptor_calls.append(item_id)
        await asyncio.sleep(0)
        value = self.descriptors.get(item_id, self.default_descriptor)
        if isinstance(value, Exception):
            raise value
        return value

    async def start_encoding(self, item_id: str, codec: str, bitrate: str, channels: str) -> None:
        await asyncio.sleep(0)
        if self.start_error is not None:
            raise self.start_error
        self.started.append((item_id, codec, bitrate, channels))

    async def count_active_jobs(self) -> int:
        if self.active_jobs is None:
            raise ControlPlaneError(503, "tasks unavailable")
        return self.active_jobs

    async def embed_metadata(self, item_id: str) -> None:
        self.embed_calls.append(item_id)
        if self.embed_error is not None:
            raise self.embed_error
        self.embedded.append(item_id)

    async def list_libraries(self) -> List[Library]:
        self.list_libraries_calls += 1
        return self.libraries

    async def list_library_items(self, library_id: str) -> List[str]:
        self.library_calls.append(library_id)
        value = self.library_items.get(library_id, [])
        if isinstance(value, Exception):
            raise value
        return value


class FakeWebSocket:
    """Scriptable websocket: feed() inbound frames, drop() to end the stream."""

    def __init__(self) -> None:
        self.sent: List[str] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    def feed(self, message: str) -> None:
        self._incoming.put_nowait(message)

    def drop(self) -> None:
        self._incoming.put_nowait(None)

    async def send(self, text: str) -> None:
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message


class FakeConnector:
    """Replacement for websockets.connect that hands out FakeWebSockets."""

    def __init__(self) -> None:
        self.sockets: List[FakeWebSocket] = []
        self.urls: List[str] = []
        self.fail = False

    @property
    def calls(self) -> int:
        return len(self.urls)

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]

    async def __call__(self, url: str, **kwargs) -> FakeWebSocket:
        self.urls.append(url)
        if self.fail:
            raise OSError("connection refused")
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds (fails the test after a timeout)."""
    return _wait_until


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def sample_matrix():
    """Conversion matrix from the reference deployment."""
    return (
        "0|1|48000|1|1=opus|24000|1,"
        "0|1|48000|2|2=opus|24000|2,"
        "0|48000|72000|1|1=opus|48000|1,"
        "0|48000|72000|2|2=opus|48000|2,"
        "0|72000|256000|1|1=opus|64000|1,"
        "0|72000|256000|2|2=opus|64000|2,"
        "0|0|0|0|0=opus|64000|2"
    )

"""
Dispatch Queue Tests
====================

Tests for bounded dispatch, skip handling and running-count accounting.
"""

import asyncio
from unittest import mock

import pytest

from abs_companion.api.client import ControlPlaneError
from abs_companion.dispatch.queue import DispatchQueue
from abs_companion.models.media import MediaDescriptor
from abs_companion.rules.engine import parse_rule_table


def make_queue(backend, matrix="copy|0|0", **kwargs) -> DispatchQueue:
    return DispatchQueue(backend=backend, rules=parse_rule_table(matrix), **kwargs)


class TestInsertion:
    """Queue insertion and dedup."""

    def test_event_insertions_not_deduplicated(self, backend):
        queue = make_queue(backend)
        queue.enqueue("a")
        queue.enqueue("a")
        assert queue.size == 2

    def test_bulk_insertions_deduplicated(self, backend):
        queue = make_queue(backend)
        queue.enqueue("a")
        added = queue.enqueue_many(["a", "b", "b", "", "c"])
        assert added == 2
        assert list(queue.state.queue) == ["a", "b", "c"]

    def test_limit_must_be_positive(self, backend):
        with pytest.raises(ValueError):
            make_queue(backend, concurrency_limit=0)


class TestDispatch:
    """Single dispatch attempts."""

    @pytest.mark.asyncio
    async def test_dispatches_head_with_matched_action(self, backend):
        backend.descriptors["a"] = MediaDescriptor("MP3", 32000, 1)
        queue = make_queue(backend, "0|1|48000|1|1=opus|24000|1,0|0|0|0|0=opus|64000|2")
        queue.enqueue_many(["a", "b"])

        await queue.try_dispatch()

        assert backend.started == [("a", "opus", "24000", "1")]
        assert queue.running_count == 1
        assert list(queue.state.queue) == ["b"]

    @pytest.mark.asyncio
    async def test_copy_action_uses_source_parameters(self, backend):
        backend.descriptors["a"] = MediaDescriptor("aac", 96000, 2)
        queue = make_queue(backend)
        queue.enqueue("a")

        await queue.try_dispatch()

        assert backend.started == [("a", "aac", "96000", "2")]

    @pytest.mark.asyncio
    async def test_running_count_resynced_after_start(self, backend):
        backend.active_jobs = 3
        queue = make_queue(backend, concurrency_limit=5)
        queue.enqueue("a")

        await queue.try_dispatch()

        assert queue.running_count == 3

    @pytest.mark.asyncio
    async def test_resync_failure_keeps_local_count(self, backend):
        queue = make_queue(backend, concurrency_limit=5)
        queue.enqueue("a")

        await queue.try_dispatch()

        assert queue.running_count == 1

    @pytest.mark.asyncio
    async def test_full_queue_is_noop(self, backend):
        queue = make_queue(backend, concurrency_limit=1)
        queue.state.running_count = 1
        queue.enqueue("a")

        await queue.try_dispatch()

        assert backend.descriptor_calls == []
        assert queue.size == 1


class TestSkips:
    """Skipped entries release their slot and move on."""

    @pytest.mark.asyncio
    async def test_excluded_codec_skips_without_rule_lookup(self, backend, monkeypatch):
        backend.descriptors["a"] = MediaDescriptor("OPUS", 24000, 1)
        spy = mock.Mock(side_effect=AssertionError("rule engine must not be called"))
        monkeypatch.setattr("abs_companion.dispatch.queue.match", spy)
        queue = make_queue(backend, excluded_codecs=["opus"])
        queue.enqueue("a")

        await queue.try_dispatch()

        spy.assert_not_called()
        assert backend.started == []
        assert queue.running_count == 0
        assert queue.skipped_count == 1

    @pytest.mark.asyncio
    async def test_all_excluded_queue_drains_without_completions(self, backend):
        for item in "abcd":
            backend.descriptors[item] = MediaDescriptor("opus", 64000, 2)
        queue = make_queue(backend, concurrency_limit=1)
        queue.enqueue_many(list("abcd"))

        await queue.try_dispatch()

        assert queue.size == 0
        assert queue.running_count == 0
        assert backend.started == []

    @pytest.mark.asyncio
    async def test_missing_audio_and_no_match_skip_to_next(self, backend):
        backend.descriptors["a"] = None
        backend.descriptors["b"] = MediaDescriptor("flac", 900000, 2)
        backend.descriptors["c"] = MediaDescriptor("mp3", 128000, 2)
        queue = make_queue(backend, "mp3|0|0|0|0=opus|64000|2")
        queue.enqueue_many(["a", "b", "c"])

        await queue.try_dispatch()

        assert backend.started == [("c", "opus", "64000", "2")]
        assert queue.running_count == 1
        assert queue.skipped_count == 2

    @pytest.mark.asyncio
    async def test_control_plane_failure_discards_entry(self, backend):
        backend.descriptors["a"] = ControlPlaneError(500, "boom")
        queue = make_queue(backend)
        queue.enqueue_many(["a", "b"])

        await queue.try_dispatch()

        assert [s[0] for s in backend.started] == ["b"]
        assert queue.failed_count == 1
        assert queue.running_count == 1
        assert queue.size == 0

    @pytest.mark.asyncio
    async def test_encode_request_failure_releases_slot(self, backend):
        backend.start_error = ControlPlaneError(400, "bad request")
        queue = make_queue(backend)
        queue.enqueue("a")

        await queue.try_dispatch()

        assert queue.running_count == 0
        assert queue.size == 0


class TestConcurrency:
    """Concurrency ceiling and backfill."""

    @pytest.mark.asyncio
    async def test_running_count_never_exceeds_limit(self, backend):
        queue = make_queue(backend, concurrency_limit=2)
        queue.enqueue_many([f"item{i}" for i in range(5)])

        await asyncio.gather(*(queue.try_dispatch() for _ in range(5)))

        assert queue.running_count == 2
        assert len(backend.started) == 2
        assert queue.size == 3

    @pytest.mark.asyncio
    async def test_sequential_attempts_respect_limit(self, backend):
        queue = make_queue(backend, concurrency_limit=2)
        queue.enqueue_many([f"item{i}" for i in range(5)])

        for _ in range(5):
            await queue.try_dispatch()
            assert queue.running_count <= 2

        assert len(backend.started) == 2

    @pytest.mark.asyncio
    async def test_fill_uses_free_slots(self, backend, wait_until):
        queue = make_queue(backend, concurrency_limit=3)
        queue.state.running_count = 1
        queue.enqueue_many([f"item{i}" for i in range(5)])

        queue.fill()
        await wait_until(lambda: len(backend.started) == 2)
        await asyncio.sleep(0.01)

        assert len(backend.started) == 2
        assert queue.running_count == 3

    @pytest.mark.asyncio
    async def test_complete_clamps_at_zero(self, backend):
        queue = make_queue(backend)
        queue.complete()
        assert queue.running_count == 0

    @pytest.mark.asyncio
    async def test_schedule_dispatch_runs_after_delay(self, backend, wait_until):
        queue = make_queue(backend)
        queue.enqueue("a")

        queue.schedule_dispatch(0.01)
        assert backend.started == []

        await wait_until(lambda: len(backend.started) == 1)


class TestDrainThenExit:
    """Drain-then-exit triggers shutdown once the queue is empty."""

    @pytest.mark.asyncio
    async def test_empty_queue_triggers_drained(self, backend):
        on_drained = mock.Mock()
        queue = make_queue(backend, drain_then_exit=True, on_drained=on_drained)

        await queue.try_dispatch()

        on_drained.assert_called_once()

    @pytest.mark.asyncio
    async def test_drained_after_skipping_last_entry(self, backend):
        backend.descriptors["a"] = MediaDescriptor("opus", 24000, 1)
        on_drained = mock.Mock()
        queue = make_queue(backend, drain_then_exit=True, on_drained=on_drained)
        queue.enqueue("a")

        await queue.try_dispatch()

        on_drained.assert_called_once()

    @pytest.mark.asyncio
    async def test_disabled_by_default(self, backend):
        on_drained = mock.Mock()
        queue = make_queue(backend, on_drained=on_drained)

        await queue.try_dispatch()

        on_drained.assert_not_called()


class TestResync:
    """Authoritative running-count resync."""

    @pytest.mark.asyncio
    async def test_resync_replaces_count(self, backend):
        backend.active_jobs = 4
        queue = make_queue(backend, concurrency_limit=2)

        assert await queue.resync() is True
        assert queue.running_count == 4

    @pytest.mark.asyncio
    async def test_resync_failure_keeps_count(self, backend):
        queue = make_queue(backend)
        queue.state.running_count = 1

        assert await queue.resync() is False
        assert queue.running_count == 1

    @pytest.mark.asyncio
    async def test_periodic_resync_unblocks_stalled_queue(self, backend, wait_until):
        backend.active_jobs = 0
        queue = make_queue(backend, concurrency_limit=1, resync_interval=0.01)
        queue.state.running_count = 1  # missed completion event
        queue.enqueue("a")

        queue.start()
        try:
            await wait_until(lambda: len(backend.started) == 1)
        finally:
            await queue.close()

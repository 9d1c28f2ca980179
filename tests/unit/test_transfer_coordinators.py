"""Tests for the async (anyio) and blocking (thread pool) transfer coordinators."""

import threading
import time

import anyio
import pytest

from blobwire._cancel import CancellationToken, async_sleep, blocking_sleep
from blobwire._http import iter_coroutine
from blobwire._transfer import (
    AsyncTransferCoordinator,
    BlockingTransferCoordinator,
    ChunkResult,
    TransferOptions,
    _TransferCoordinator,
    plan_transfer,
)
from blobwire.errors import (
    OperationCancelledError,
    ServiceRequestError,
    TransferError,
    error_for_status,
)

DATA = bytes(range(256)) * 4


class _Tracker:
    """Counts chunks running at the same time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def enter(self) -> None:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)

    def leave(self) -> None:
        with self._lock:
            self.active -= 1


class TestAsyncTransferCoordinator:
    @pytest.mark.asyncio
    async def test_upload_commits_block_ids_in_sequence_order(self):
        plan = plan_transfer(10, 2)
        committed = []

        async def stage(chunk, token):
            # Later chunks finish first.
            await anyio.sleep(0.001 * (len(plan) - chunk.sequence))
            return ChunkResult(chunk.sequence, block_id=f"id-{chunk.sequence}")

        async def commit(block_ids):
            committed.append(block_ids)
            return "done"

        coordinator = AsyncTransferCoordinator(TransferOptions(max_concurrency=5))
        result = await coordinator.upload(plan, stage, commit)

        assert result == "done"
        assert committed == [[f"id-{n}" for n in range(5)]]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        plan = plan_transfer(20, 1)
        tracker = _Tracker()

        async def stage(chunk, token):
            tracker.enter()
            await anyio.sleep(0.002)
            tracker.leave()
            return ChunkResult(chunk.sequence, block_id=str(chunk.sequence))

        async def commit(block_ids):
            return block_ids

        await AsyncTransferCoordinator(TransferOptions(max_concurrency=3)).upload(
            plan, stage, commit
        )

        assert 1 <= tracker.peak <= 3

    @pytest.mark.asyncio
    async def test_failed_chunk_skips_commit_and_raises_transfer_error(self):
        plan = plan_transfer(8, 2)
        cause = ServiceRequestError("connection reset")
        committed = []

        async def stage(chunk, token):
            if chunk.sequence == 1:
                raise cause
            await anyio.sleep(0.01)
            return ChunkResult(chunk.sequence, block_id=str(chunk.sequence))

        async def commit(block_ids):
            committed.append(block_ids)

        with pytest.raises(TransferError) as exc_info:
            await AsyncTransferCoordinator(TransferOptions(max_concurrency=2)).upload(
                plan, stage, commit
            )

        assert exc_info.value.failed_chunk == 1
        assert exc_info.value.__cause__ is cause
        assert committed == []

    @pytest.mark.asyncio
    async def test_chunk_result_marked_failed_is_a_failure(self):
        plan = plan_transfer(4, 2)
        cause = ServiceRequestError("bad chunk")

        async def stage(chunk, token):
            return ChunkResult(chunk.sequence, ok=False, error=cause)

        async def commit(block_ids):
            raise AssertionError("must not commit")

        with pytest.raises(TransferError) as exc_info:
            await AsyncTransferCoordinator(TransferOptions(max_concurrency=1)).upload(
                plan, stage, commit
            )

        assert exc_info.value.failed_chunk == 0

    @pytest.mark.asyncio
    async def test_parent_cancellation_raises_operation_cancelled(self):
        parent = CancellationToken()
        plan = plan_transfer(10, 1)
        started = []

        async def stage(chunk, token):
            started.append(chunk.sequence)
            if chunk.sequence == 0:
                parent.cancel("caller gave up")
            await anyio.sleep(0.01)
            return ChunkResult(chunk.sequence, block_id=str(chunk.sequence))

        async def commit(block_ids):
            raise AssertionError("must not commit")

        coordinator = AsyncTransferCoordinator(
            TransferOptions(max_concurrency=1), cancellation=parent
        )
        with pytest.raises(OperationCancelledError):
            await coordinator.upload(plan, stage, commit)

        assert started == [0]

    @pytest.mark.asyncio
    async def test_failed_chunk_interrupts_siblings_in_flight(self):
        plan = plan_transfer(10, 1)
        started = []
        finished = []

        async def stage(chunk, token):
            started.append(chunk.sequence)
            if chunk.sequence == 0:
                await anyio.sleep(0.01)
                raise error_for_status(400, "bad block")
            # Siblings sit in a retry wait that only cancellation ends early.
            await async_sleep(30, token)
            finished.append(chunk.sequence)
            return ChunkResult(chunk.sequence, block_id=str(chunk.sequence))

        async def commit(block_ids):
            raise AssertionError("must not commit")

        coordinator = AsyncTransferCoordinator(TransferOptions(max_concurrency=3))
        with anyio.fail_after(5):
            with pytest.raises(TransferError) as exc_info:
                await coordinator.upload(plan, stage, commit)

        assert exc_info.value.failed_chunk == 0
        assert exc_info.value.__cause__.status_code == 400
        assert sorted(started) == [0, 1, 2]
        assert finished == []

    @pytest.mark.asyncio
    async def test_parent_cancellation_interrupts_chunks_in_flight(self):
        parent = CancellationToken()
        plan = plan_transfer(10, 1)
        started = []
        finished = []

        async def fetch(chunk, token):
            started.append(chunk.sequence)
            if chunk.sequence == 0:
                await anyio.sleep(0.01)
                parent.cancel("caller gave up")
            await anyio.sleep(30)
            finished.append(chunk.sequence)
            return ChunkResult(chunk.sequence, data=b"x")

        coordinator = AsyncTransferCoordinator(
            TransferOptions(max_concurrency=3), cancellation=parent
        )
        with anyio.fail_after(5):
            with pytest.raises(OperationCancelledError):
                await coordinator.download(plan, fetch, lambda chunk, data: None)

        assert sorted(started) == [0, 1, 2]
        assert finished == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_concurrency", [1, 5, 20])
    async def test_download_output_does_not_depend_on_concurrency(self, max_concurrency):
        plan = plan_transfer(len(DATA), 50)
        buffer = bytearray(len(DATA))

        async def fetch(chunk, token):
            # Later chunks finish first.
            await anyio.sleep(0.0005 * (len(plan) - chunk.sequence))
            return ChunkResult(chunk.sequence, data=DATA[chunk.offset : chunk.end])

        def write(chunk, data):
            buffer[chunk.offset : chunk.end] = data

        coordinator = AsyncTransferCoordinator(TransferOptions(max_concurrency=max_concurrency))
        transferred = await coordinator.download(plan, fetch, write)

        assert transferred == len(DATA)
        assert bytes(buffer) == DATA

    @pytest.mark.asyncio
    async def test_download_writes_each_chunk_at_its_offset_and_reports_progress(self):
        plan = plan_transfer(len(DATA), 100)
        buffer = bytearray(len(DATA))
        events = []

        async def fetch(chunk, token):
            return ChunkResult(chunk.sequence, data=DATA[chunk.offset : chunk.end])

        def write(chunk, data):
            buffer[chunk.offset : chunk.offset + len(data)] = data

        async def on_progress(event):
            events.append(event)

        coordinator = AsyncTransferCoordinator(TransferOptions(max_concurrency=4), progress=on_progress)
        transferred = await coordinator.download(plan, fetch, write)

        assert bytes(buffer) == DATA
        assert transferred == len(DATA)
        assert len(events) == len(plan)
        assert events[-1].transferred == len(DATA)
        assert events[-1].percentage == 100.0

    @pytest.mark.asyncio
    async def test_download_rejects_short_chunk(self):
        plan = plan_transfer(10, 5)

        async def fetch(chunk, token):
            return ChunkResult(chunk.sequence, data=b"xy")

        with pytest.raises(TransferError):
            await AsyncTransferCoordinator().download(plan, fetch, lambda chunk, data: None)


class TestBlockingTransferCoordinator:
    def test_upload_commits_in_sequence_order(self):
        plan = plan_transfer(12, 3)

        async def stage(chunk, token):
            time.sleep(0.001 * (len(plan) - chunk.sequence))
            return ChunkResult(chunk.sequence, block_id=f"b{chunk.sequence}")

        async def commit(block_ids):
            return block_ids

        coordinator = BlockingTransferCoordinator(TransferOptions(max_concurrency=4))
        result = iter_coroutine(coordinator.upload(plan, stage, commit))

        assert result == ["b0", "b1", "b2", "b3"]

    def test_concurrency_is_bounded(self):
        plan = plan_transfer(12, 1)
        tracker = _Tracker()

        async def stage(chunk, token):
            tracker.enter()
            time.sleep(0.005)
            tracker.leave()
            return ChunkResult(chunk.sequence, block_id=str(chunk.sequence))

        async def commit(block_ids):
            return None

        iter_coroutine(
            BlockingTransferCoordinator(TransferOptions(max_concurrency=2)).upload(
                plan, stage, commit
            )
        )

        assert 1 <= tracker.peak <= 2

    def test_failure_stops_dispatch_and_raises(self):
        plan = plan_transfer(20, 1)
        cause = ServiceRequestError("boom")
        seen = []
        lock = threading.Lock()

        async def stage(chunk, token):
            with lock:
                seen.append(chunk.sequence)
            if chunk.sequence == 0:
                raise cause
            time.sleep(0.005)
            return ChunkResult(chunk.sequence, block_id=str(chunk.sequence))

        async def commit(block_ids):
            raise AssertionError("must not commit")

        with pytest.raises(TransferError) as exc_info:
            iter_coroutine(
                BlockingTransferCoordinator(TransferOptions(max_concurrency=2)).upload(
                    plan, stage, commit
                )
            )

        assert exc_info.value.failed_chunk == 0
        assert exc_info.value.__cause__ is cause
        assert len(seen) < len(plan)

    def test_cancelled_parent_dispatches_nothing(self):
        parent = CancellationToken()
        parent.cancel()
        plan = plan_transfer(4, 1)

        async def fetch(chunk, token):
            raise AssertionError("must not run")

        coordinator = BlockingTransferCoordinator(cancellation=parent)
        with pytest.raises(OperationCancelledError):
            iter_coroutine(coordinator.download(plan, fetch, lambda chunk, data: None))

    def test_writes_happen_on_the_calling_thread(self):
        plan = plan_transfer(len(DATA), 64)
        caller = threading.get_ident()
        writer_threads = set()
        buffer = bytearray(len(DATA))

        async def fetch(chunk, token):
            return ChunkResult(chunk.sequence, data=DATA[chunk.offset : chunk.end])

        def write(chunk, data):
            writer_threads.add(threading.get_ident())
            buffer[chunk.offset : chunk.end] = data

        transferred = iter_coroutine(
            BlockingTransferCoordinator(TransferOptions(max_concurrency=4)).download(
                plan, fetch, write
            )
        )

        assert transferred == len(DATA)
        assert bytes(buffer) == DATA
        assert writer_threads == {caller}

    def test_progress_callback_receives_running_total(self):
        plan = plan_transfer(10, 4)
        events = []

        async def fetch(chunk, token):
            return ChunkResult(chunk.sequence, data=b"x" * chunk.length)

        coordinator = BlockingTransferCoordinator(
            TransferOptions(max_concurrency=1), progress=events.append
        )
        iter_coroutine(coordinator.download(plan, fetch, lambda chunk, data: None))

        assert [e.transferred for e in events] == [4, 8, 10]
        assert events[-1].total == 10

    @pytest.mark.parametrize("max_concurrency", [1, 5, 20])
    def test_download_output_does_not_depend_on_concurrency(self, max_concurrency):
        plan = plan_transfer(len(DATA), 50)
        buffer = bytearray(len(DATA))

        async def fetch(chunk, token):
            time.sleep(0.0005 * (len(plan) - chunk.sequence))
            return ChunkResult(chunk.sequence, data=DATA[chunk.offset : chunk.end])

        def write(chunk, data):
            buffer[chunk.offset : chunk.end] = data

        coordinator = BlockingTransferCoordinator(TransferOptions(max_concurrency=max_concurrency))
        transferred = iter_coroutine(coordinator.download(plan, fetch, write))

        assert transferred == len(DATA)
        assert bytes(buffer) == DATA

    def test_failed_chunk_wakes_siblings_waiting_to_retry(self):
        plan = plan_transfer(10, 1)
        started = []
        finished = []
        lock = threading.Lock()

        async def stage(chunk, token):
            with lock:
                started.append(chunk.sequence)
            if chunk.sequence == 0:
                time.sleep(0.05)
                raise error_for_status(400, "bad block")
            blocking_sleep(5, token)
            with lock:
                finished.append(chunk.sequence)
            return ChunkResult(chunk.sequence, block_id=str(chunk.sequence))

        async def commit(block_ids):
            raise AssertionError("must not commit")

        coordinator = BlockingTransferCoordinator(TransferOptions(max_concurrency=3))
        began = time.monotonic()
        with pytest.raises(TransferError) as exc_info:
            iter_coroutine(coordinator.upload(plan, stage, commit))
        elapsed = time.monotonic() - began

        assert elapsed < 2
        assert exc_info.value.failed_chunk == 0
        assert exc_info.value.__cause__.status_code == 400
        assert sorted(started) == [0, 1, 2]
        assert finished == []

    def test_parent_cancellation_wakes_chunks_in_flight(self):
        parent = CancellationToken()
        plan = plan_transfer(10, 1)
        started = []
        lock = threading.Lock()

        async def fetch(chunk, token):
            with lock:
                started.append(chunk.sequence)
            if chunk.sequence == 0:
                time.sleep(0.05)
                parent.cancel("caller gave up")
            blocking_sleep(5, token)
            return ChunkResult(chunk.sequence, data=b"x")

        coordinator = BlockingTransferCoordinator(
            TransferOptions(max_concurrency=3), cancellation=parent
        )
        began = time.monotonic()
        with pytest.raises(OperationCancelledError):
            iter_coroutine(coordinator.download(plan, fetch, lambda chunk, data: None))

        assert time.monotonic() - began < 2
        assert sorted(started) == [0, 1, 2]


def test_coordinator_base_cannot_be_instantiated():
    with pytest.raises(TypeError):
        _TransferCoordinator()

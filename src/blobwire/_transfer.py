"""Chunked parallel transfers and the resumable single-stream download."""

from __future__ import annotations

import abc
import base64
import inspect
import logging
import math
from collections.abc import AsyncIterator, Awaitable, Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, cast

import anyio

from ._cancel import CancellationToken
from ._http.iter_coroutine import iter_coroutine
from .errors import (
    ConfigurationError,
    OperationCancelledError,
    ServiceRequestError,
    StorageError,
    StreamTruncatedError,
    TransferError,
)
from .types import TransferProgressCallback, TransferProgressEvent

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MiB = 1024 * 1024
DEFAULT_MAX_CONCURRENCY = 5
DEFAULT_BLOCK_SIZE = 4 * MiB
DEFAULT_DOWNLOAD_CHUNK_SIZE = 4 * MiB
DEFAULT_MAX_SINGLE_PUT_SIZE = 256 * MiB
DEFAULT_MAX_STREAM_RESTARTS = 5
MAX_BLOCKS = 50_000
MAX_BLOCK_SIZE = 4000 * MiB
MAX_SINGLE_PUT_SIZE = 5000 * MiB

_log = logging.getLogger("blobwire.transfer")

# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ChunkDescriptor:
    offset: int
    length: int
    sequence: int

    @property
    def end(self) -> int:
        """Exclusive end offset."""
        return self.offset + self.length


@dataclass(slots=True)
class ChunkResult:
    sequence: int
    ok: bool = True
    data: bytes | None = None
    block_id: str | None = None
    error: StorageError | None = None


@dataclass(frozen=True, slots=True)
class TransferPlan:
    """Chunks covering ``[start, start + total_size)`` without gaps or overlaps."""

    total_size: int
    chunk_size: int
    chunks: tuple[ChunkDescriptor, ...]
    start: int = 0

    def __len__(self) -> int:
        return len(self.chunks)


def plan_transfer(total_size: int, chunk_size: int, *, offset: int = 0) -> TransferPlan:
    if total_size < 0:
        raise ConfigurationError("total_size must not be negative")
    if chunk_size <= 0:
        raise ConfigurationError("chunk_size must be positive")
    if offset < 0:
        raise ConfigurationError("offset must not be negative")
    if total_size == 0:
        return TransferPlan(0, chunk_size, (ChunkDescriptor(offset, 0, 0),), offset)
    count = math.ceil(total_size / chunk_size)
    chunks = tuple(
        ChunkDescriptor(
            offset=offset + i * chunk_size,
            length=min(chunk_size, total_size - i * chunk_size),
            sequence=i,
        )
        for i in range(count)
    )
    return TransferPlan(total_size, chunk_size, chunks, offset)


def default_upload_chunk_size(total_size: int) -> int:
    return max(DEFAULT_BLOCK_SIZE, math.ceil(total_size / MAX_BLOCKS))


def effective_concurrency(max_concurrency: int | None, chunk_count: int) -> int:
    return max(1, min(max_concurrency or DEFAULT_MAX_CONCURRENCY, chunk_count))


def make_block_id(prefix: str, sequence: int) -> str:
    """Block ids of one blob must all have the same length."""
    return base64.b64encode(f"{prefix}-{sequence:06d}".encode()).decode()


@dataclass(frozen=True)
class TransferOptions:
    chunk_size: int | None = None
    max_concurrency: int | None = DEFAULT_MAX_CONCURRENCY
    max_single_put_size: int = DEFAULT_MAX_SINGLE_PUT_SIZE
    max_stream_restarts: int = DEFAULT_MAX_STREAM_RESTARTS

    def __post_init__(self) -> None:
        if self.chunk_size is not None and not 0 < self.chunk_size <= MAX_BLOCK_SIZE:
            raise ConfigurationError(f"chunk_size must be between 1 and {MAX_BLOCK_SIZE} bytes")
        if self.max_concurrency is not None and self.max_concurrency < 0:
            raise ConfigurationError("max_concurrency must not be negative")
        if not 0 < self.max_single_put_size <= MAX_SINGLE_PUT_SIZE:
            raise ConfigurationError(
                f"max_single_put_size must be between 1 and {MAX_SINGLE_PUT_SIZE} bytes"
            )
        if self.max_stream_restarts < 0:
            raise ConfigurationError("max_stream_restarts must not be negative")

    def upload_chunk_size(self, total_size: int) -> int:
        if self.chunk_size is None:
            return default_upload_chunk_size(total_size)
        if math.ceil(total_size / self.chunk_size) > MAX_BLOCKS:
            raise ConfigurationError(
                f"chunk_size {self.chunk_size} would need more than {MAX_BLOCKS} blocks"
            )
        return self.chunk_size

    def download_chunk_size(self) -> int:
        return self.chunk_size or DEFAULT_DOWNLOAD_CHUNK_SIZE


# ---------------------------------------------------------------------------
# Coordinators
# ---------------------------------------------------------------------------

ChunkFn = Callable[[ChunkDescriptor, CancellationToken], Awaitable[ChunkResult]]
CommitFn = Callable[[list[str]], Awaitable[Any]]
WriteFn = Callable[[ChunkDescriptor, bytes], Awaitable[None] | None]
ResultFn = Callable[[ChunkDescriptor, ChunkResult], Awaitable[None]]


async def _await_if_necessary(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await cast(Awaitable[Any], value)
    return value


async def emit_progress(
    callback: TransferProgressCallback | None, transferred: int, total: int
) -> None:
    if callback is None:
        return
    percentage = round(transferred / total * 100, 2) if total else 100.0
    await _await_if_necessary(
        callback(TransferProgressEvent(transferred=transferred, total=total, percentage=percentage))
    )


def _unwrap(result: ChunkResult) -> ChunkResult:
    if not result.ok:
        raise result.error or StorageError(f"chunk {result.sequence} failed")
    return result


@dataclass
class _Outcome:
    """Bookkeeping shared by the chunks of one transfer."""

    token: CancellationToken
    transferred: int = 0
    failed_chunk: int | None = None
    failure: StorageError | None = None

    def record_failure(self, descriptor: ChunkDescriptor, error: StorageError) -> None:
        if self.failure is None:
            self.failed_chunk = descriptor.sequence
            self.failure = error
            self.token.cancel(f"chunk {descriptor.sequence} failed")


class _TransferCoordinator(abc.ABC):
    """Shared upload/download contract; subclasses provide the scheduling loop."""

    def __init__(
        self,
        options: TransferOptions | None = None,
        *,
        cancellation: CancellationToken | None = None,
        progress: TransferProgressCallback | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        operation: str = "transfer",
    ) -> None:
        self.options = options or TransferOptions()
        self._parent = cancellation
        self._progress = progress
        self._log = logger or _log
        self._operation = operation

    def _new_token(self) -> tuple[CancellationToken, Callable[[], None]]:
        if self._parent is None:
            return CancellationToken(), lambda: None
        return self._parent.child()

    async def _emit_progress(self, outcome: _Outcome, plan: TransferPlan) -> None:
        await emit_progress(self._progress, outcome.transferred, plan.total_size)

    @abc.abstractmethod
    async def _run(
        self, plan: TransferPlan, chunk_fn: ChunkFn, on_result: ResultFn, outcome: _Outcome
    ) -> None:
        """Schedule every chunk of ``plan``, recording failures on ``outcome``."""
        ...

    async def _execute(self, plan: TransferPlan, chunk_fn: ChunkFn, on_result: ResultFn) -> _Outcome:
        token, detach = self._new_token()
        outcome = _Outcome(token=token)
        concurrency = effective_concurrency(self.options.max_concurrency, len(plan))
        self._log.debug(
            "%s: %d chunk(s) of %d bytes, concurrency %d",
            self._operation,
            len(plan),
            plan.chunk_size,
            concurrency,
        )
        try:
            await self._run(plan, chunk_fn, on_result, outcome)
        finally:
            detach()

        if self._parent is not None and self._parent.cancelled:
            raise OperationCancelledError(
                self._parent.reason or "The operation was cancelled", operation=self._operation
            ) from outcome.failure
        if outcome.failure is not None:
            self._log.warning(
                "%s: chunk %s failed, transfer aborted: %s",
                self._operation,
                outcome.failed_chunk,
                outcome.failure,
            )
            raise TransferError(
                f"chunk {outcome.failed_chunk} could not be transferred: {outcome.failure}",
                failed_chunk=outcome.failed_chunk,
                operation=self._operation,
            ) from outcome.failure
        return outcome

    async def upload(self, plan: TransferPlan, chunk_fn: ChunkFn, commit_fn: CommitFn) -> Any:
        """Stage every chunk, then commit their block ids in sequence order.

        Commit is skipped when any chunk fails or the transfer is cancelled.
        """

        staged: dict[int, str] = {}

        async def record(descriptor: ChunkDescriptor, result: ChunkResult) -> None:
            if result.block_id is None:
                raise StorageError(f"chunk {descriptor.sequence} returned no block id")
            staged[descriptor.sequence] = result.block_id

        await self._execute(plan, chunk_fn, record)
        block_ids = [staged[chunk.sequence] for chunk in plan.chunks]
        return await _await_if_necessary(commit_fn(block_ids))

    async def download(self, plan: TransferPlan, chunk_fn: ChunkFn, write_fn: WriteFn) -> int:
        """Fetch every chunk and hand its bytes to ``write_fn`` with the chunk's offset."""

        async def write(descriptor: ChunkDescriptor, result: ChunkResult) -> None:
            data = result.data or b""
            if len(data) != descriptor.length:
                raise StorageError(
                    f"chunk {descriptor.sequence} returned {len(data)} bytes, "
                    f"expected {descriptor.length}"
                )
            await _await_if_necessary(write_fn(descriptor, data))

        outcome = await self._execute(plan, chunk_fn, write)
        return outcome.transferred


class AsyncTransferCoordinator(_TransferCoordinator):
    """Runs chunks as anyio tasks, at most ``effective_concurrency`` at a time."""

    async def _run(
        self, plan: TransferPlan, chunk_fn: ChunkFn, on_result: ResultFn, outcome: _Outcome
    ) -> None:
        token = outcome.token
        limit = anyio.Semaphore(effective_concurrency(self.options.max_concurrency, len(plan)))

        async def run_one(descriptor: ChunkDescriptor) -> None:
            try:
                token.raise_if_cancelled(self._operation)
                result = _unwrap(await chunk_fn(descriptor, token))
                await on_result(descriptor, result)
            except OperationCancelledError as exc:
                if outcome.failure is None and not token.cancelled:
                    outcome.record_failure(descriptor, exc)
                return
            except StorageError as exc:
                outcome.record_failure(descriptor, exc)
                return
            finally:
                limit.release()
            outcome.transferred += descriptor.length
            await self._emit_progress(outcome, plan)

        async with anyio.create_task_group() as task_group:
            remove = token.add_callback(task_group.cancel_scope.cancel)
            try:
                for descriptor in plan.chunks:
                    await limit.acquire()
                    if token.cancelled:
                        limit.release()
                        break
                    task_group.start_soon(run_one, descriptor)
            finally:
                remove()


class BlockingTransferCoordinator(_TransferCoordinator):
    """Runs chunks on a thread pool.

    Chunk coroutines must never suspend (blocking transport and sleep); each
    worker drives one with ``iter_coroutine``. Results are handled on the
    calling thread, so ``write_fn`` and progress callbacks are never concurrent.
    """

    async def _run(
        self, plan: TransferPlan, chunk_fn: ChunkFn, on_result: ResultFn, outcome: _Outcome
    ) -> None:
        token = outcome.token
        concurrency = effective_concurrency(self.options.max_concurrency, len(plan))

        def run_one(descriptor: ChunkDescriptor) -> ChunkResult:
            token.raise_if_cancelled(self._operation)
            return _unwrap(iter_coroutine(chunk_fn(descriptor, token)))  # type: ignore[arg-type]

        pending = iter(plan.chunks)
        inflight: dict[Future[ChunkResult], ChunkDescriptor] = {}
        executor = ThreadPoolExecutor(
            max_workers=concurrency, thread_name_prefix="blobwire-transfer"
        )
        try:
            while True:
                while len(inflight) < concurrency and not token.cancelled:
                    descriptor = next(pending, None)
                    if descriptor is None:
                        break
                    inflight[executor.submit(run_one, descriptor)] = descriptor
                if not inflight:
                    break
                done, _ = wait(inflight, return_when=FIRST_COMPLETED)
                for future in done:
                    descriptor = inflight.pop(future)
                    try:
                        await on_result(descriptor, future.result())
                    except OperationCancelledError as exc:
                        if outcome.failure is None and not token.cancelled:
                            outcome.record_failure(descriptor, exc)
                        continue
                    except StorageError as exc:
                        outcome.record_failure(descriptor, exc)
                        continue
                    outcome.transferred += descriptor.length
                    await self._emit_progress(outcome, plan)
        finally:
            if inflight:
                token.cancel("transfer aborted")
            executor.shutdown(wait=True, cancel_futures=True)


# ---------------------------------------------------------------------------
# Resumable single-stream download
# ---------------------------------------------------------------------------

OpenFn = Callable[[int], Awaitable[AsyncIterator[bytes]]]


class AsyncResumableStream:
    """Body chunks of ``[start, start + length)``, reopening on premature end.

    ``first`` is the already-open body of the initial response. When a body
    ends early, or fails mid-transfer with a transport error, ``open_fn`` is
    called with the absolute offset of the first byte still missing; the bytes
    already yielded are never requested again. After ``max_restarts`` reopens
    the stream raises ``StreamTruncatedError``.
    """

    def __init__(
        self,
        open_fn: OpenFn,
        *,
        start: int,
        length: int,
        first: AsyncIterator[bytes] | None = None,
        max_restarts: int = DEFAULT_MAX_STREAM_RESTARTS,
        cancellation: CancellationToken | None = None,
        operation: str = "download",
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._open_fn = open_fn
        self.start = start
        self.length = length
        self._body = first
        self.max_restarts = max_restarts
        self._cancellation = cancellation
        self._operation = operation
        self._log = logger or _log
        self.received = 0
        self.restarts = 0

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        while self.received < self.length:
            if self._cancellation is not None:
                self._cancellation.raise_if_cancelled(self._operation)
            if self._body is None:
                self._body = await self._open_fn(self.start + self.received)
            body, self._body = self._body, None
            last_error: ServiceRequestError | None = None
            try:
                async for chunk in body:
                    if self._cancellation is not None:
                        self._cancellation.raise_if_cancelled(self._operation)
                    if not chunk:
                        continue
                    chunk = chunk[: self.length - self.received]
                    self.received += len(chunk)
                    yield chunk
                    if self.received >= self.length:
                        break
            except ServiceRequestError as exc:
                last_error = exc
            finally:
                aclose = getattr(body, "aclose", None)
                if aclose is not None:
                    await aclose()

            if self.received >= self.length:
                return
            if self.restarts >= self.max_restarts:
                raise StreamTruncatedError(
                    f"stream ended at byte {self.start + self.received} of "
                    f"{self.start + self.length} after {self.restarts} restarts",
                    received=self.received,
                    expected=self.length,
                    restarts=self.restarts,
                    operation=self._operation,
                ) from last_error
            self.restarts += 1
            self._log.warning(
                "%s: stream ended early at byte %d, resuming (restart %d of %d)",
                self._operation,
                self.start + self.received,
                self.restarts,
                self.max_restarts,
            )


__all__ = [
    "AsyncResumableStream",
    "AsyncTransferCoordinator",
    "BlockingTransferCoordinator",
    "ChunkDescriptor",
    "ChunkResult",
    "TransferOptions",
    "TransferPlan",
    "DEFAULT_BLOCK_SIZE",
    "DEFAULT_DOWNLOAD_CHUNK_SIZE",
    "DEFAULT_MAX_CONCURRENCY",
    "DEFAULT_MAX_SINGLE_PUT_SIZE",
    "DEFAULT_MAX_STREAM_RESTARTS",
    "MAX_BLOCKS",
    "default_upload_chunk_size",
    "effective_concurrency",
    "make_block_id",
    "plan_transfer",
]

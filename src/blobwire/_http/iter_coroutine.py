"""Drive non-suspending coroutines and async iterators from blocking code."""

from __future__ import annotations

import typing
from collections.abc import AsyncIterator, Iterator

_T = typing.TypeVar("_T")


def iter_coroutine(coro: typing.Coroutine[None, None, _T]) -> _T:
    """
    Execute a coroutine that completes in a single iteration.

    The blocking clients share their implementation with the async ones; with a
    blocking transport and a blocking sleep nothing in that shared code ever
    yields to an event loop, so one ``send(None)`` runs it to completion.

    Raises:
        RuntimeError: If the coroutine doesn't complete in one iteration.
    """
    try:
        coro.send(None)
    except StopIteration as ex:
        return ex.value  # type: ignore [no-any-return]
    else:
        raise RuntimeError(f"coroutine {coro!r} did not stop after one iteration!")
    finally:
        coro.close()


def iter_async_iterator(aiterator: AsyncIterator[_T]) -> Iterator[_T]:
    """Yield from an async iterator whose steps never suspend."""
    try:
        while True:
            try:
                item = iter_coroutine(aiterator.__anext__())  # type: ignore[arg-type]
            except StopAsyncIteration:
                return
            yield item
    finally:
        aclose = getattr(aiterator, "aclose", None)
        if aclose is not None:
            iter_coroutine(aclose())


__all__ = ["iter_coroutine", "iter_async_iterator"]

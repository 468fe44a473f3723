"""Async utilities for bridging blocking ETAPI and filesystem calls into the pipelines."""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Coroutine, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task] = set()


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used to wrap blocking ``requests`` calls and file I/O so that every
    store call and filesystem access is an awaited boundary.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        client = EtapiClient(config)
        note = await run_sync(client.get_note, note_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def gather_limited(
    coros: Sequence[Coroutine[Any, Any, T]],
    limit: int,
) -> list[T]:
    """Run coroutines concurrently with at most ``limit`` in flight.

    Results keep input order. Exceptions propagate from the first failure,
    so callers that need per-item isolation catch inside each coroutine.

    Args:
        coros: Sequence of coroutines to run.
        limit: Maximum number of coroutines running at once.

    Returns:
        List of results in the same order as input coroutines.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _bounded(coro: Coroutine[Any, Any, T]) -> T:
        async with semaphore:
            return await coro

    return list(await asyncio.gather(*(_bounded(c) for c in coros)))


def fire_and_forget(
    callback: Callable[..., Any] | None, *args: Any
) -> asyncio.Task | None:
    """Invoke a callback without letting it block or break the caller.

    Plain callables run inline; coroutine results are scheduled as tasks
    on the running loop. Exceptions are logged, never raised.

    Returns:
        The scheduled task for coroutine callbacks, else ``None``.
    """
    if callback is None:
        return None
    try:
        result = callback(*args)
    except Exception:
        logger.exception("Callback %r failed", callback)
        return None
    if not inspect.isawaitable(result):
        return None

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No running event loop for callback %r", callback)
        if inspect.iscoroutine(result):
            result.close()
        return None

    async def _guard(awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception("Async callback %r failed", callback)

    task = loop.create_task(_guard(result))
    # Event loops keep only weak references to tasks
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task

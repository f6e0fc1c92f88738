"""
Bridge between awaitable return values and the synchronous pipeline.

The synchronous pipeline needs the plain result of an ``async`` method to
store it, and must hand a cache hit back in the awaitable shape the caller
expects. AsyncResultUnwrapper does both:

- ``unwrap`` blocks the calling thread until the awaitable completes
- ``completed`` builds an already-completed awaitable around a value

Blocking is deliberate: it keeps the pipeline synchronous per invocation.
There is no timeout, so a hung coroutine hangs the caller.
"""

import asyncio
import atexit
import concurrent.futures
import functools
import inspect
import logging
import os
from collections.abc import Awaitable, Callable, Generator
from threading import Lock
from typing import Any, Generic, TypeVar

from .constants import MAX_THREAD_WORKERS, THREAD_POOL_PREFIX
from .invocation import Invocation

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Global ThreadPoolExecutor for awaitables unwrapped inside a running loop
_thread_pool: concurrent.futures.ThreadPoolExecutor | None = None
_thread_pool_lock = Lock()

# Result type -> factory of completed awaitables; lives for the whole process
_completed_factories: dict[Any, Callable[[Any], "CompletedResult[Any]"]] = {}
_completed_factories_lock = Lock()


def get_thread_pool() -> concurrent.futures.ThreadPoolExecutor:
    """Get or create the global thread pool.

    Creates a ThreadPoolExecutor with configuration based on CPU count
    following Python's default pattern: min(MAX_WORKERS, (os.cpu_count() or 1) + 4).
    """
    global _thread_pool

    if _thread_pool is None:
        with _thread_pool_lock:
            if _thread_pool is None:
                max_workers = min(MAX_THREAD_WORKERS, (os.cpu_count() or 1) + 4)
                _thread_pool = concurrent.futures.ThreadPoolExecutor(
                    max_workers=max_workers, thread_name_prefix=THREAD_POOL_PREFIX
                )
                logger.debug(f"Created ThreadPoolExecutor with {max_workers} workers")

    return _thread_pool


def shutdown_thread_pool() -> None:
    """Shutdown the global thread pool (testing and process exit)."""
    global _thread_pool

    with _thread_pool_lock:
        if _thread_pool is not None:
            logger.debug("Shutting down ThreadPoolExecutor")
            _thread_pool.shutdown(wait=True)
            _thread_pool = None


# Register cleanup for process exit
atexit.register(shutdown_thread_pool)


class CompletedResult(Generic[T]):
    """Awaitable that is already complete.

    Unlike a coroutine it can be awaited any number of times, always
    producing the same value without suspending.
    """

    __slots__ = ("_value", "_result_type")

    def __init__(self, value: T, result_type: Any = Any) -> None:
        self._value = value
        self._result_type = result_type

    @property
    def result_type(self) -> Any:
        return self._result_type

    def result(self) -> T:
        """Return the value without awaiting."""
        return self._value

    def done(self) -> bool:
        return True

    def __await__(self) -> Generator[Any, None, T]:
        return self._value
        yield  # pragma: no cover

    def __repr__(self) -> str:
        return f"CompletedResult({self._value!r})"


def completed_factory(result_type: Any) -> Callable[[Any], CompletedResult[Any]]:
    """Get the factory of completed awaitables for a result type.

    Resolved once per distinct type and reused across calls and threads.

    Args:
        result_type: Type T carried by the awaitable

    Returns:
        Callable building ``CompletedResult[T]`` around a value
    """
    try:
        factory = _completed_factories.get(result_type)
    except TypeError:
        # Unhashable annotations cannot be cached
        return functools.partial(CompletedResult, result_type=result_type)

    if factory is None:
        with _completed_factories_lock:
            factory = _completed_factories.setdefault(
                result_type, functools.partial(CompletedResult, result_type=result_type)
            )
    return factory


def factory_count() -> int:
    """Number of result types with a cached factory."""
    return len(_completed_factories)


async def _await(awaitable: Awaitable[T]) -> T:
    return await awaitable


class AsyncResultUnwrapper:
    """Unwraps awaitable return values for the synchronous pipeline.

    Strategy for blocking on an awaitable:
    1. Already completed (CompletedResult, done future): read the result
    2. No event loop running in this thread: ``asyncio.run()``
    3. Event loop running: drive it on a new loop in the thread pool
    """

    def __init__(self, thread_pool: concurrent.futures.ThreadPoolExecutor | None = None) -> None:
        """Initialize unwrapper.

        Args:
            thread_pool: Optional custom thread pool (uses global if None)
        """
        self._thread_pool = thread_pool

    @property
    def thread_pool(self) -> concurrent.futures.ThreadPoolExecutor:
        """Get the thread pool for this unwrapper."""
        return self._thread_pool or get_thread_pool()

    def unwrap(self, invocation: Invocation) -> Any:
        """Return the plain result of an invocation.

        Synchronous methods get ``return_value`` unchanged. For async methods
        the awaitable is driven to completion; failures propagate unchanged.
        A consumed coroutine is replaced in the slot by a CompletedResult
        so the caller can still await it.

        Args:
            invocation: Invocation after proceed()

        Returns:
            Result value T
        """
        value = invocation.return_value
        if not invocation.method.is_async or not inspect.isawaitable(value):
            return value
        if isinstance(value, CompletedResult):
            return value.result()

        result = self.wait(value)
        invocation.return_value = self.completed(invocation.method.result_type, result)
        return result

    def completed(self, result_type: Any, value: Any) -> CompletedResult[Any]:
        """Build an already-completed awaitable carrying ``value``."""
        return completed_factory(result_type)(value)

    def wait(self, awaitable: Awaitable[T]) -> T:
        """Block until the awaitable completes and return its result."""
        if isinstance(awaitable, CompletedResult):
            return awaitable.result()
        if asyncio.isfuture(awaitable):
            if awaitable.done():
                return awaitable.result()
            # Only its own loop can complete a future, and that loop is blocked by this call
            raise RuntimeError(
                "Cannot block on a pending asyncio future from the synchronous pipeline; "
                "use intercept_async (bridge_async=False) for methods returning futures"
            )

        try:
            # Check if event loop is already running
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No event loop detected, using asyncio.run()")
            return asyncio.run(_await(awaitable))

        logger.debug("Event loop detected, unwrapping awaitable in thread pool")
        future = self.thread_pool.submit(self._run_in_new_loop, awaitable)
        return future.result()

    def _run_in_new_loop(self, awaitable: Awaitable[T]) -> T:
        """Run awaitable on a new event loop in the current (worker) thread."""
        new_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(new_loop)

        try:
            return new_loop.run_until_complete(_await(awaitable))
        finally:
            new_loop.close()
            asyncio.set_event_loop(None)

"""
microsignals.core
-----------------

Reusable runner coroutines that signal handlers are dispatched on.

A runner is a coroutine that loops forever: wait for a ``(handler, args)``
delivery, run it, put itself back into its pool, wait again. Handlers that
finish without suspending therefore cost no new coroutine. A handler that
suspends takes its runner with it and only gives it back once it completes.

With an event loop running, every delivery is driven by an eagerly started
asyncio task, so the handler is the current task from its first line to its
last and runs in its own copy of the context. Without a loop, deliveries are
driven inline and a handler may not suspend.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
import logging
import types
from typing import Any, Callable, Generator, Optional, Set, Tuple

logger = logging.getLogger(__name__)

HandlerFunc = Callable[..., Any]
Delivery = Tuple[HandlerFunc, Tuple[Any, ...]]


class _Parked:
    __slots__ = ()

    def __repr__(self) -> str:
        return "<parked>"


# Yielded by a runner that is waiting for its next delivery.
_PARKED = _Parked()


@types.coroutine
def _park() -> Generator[Any, Delivery, Delivery]:
    delivery = yield _PARKED
    return delivery


class Runner:
    """
    A reusable coroutine context that runs one handler at a time.
    """

    __slots__ = ("_pool", "_coro")

    def __init__(self, pool: RunnerPool) -> None:
        self._pool = pool
        self._coro = self._run()
        # advance to the first park so deliveries can be sent in
        self._coro.send(None)

    async def _run(self) -> None:
        while True:
            handler, args = await _park()
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
            self._pool.put(self)

    def start(self, handler: HandlerFunc, args: Tuple[Any, ...]) -> Any:
        """
        Send a delivery in and run the handler up to its first suspension.

        Returns:
            Any: The parked marker if the handler completed, otherwise
                 whatever the handler yielded when it suspended.
        """
        return self._coro.send((handler, args))

    def deliver(self, handler: HandlerFunc, args: Tuple[Any, ...]) -> None:
        """
        Run `handler(*args)` to completion with no event loop to suspend to.

        Raises:
            RuntimeError: If the handler suspends. Its coroutine is closed.
        """
        if self.start(handler, args) is not _PARKED:
            self.close()
            raise RuntimeError("signal handler suspended with no running event loop")

    def close(self) -> None:
        """Close the underlying coroutine."""
        self._coro.close()


class _Continuation:
    """
    Awaitable that keeps driving a runner whose handler suspended.

    `pending` is whatever the handler yielded when it suspended; it is
    passed on to the task awaiting this, and every value or exception the
    task sends back is forwarded into the runner until the runner parks again.
    """

    __slots__ = ("_runner", "_pending")

    def __init__(self, runner: Runner, pending: Any) -> None:
        self._runner = runner
        self._pending = pending

    def __await__(self):
        coro = self._runner._coro  # pylint: disable=protected-access
        signal = self._pending
        self._pending = None
        while signal is not _PARKED:
            try:
                value = yield signal
            except GeneratorExit:
                coro.close()
                raise
            except BaseException as exc:  # pylint: disable=broad-except
                signal = coro.throw(exc)
            else:
                signal = coro.send(value)


async def _drive(runner: Runner, handler: HandlerFunc, args: Tuple[Any, ...]) -> None:
    signal = runner.start(handler, args)
    if signal is not _PARKED:
        await _Continuation(runner, signal)


class RunnerPool:
    """
    Holds at most one idle runner and tracks handlers that are suspended.

    Not thread-safe: take/put are atomic only under a single cooperative thread.
    """

    def __init__(self) -> None:
        """
        Initialize an empty pool.
        """
        self._idle: Optional[Runner] = None
        self._suspended: Set[asyncio.Task] = set()
        self.created = 0  # runners constructed by this pool

    @property
    def idle(self) -> Optional[Runner]:
        """The runner currently waiting for work, if any."""
        return self._idle

    @property
    def suspended(self) -> int:
        """Number of handlers currently suspended on abandoned runners."""
        return len(self._suspended)

    def take(self) -> Runner:
        """
        Take ownership of the idle runner, creating one if the slot is empty.

        Returns:
            Runner: A runner nobody else references.
        """
        runner = self._idle
        self._idle = None
        if runner is None:
            runner = Runner(self)
            self.created += 1
            logger.debug("created runner #%d", self.created)
        return runner

    def put(self, runner: Runner) -> None:
        """
        Publish `runner` as the idle runner.
        An already idle runner is dropped; it has never run anything observable
        since it was parked.

        Args:
            runner (Runner): The runner that just finished a handler.
        """
        previous = self._idle
        self._idle = runner
        if previous is not None and previous is not runner:
            logger.debug("dropping idle runner replaced by a resumed one")
            previous.close()

    def dispatch(self, handler: HandlerFunc, args: Tuple[Any, ...] = ()) -> None:
        """
        Run `handler(*args)` on a pooled runner.
        Synchronous up to the handler's first suspension. Exceptions raised
        before that point propagate to the caller.

        With a running loop the handler runs as its own eagerly started task:
        `asyncio.current_task()`, `asyncio.timeout()` and context variables seen
        by the handler belong to it, never to the caller of `dispatch`.

        Args:
            handler (HandlerFunc): Sync callable or coroutine function.
            args (tuple, optional): Positional arguments for the handler.

        Returns:
            None

        Raises:
            RuntimeError: If the handler suspends while no event loop is running.
        """
        runner = self.take()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            contextvars.copy_context().run(runner.deliver, handler, args)
            return

        task = asyncio.Task(_drive(runner, handler, args), loop=loop, eager_start=True)
        if task.done():
            # re-raises anything the handler raised before suspending
            task.result()
            return
        self._suspended.add(task)
        task.add_done_callback(self._on_suspended_done)
        logger.debug("handler suspended (%d suspended)", len(self._suspended))

    def _on_suspended_done(self, task: asyncio.Task) -> None:
        self._suspended.discard(task)
        if task.cancelled():
            logger.debug("suspended handler cancelled")
            return
        exc = task.exception()
        if exc is not None:
            task.get_loop().call_exception_handler(
                {
                    "message": "Unhandled exception in suspended signal handler",
                    "exception": exc,
                    "task": task,
                }
            )
        else:
            logger.debug("suspended handler finished, runner returned to pool")


# -------------------- module-level default pool --------------------

_default_pool = RunnerPool()


def get_default_pool() -> RunnerPool:
    """
    Return the pool shared by every emitter created without its own pool.

    Returns:
        RunnerPool: The default pool.
    """
    return _default_pool


def set_default_pool(pool: RunnerPool) -> RunnerPool:
    """
    Replace the shared default pool.

    Args:
        pool (RunnerPool): The new default pool.

    Returns:
        RunnerPool: The previous default pool.
    """
    global _default_pool  # pylint: disable=global-statement
    previous = _default_pool
    _default_pool = pool
    return previous

"""
microsignals.futures
--------------------

One-shot waiting on an emitter, built only from subscribe/unsubscribe.
Both helpers unsubscribe before resolving, so whoever is woken up can
subscribe again without seeing the same emission twice.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Tuple


def from_event(
    emitter: Any,
    predicate: Optional[Callable[..., Any]] = None,
    *,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> asyncio.Future:
    """
    Return a future resolved with the first argument of the first emission
    accepted by `predicate`. Cancelling the future unsubscribes.

    Args:
        emitter: Anything with `subscribe(handler) -> Subscription`.
        predicate (Callable[..., Any], optional): Called with the emitted arguments;
                                                  emissions it rejects are skipped.
                                                  Defaults to None (accept all).
        loop (asyncio.AbstractEventLoop, optional): Loop owning the future.
                                                    Defaults to the running loop.

    Returns:
        asyncio.Future: Resolves to the first emitted argument, or None for
                        an emission without arguments. Rejected with the
                        predicate's exception if it raises.
    """
    if loop is None:
        loop = asyncio.get_running_loop()
    future = loop.create_future()

    def handler(*args: Any) -> None:
        if future.done():
            return
        if predicate is not None:
            try:
                accepted = predicate(*args)
            except Exception as exc:  # pylint: disable=broad-except
                subscription.unsubscribe()
                future.set_exception(exc)
                return
            if not accepted:
                return
        subscription.unsubscribe()
        future.set_result(args[0] if args else None)

    subscription = emitter.subscribe(handler)

    def on_done(fut: asyncio.Future) -> None:
        if fut.cancelled() and not subscription.closed:
            subscription.unsubscribe()

    future.add_done_callback(on_done)
    return future


async def wait_for(emitter: Any) -> Tuple[Any, ...]:
    """
    Suspend until `emitter` emits next and return all emitted arguments.
    """
    waiter = asyncio.get_running_loop().create_future()

    def handler(*args: Any) -> None:
        subscription.unsubscribe()
        if not waiter.done():
            waiter.set_result(args)

    subscription = emitter.subscribe(handler)
    try:
        return await waiter
    finally:
        if not subscription.closed:
            subscription.unsubscribe()

"""
Microsignals
------------

Tiny ordered signals whose handlers may suspend.

Features:

- `Emitter.emit(*args)` is **sync**: handlers run in order, newest subscriber first.
- Handlers may be coroutine functions. Each one runs up to its first `await`
  that suspends, then continues on the running asyncio loop while `emit` moves on.
- Handlers run on pooled runner coroutines: one runner is reused for every handler
  that finishes without suspending.
- Unsubscribing during an emit (including from inside the handler) is safe and O(1)
  for the emit in progress.
- `subscribe_once()`, `wait()`, `once()` and `promisify()` for one-shot use.
- `Emitter.wrap(source)` forwards any object with `subscribe(callback) -> token`.
- MIT licensed. No dependencies.
"""

from .core import RunnerPool, get_default_pool, set_default_pool
from .emitter import (
    DisposerRegistry,
    Emitter,
    ExternalSignal,
    Subscription,
    SubscriptionError,
)
from .futures import from_event, wait_for

__all__ = [
    "Emitter",
    "Subscription",
    "SubscriptionError",
    "ExternalSignal",
    "DisposerRegistry",
    "RunnerPool",
    "get_default_pool",
    "set_default_pool",
    "from_event",
    "wait_for",
]

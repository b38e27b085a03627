"""
Emitter implementation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterator, List, Optional, Protocol, Tuple, runtime_checkable

from .core import HandlerFunc, RunnerPool, get_default_pool
from .futures import from_event, wait_for

logger = logging.getLogger(__name__)


class SubscriptionError(RuntimeError):
    """Raised when a subscription is unsubscribed twice."""


class _Disposable(Protocol):
    def dispose(self) -> None: ...


class DisposerRegistry(Protocol):
    """
    Protocol for objects that collect disposables and dispose them together.
    """

    def register(self, disposable: _Disposable) -> Any: ...


class _Token(Protocol):
    def unsubscribe(self) -> None: ...


@runtime_checkable
class ExternalSignal(Protocol):
    """
    Protocol for signal sources an emitter can wrap.
    """

    def subscribe(self, callback: Callable[..., Any]) -> _Token: ...


class _SubscriberList:
    """
    Singly-linked list of subscriptions, newest first.
    """

    __slots__ = ("head",)

    def __init__(self) -> None:
        self.head: Optional[Subscription] = None

    def prepend(self, node: Subscription) -> None:
        node._next = self.head  # pylint: disable=protected-access
        self.head = node

    def unlink(self, node: Subscription) -> None:
        # node._next is left alone so an emit sitting on node can still move on
        if self.head is node:
            self.head = node._next  # pylint: disable=protected-access
            return
        prev = self.head
        while prev is not None and prev._next is not node:  # pylint: disable=protected-access
            prev = prev._next  # pylint: disable=protected-access
        if prev is not None:
            prev._next = node._next  # pylint: disable=protected-access

    def clear(self) -> None:
        self.head = None

    def nodes(self) -> Iterator[Subscription]:
        node = self.head
        while node is not None:
            if not node.closed:
                yield node
            node = node._next  # pylint: disable=protected-access


class Subscription:
    """
    Handle to one handler registered on an emitter.
    """

    __slots__ = ("_closed", "_handler", "_next", "_list")

    def __init__(self, subscribers: _SubscriberList, handler: HandlerFunc) -> None:
        self._closed = False
        self._handler = handler
        self._next: Optional[Subscription] = None
        self._list = subscribers

    @property
    def closed(self) -> bool:
        """Whether the handler has been unsubscribed."""
        return self._closed

    @property
    def handler(self) -> HandlerFunc:
        """The registered handler."""
        return self._handler

    def unsubscribe(self) -> None:
        """
        Remove the handler from the emitter.
        Emissions already running past this subscription are not affected.

        Raises:
            SubscriptionError: If the subscription is already closed.
        """
        if self._closed:
            raise SubscriptionError("Can't unsubscribe a subscription twice")
        self._closed = True
        self._list.unlink(self)

    disconnect = unsubscribe
    destroy = unsubscribe

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Subscription {self._handler!r} {state}>"


class Emitter:
    """
    Synchronous, ordered signal whose handlers may suspend.
    Not thread-safe.
    """

    __slots__ = ("_subscribers", "_proxy", "_pool")

    def __init__(
        self,
        disposer: Optional[DisposerRegistry] = None,
        *,
        pool: Optional[RunnerPool] = None,
    ) -> None:
        """
        Initialize a new Emitter.

        Args:
            disposer (DisposerRegistry, optional): Registry to add the emitter to.
                                                   Its `register(emitter)` is called once.
            pool (RunnerPool, optional): Pool to dispatch handlers on.
                                         Defaults to None, meaning the default pool.
        """
        self._subscribers = _SubscriberList()
        self._proxy: Optional[_Token] = None
        self._pool = pool
        if disposer is not None:
            disposer.register(self)

    @classmethod
    def wrap(
        cls,
        source: ExternalSignal,
        disposer: Optional[DisposerRegistry] = None,
        *,
        pool: Optional[RunnerPool] = None,
    ) -> Emitter:
        """
        Create an emitter that emits whenever `source` fires.

        Args:
            source (ExternalSignal): Object with `subscribe(callback) -> token`.
            disposer (DisposerRegistry, optional): Registry to add the emitter to.
            pool (RunnerPool, optional): Pool to dispatch handlers on.

        Returns:
            Emitter: The wrapping emitter. Disposing it unsubscribes from `source`.

        Raises:
            TypeError: If `source` is not a signal.
        """
        if (
            isinstance(source, type)
            or not isinstance(source, ExternalSignal)
            or not callable(getattr(source, "subscribe", None))
        ):
            raise TypeError(
                f"Emitter.wrap() expects a signal with subscribe(); got {type(source).__name__}"
            )
        emitter = cls(disposer, pool=pool)
        emitter._proxy = source.subscribe(emitter.emit)  # pylint: disable=protected-access
        logger.debug("wrapped %r", source)
        return emitter

    def _get_pool(self) -> RunnerPool:
        return self._pool or get_default_pool()

    # -------------------- registration API --------------------
    def subscribe(self, handler: HandlerFunc) -> Subscription:
        """
        Register a handler. Handlers subscribed later run earlier.

        Args:
            handler (HandlerFunc): Sync callable or coroutine function called
                                   with the emitted arguments.

        Returns:
            Subscription: Handle used to unsubscribe.
        """
        if not callable(handler):
            raise TypeError("handler must be callable")

        subscription = Subscription(self._subscribers, handler)
        self._subscribers.prepend(subscription)
        return subscription

    connect = subscribe

    def subscribe_once(self, handler: HandlerFunc) -> Subscription:
        """
        Register a handler that unsubscribes itself before its first call.

        Args:
            handler (HandlerFunc): Sync callable or coroutine function.

        Returns:
            Subscription: Handle used to unsubscribe before it fires.
        """
        if not callable(handler):
            raise TypeError("handler must be callable")

        def once_handler(*args: Any) -> Any:
            subscription.unsubscribe()
            return handler(*args)

        subscription = self.subscribe(once_handler)
        return subscription

    def unsubscribe_all(self) -> None:
        """
        Drop every handler.
        Existing Subscription handles keep `closed == False`.
        """
        self._subscribers.clear()

    def list_receivers(self) -> List[HandlerFunc]:
        """Return the handlers that the next emit would call, in call order."""
        return [node.handler for node in self._subscribers.nodes()]

    # -------------------- dispatch --------------------
    def emit(self, *args: Any) -> None:
        """
        Call every handler with `args`, most recently subscribed first.
        Each handler runs up to its first suspension before the next one starts;
        suspended handlers continue on the event loop. With a loop running each
        handler is its own asyncio task, so its timeouts and context changes
        never reach the caller.
        Exceptions raised by handlers before suspending will propagate.

        Args:
            *args: Positional arguments to pass to the handlers.

        Returns:
            None
        """
        pool = self._get_pool()
        node = self._subscribers.head
        while node is not None:
            if not node._closed:  # pylint: disable=protected-access
                pool.dispatch(node._handler, args)  # pylint: disable=protected-access
            node = node._next  # pylint: disable=protected-access

    # -------------------- waiting --------------------
    async def wait(self) -> Tuple[Any, ...]:
        """
        Suspend until the next emit and return its arguments.

        Returns:
            tuple: The emitted positional arguments.
        """
        return await wait_for(self)

    def once(self) -> asyncio.Future:
        """
        Return a future resolved with the first argument of the next emit.
        Must be called with an event loop running.
        """
        return from_event(self)

    def promisify(self, predicate: Optional[Callable[..., Any]] = None) -> asyncio.Future:
        """
        Return a future resolved with the first argument of the first emit
        whose arguments satisfy `predicate` (any emit when omitted).

        Args:
            predicate (Callable[..., Any], optional): Called with the emitted arguments.

        Returns:
            asyncio.Future: The pending future.
        """
        return from_event(self, predicate)

    # -------------------- disposal --------------------
    def dispose(self) -> None:
        """
        Stop forwarding from a wrapped source, if any, and drop every handler.
        Calling it again is harmless.
        """
        proxy, self._proxy = self._proxy, None
        if proxy is not None:
            proxy.unsubscribe()
            logger.debug("emitter disposed, source unsubscribed")
        self.unsubscribe_all()

    destroy = dispose

    def __enter__(self) -> Emitter:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.dispose()

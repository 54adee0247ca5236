"""
Callback sets with deferred delivery.

Callbacks never run inside the frame that produced the event: each one is
scheduled with ``loop.call_soon`` so a callback that subscribes or
unsubscribes cannot disturb the dispatch that triggered it.
"""
import asyncio
from typing import Any, Awaitable, Callable, Iterator, List, Optional, Set, Union

from invest_streaming.utils.logging import get_logger

logger = get_logger("events")

Callback = Callable[..., Union[None, Awaitable[None]]]
Cancel = Callable[[], None]

# Strong references to coroutine callbacks still running
_pending_tasks: Set[asyncio.Task] = set()


def call_soon(callback: Callback, *args: Any) -> None:
    """Run ``callback(*args)`` on the next loop iteration."""
    asyncio.get_running_loop().call_soon(_invoke, callback, args)


def _invoke(callback: Callback, args: tuple) -> None:
    try:
        result = callback(*args)
    except Exception:
        logger.exception(f"Callback error in {_name(callback)}")
        return
    if asyncio.iscoroutine(result):
        task = asyncio.ensure_future(result)
        _pending_tasks.add(task)
        task.add_done_callback(_task_done)


def _task_done(task: asyncio.Task) -> None:
    _pending_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Callback error: {exc!r}", exc_info=exc)


def _name(callback: Callback) -> str:
    return getattr(callback, "__qualname__", repr(callback))


class Subscriber:
    """One registration. Identity, not the callback, is what gets removed."""

    __slots__ = ("callback",)

    def __init__(self, callback: Callback):
        self.callback = callback

    def __repr__(self) -> str:
        return f"Subscriber({_name(self.callback)})"


class Listeners:
    """Ordered callbacks that all receive every emitted event."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def add(self, callback: Callback) -> Subscriber:
        subscriber = Subscriber(callback)
        self._subscribers.append(subscriber)
        return subscriber

    def remove(self, subscriber: Subscriber) -> bool:
        try:
            self._subscribers.remove(subscriber)
        except ValueError:
            return False
        return True

    def listen(self, callback: Callback) -> Cancel:
        """Register ``callback`` and return a function that removes it."""
        subscriber = self.add(callback)

        def cancel() -> None:
            self.remove(subscriber)

        return cancel

    def emit(self, *args: Any) -> int:
        """Schedule every callback; returns how many were scheduled."""
        subscribers = list(self._subscribers)
        for subscriber in subscribers:
            call_soon(subscriber.callback, *args)
        return len(subscribers)

    def clear(self) -> None:
        self._subscribers.clear()

    def __len__(self) -> int:
        return len(self._subscribers)

    def __iter__(self) -> Iterator[Subscriber]:
        return iter(list(self._subscribers))

    def __contains__(self, subscriber: Optional[Subscriber]) -> bool:
        return subscriber in self._subscribers

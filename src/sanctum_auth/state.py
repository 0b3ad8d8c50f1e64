"""Observable single-value cell with replay to new subscribers.

:class:`StateCell` keeps the current value and a list of listeners.  A new
listener is called with the current value synchronously, inside
:meth:`StateCell.subscribe`, so a late subscriber always observes the
latest state without waiting for another transition.  Later values are
delivered to every listener in the order they were set.

Example::

    cell = StateCell(AuthState.VERIFYING)
    seen = []
    unsubscribe = cell.subscribe(seen.append)   # seen == [VERIFYING]
    cell.set(AuthState.UNAUTHENTICATED)         # seen == [VERIFYING, UNAUTHENTICATED]
    unsubscribe()

    async for state in cell.stream():           # async consumers
        ...
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Generic, Optional, TypeVar

from sanctum_auth.logger import SanctumLogger

T = TypeVar("T")

Listener = Callable[[T], None]

_CLOSED = object()


class StateCell(Generic[T]):
    """Current value plus listener list.

    Args:
        initial: Value held before the first :meth:`set`.
        logger: Receives a warning when a listener raises.
    """

    def __init__(self, initial: T, logger: Optional[SanctumLogger] = None) -> None:
        self._value = initial
        self._logger = logger
        self._listeners: list[Listener] = []
        self._streams: list[asyncio.Queue] = []
        self._closed = False

    @property
    def value(self) -> T:
        return self._value

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def set(self, value: T) -> bool:
        """Store *value* and notify listeners.

        Returns:
            ``True`` if the value changed.  Setting the current value again
            is a no-op and notifies nobody.
        """
        if self._closed or value == self._value:
            return False
        self._value = value
        for listener in list(self._listeners):
            self._notify(listener, value)
        return True

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* and call it immediately with the current value.

        Returns:
            A callable that removes the listener.  Calling it twice is safe.
        """
        self._listeners.append(listener)
        self._notify(listener, self._value)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def stream(self) -> AsyncIterator[T]:
        """Yield the current value, then every later value, until :meth:`close`."""
        queue: asyncio.Queue = asyncio.Queue()
        self._streams.append(queue)
        unsubscribe = self.subscribe(queue.put_nowait)
        if self._closed:
            queue.put_nowait(_CLOSED)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            unsubscribe()
            if queue in self._streams:
                self._streams.remove(queue)

    def close(self) -> None:
        """Stop accepting values and end every active :meth:`stream`."""
        self._closed = True
        for queue in self._streams:
            queue.put_nowait(_CLOSED)
        self._listeners.clear()

    def _notify(self, listener: Listener, value: T) -> None:
        try:
            listener(value)
        except Exception as exc:
            if self._logger is not None:
                self._logger.warning(f"state listener {listener!r} failed: {exc}")

"""
intcode.ports
=============
FIFO integer queues connecting a VM's output to another VM's input (or to
the host).

A ``Port`` is owned by whoever wires the topology.  VMs only ever see the
two endpoint views:

    Producer  — put(), close()          (the writing side)
    Consumer  — get(), wait_readable()  (the reading side)

Semantics
---------
*  ``capacity=None`` means unbounded.  With a bound, ``put`` on a full port
   blocks (or raises ``queue.Full`` when ``block=False``) until a value is
   consumed or the port is torn down.
*  ``close()`` marks the producer end finished.  Values already queued are
   still delivered; once the queue drains ``get`` raises ``PortClosed``
   instead of blocking forever.
*  ``teardown()`` is the owner's cancellation: it closes the port, drops
   nothing, and wakes every waiter on either side.

Every method takes the port's ``threading.Condition`` so the same port works
for the cooperative scheduler and for one-thread-per-VM execution.
"""

from __future__ import annotations

import queue
import threading
import time
from collections import deque
from typing import Deque, Iterable, List, Optional

from intcode.errors import PortClosed


class Port:
    def __init__(self, capacity: Optional[int] = None, *, name: str = "port") -> None:
        if capacity is not None and capacity < 1:
            raise ValueError(f"capacity must be >= 1 or None, got {capacity!r}")
        self.capacity = capacity
        self.name = name
        self._items: Deque[int] = deque()
        self._cond = threading.Condition(threading.Lock())
        self._closed = False
        self._torn_down = False

    # ── state ────────────────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    @property
    def drained(self) -> bool:
        """Closed and empty: ``get`` can never return a value again."""
        with self._cond:
            return self._closed and not self._items

    def _full(self) -> bool:
        return self.capacity is not None and len(self._items) >= self.capacity

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def empty(self) -> bool:
        with self._cond:
            return not self._items

    def full(self) -> bool:
        with self._cond:
            return self._full()

    # ── producer side ────────────────────────────────────────────────────────

    def put(self, value: int, block: bool = True, timeout: Optional[float] = None) -> None:
        deadline = (time.monotonic() + timeout) if timeout is not None else None
        with self._cond:
            while True:
                if self._closed:
                    raise PortClosed(f"put on closed port {self.name}")
                if not self._full():
                    break
                if not block:
                    raise queue.Full
                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise queue.Full
                self._cond.wait(timeout=remaining)
            self._items.append(value)
            self._cond.notify_all()

    def put_nowait(self, value: int) -> None:
        self.put(value, block=False)

    def extend(self, values: Iterable[int]) -> None:
        for value in values:
            self.put(value)

    def close(self) -> None:
        """Producer is done; readers drain what is queued, then see PortClosed."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    # ── consumer side ────────────────────────────────────────────────────────

    def get(self, block: bool = True, timeout: Optional[float] = None) -> int:
        deadline = (time.monotonic() + timeout) if timeout is not None else None
        with self._cond:
            while not self._items:
                if self._closed:
                    raise PortClosed(f"get on closed, empty port {self.name}")
                if not block:
                    raise queue.Empty
                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise queue.Empty
                self._cond.wait(timeout=remaining)
            value = self._items.popleft()
            self._cond.notify_all()
            return value

    def get_nowait(self) -> int:
        return self.get(block=False)

    def drain(self) -> List[int]:
        """Remove and return everything currently queued."""
        with self._cond:
            items = list(self._items)
            self._items.clear()
            self._cond.notify_all()
            return items

    # ── waiting without consuming ────────────────────────────────────────────

    def wait_readable(self, timeout: Optional[float] = None) -> bool:
        """Block until a value is queued or the port is closed."""
        with self._cond:
            return self._cond.wait_for(lambda: bool(self._items) or self._closed, timeout=timeout)

    def wait_writable(self, timeout: Optional[float] = None) -> bool:
        """Block until there is room or the port is closed."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._full() or self._closed, timeout=timeout)

    # ── owner side ───────────────────────────────────────────────────────────

    def teardown(self) -> None:
        with self._cond:
            self._closed = True
            self._torn_down = True
            self._cond.notify_all()

    # ── endpoint views ───────────────────────────────────────────────────────

    @property
    def producer(self) -> "Producer":
        return Producer(self)

    @property
    def consumer(self) -> "Consumer":
        return Consumer(self)

    def __repr__(self) -> str:  # pragma: no cover
        cap = "∞" if self.capacity is None else self.capacity
        return (f"Port({self.name!r}, queued={len(self._items)}/{cap}, "
                f"closed={self._closed})")


class Producer:
    """Write-only, non-owning handle on a Port."""

    __slots__ = ("port",)

    def __init__(self, port: Port) -> None:
        self.port = port

    def put(self, value: int, block: bool = True, timeout: Optional[float] = None) -> None:
        self.port.put(value, block=block, timeout=timeout)

    def put_nowait(self, value: int) -> None:
        self.port.put(value, block=False)

    def wait_writable(self, timeout: Optional[float] = None) -> bool:
        return self.port.wait_writable(timeout)

    def close(self) -> None:
        self.port.close()

    @property
    def closed(self) -> bool:
        return self.port.closed

    def __repr__(self) -> str:  # pragma: no cover
        return f"Producer({self.port.name!r})"


class Consumer:
    """Read-only, non-owning handle on a Port."""

    __slots__ = ("port",)

    def __init__(self, port: Port) -> None:
        self.port = port

    def get(self, block: bool = True, timeout: Optional[float] = None) -> int:
        return self.port.get(block=block, timeout=timeout)

    def get_nowait(self) -> int:
        return self.port.get(block=False)

    def wait_readable(self, timeout: Optional[float] = None) -> bool:
        return self.port.wait_readable(timeout)

    @property
    def drained(self) -> bool:
        return self.port.drained

    def empty(self) -> bool:
        return self.port.empty()

    def __repr__(self) -> str:  # pragma: no cover
        return f"Consumer({self.port.name!r})"

"""
runtime.machine.registry
========================
Thread-safe table of the machines in one topology.

Design principles
-----------------
*  One registry per topology, owned by the orchestrator (no global state).
*  Machines are keyed by name; routed topologies also index them by network
   address so packets can be delivered with one lookup.
*  ``wait_all(timeout)`` lets the orchestrator block until every machine is
   terminal *or* one has failed, without busy-polling.  Threads report their
   end through ``notify()``.

Thread safety
-------------
All public methods acquire ``self._lock`` (an ``RLock``).  The condition
variable ``_changed`` wraps the same lock and is notified on every
``notify()``.
"""

from __future__ import annotations

import threading
import time
from typing import Dict, Iterator, List, Optional

from .lifecycle import Machine


# ─────────────────────────────────────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────────────────────────────────────

class MachineNotFoundError(KeyError):
    """Raised when a name or address is not present in the registry."""


class MachineAlreadyExistsError(ValueError):
    """Raised when registering a name or address that is already taken."""


# ─────────────────────────────────────────────────────────────────────────────
# Registry
# ─────────────────────────────────────────────────────────────────────────────

class MachineRegistry:
    """
    Usage
    -----
    ::

        registry = MachineRegistry()
        registry.register(machine)

        registry.get("amp0")
        registry.by_address(17)

        # from a machine thread when its VM stops
        registry.notify(machine)

        # from the orchestrator
        registry.wait_all(timeout=10.0)
        registry.first_failure()
    """

    def __init__(self) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._machines: Dict[str, Machine] = {}
        self._addresses: Dict[int, Machine] = {}
        self._failures: List[Machine] = []
        self._changed: threading.Condition = threading.Condition(self._lock)

    # ── registration ──────────────────────────────────────────────────────────

    def register(self, machine: Machine) -> Machine:
        """
        Raises
        ------
        MachineAlreadyExistsError
            If the name, or the network address, is already registered.
        """
        with self._lock:
            if machine.name in self._machines:
                raise MachineAlreadyExistsError(f"Machine {machine.name!r} already registered.")
            if machine.address is not None:
                if machine.address in self._addresses:
                    raise MachineAlreadyExistsError(
                        f"Network address {machine.address} already owned by "
                        f"{self._addresses[machine.address].name!r}."
                    )
                self._addresses[machine.address] = machine
            self._machines[machine.name] = machine
            return machine

    # ── lookup ────────────────────────────────────────────────────────────────

    def get(self, name: str) -> Machine:
        with self._lock:
            machine = self._machines.get(name)
            if machine is None:
                raise MachineNotFoundError(f"Machine {name!r} not found in registry.")
            return machine

    def by_address(self, address: int) -> Optional[Machine]:
        """Return the machine owning ``address`` or ``None``."""
        with self._lock:
            return self._addresses.get(address)

    # ── state changes ─────────────────────────────────────────────────────────

    def notify(self, machine: Machine) -> None:
        """Record that ``machine`` changed state; wakes wait_all()."""
        with self._changed:
            if machine.error is not None and machine not in self._failures:
                self._failures.append(machine)
            self._changed.notify_all()

    def first_failure(self) -> Optional[Machine]:
        with self._lock:
            return self._failures[0] if self._failures else None

    def all_terminal(self) -> bool:
        with self._lock:
            return all(m.state.is_terminal or m.died_at is not None
                       for m in self._machines.values())

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every machine is terminal or any machine has failed.

        Returns ``True`` if that happened within ``timeout``, ``False`` otherwise.
        """
        deadline = (time.monotonic() + timeout) if timeout is not None else None
        with self._changed:
            while True:
                if self._failures or self.all_terminal():
                    return True
                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return False
                self._changed.wait(timeout=remaining)

    # ── iteration & stats ─────────────────────────────────────────────────────

    def all_machines(self) -> List[Machine]:
        with self._lock:
            return list(self._machines.values())

    def alive_count(self) -> int:
        with self._lock:
            return sum(1 for m in self._machines.values() if m.is_alive)

    def __iter__(self) -> Iterator[Machine]:
        return iter(self.all_machines())

    def __len__(self) -> int:
        with self._lock:
            return len(self._machines)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._machines

    def __repr__(self) -> str:  # pragma: no cover
        return f"MachineRegistry(alive={self.alive_count()}, total={len(self)})"

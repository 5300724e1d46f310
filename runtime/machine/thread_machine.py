"""
runtime.machine.thread_machine
==============================
One real OS thread per VM instance.

Design
------
``MachineThread`` wraps ``threading.Thread`` around a ``Machine`` and drives
its VM with ``IntcodeVM.run_blocking()``, which executes the same explicit
state machine the cooperative scheduler uses and simply waits on the ports
whenever the VM suspends.

    start()  →  run_blocking()  →  (HALTED | FAILED | cancelled)  →  finish()

Key decisions
-------------
*  Threads are daemon threads so they never block interpreter shutdown.
*  Cancellation is cooperative: the orchestrator sets the shared ``cancel``
   event and tears the ports down, which wakes any thread parked on a port.
*  If the VM loop raises something that is not a VMError (a bug, not a
   program fault) the thread logs it, stores it on ``machine.crash`` and
   still reports to the registry, so the topology never silently stalls.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .lifecycle import Machine
from .registry import MachineRegistry

logger = logging.getLogger(__name__)

# 256 KB is plenty: VM memory lives on the heap.
_DEFAULT_STACK_KB = 256


class MachineThread:
    """
    Parameters
    ----------
    machine : Machine
        The instance to drive.  Must already be registered in ``registry``.
    registry : MachineRegistry
        Receives ``notify()`` when the thread ends.
    cancel : threading.Event | None
        Shared stop flag.  A private one is created when omitted.
    poll : float | None
        Upper bound in seconds on each port wait, so a cancelled thread
        notices the flag even if nobody wakes its port.
    stack_kb : int
        Thread stack size in KB.
    """

    def __init__(
        self,
        machine: Machine,
        registry: MachineRegistry,
        *,
        cancel: Optional[threading.Event] = None,
        poll: Optional[float] = 0.5,
        stack_kb: int = _DEFAULT_STACK_KB,
    ) -> None:
        self._machine = machine
        self._registry = registry
        self._cancel = cancel or threading.Event()
        self._poll = poll
        self._stack_kb = stack_kb
        self._thread: Optional[threading.Thread] = None

    @property
    def machine(self) -> Machine:
        return self._machine

    @property
    def is_cancelled(self) -> bool:
        return self._cancel.is_set()

    # ── lifecycle ────────────────────────────────────────────────────────────

    def start(self) -> "MachineThread":
        """
        Spawn the OS thread.  Returns ``self`` for chaining.

        Raises
        ------
        RuntimeError
            If called more than once.
        """
        if self._thread is not None:
            raise RuntimeError(f"MachineThread {self._machine.name} has already been started.")

        # threading.stack_size() is process-global, so restore it afterwards.
        old_stack = threading.stack_size()
        try:
            threading.stack_size(self._stack_kb * 1024)
            self._thread = threading.Thread(
                target=self._run,
                name=f"intcode-{self._machine.name}",
                daemon=True,
            )
        finally:
            threading.stack_size(old_stack)

        self._thread.start()
        logger.debug("THREAD start %s tid=%s", self._machine.name, self._thread.ident)
        return self

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the thread; ``True`` if it has finished."""
        if self._thread is None:
            raise RuntimeError(f"MachineThread {self._machine.name}: start() was never called.")
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    def kill(self, timeout: float = 2.0) -> None:
        """Request cooperative termination and wait up to ``timeout`` seconds."""
        self._cancel.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(
                    "%s thread did not stop within %.1f s after kill(). "
                    "It will be cleaned up at process exit (daemon thread).",
                    self._machine.name, timeout,
                )

    # ── internal thread target ─────────────────────────────────────────────

    def _run(self) -> None:
        try:
            self._machine.vm.run_blocking(cancel=self._cancel, poll=self._poll)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Uncaught exception in %s", self._machine.name)
            self._machine.crash = exc
        finally:
            self._finish()

    def _finish(self) -> None:
        if self._machine.state.is_terminal or self._machine.crash is not None:
            self._machine.finish()
        self._registry.notify(self._machine)

    def __repr__(self) -> str:  # pragma: no cover
        tid = self._thread.ident if self._thread else None
        return f"MachineThread({self._machine.name}, state={self._machine.state.value}, tid={tid})"

"""
runtime.machine
===============
VM instances and how they are run.

Exports:
    Machine          — one IntcodeVM wired between an input and an output port
    MachineRegistry  — thread-safe table of the machines in one topology
    MachineThread    — one OS thread per machine (threaded topologies)
"""

from .lifecycle import Machine
from .registry import MachineAlreadyExistsError, MachineNotFoundError, MachineRegistry
from .thread_machine import MachineThread

__all__ = [
    "Machine",
    "MachineRegistry",
    "MachineAlreadyExistsError",
    "MachineNotFoundError",
    "MachineThread",
]

"""Intcode disassembler — human-readable listing of a loaded program."""
from __future__ import annotations

from typing import List, Sequence

from intcode.errors import VMError
from intcode.isa import IMMEDIATE, POSITION, Instruction, decode


def format_param(mode: int, raw: int) -> str:
    if mode == POSITION:
        return f"[{raw}]"
    if mode == IMMEDIATE:
        return str(raw)
    return f"[rb{raw:+d}]"


def format_instruction(ins: Instruction, args: Sequence[int]) -> str:
    """``add [9] [10] [3]`` / ``out 5`` / ``in [rb-1]`` / ``halt``"""
    parts = [ins.mnemonic.lower()]
    parts.extend(format_param(m, a) for m, a in zip(ins.modes, args))
    return " ".join(parts)


def disassemble(program: Sequence[int]) -> str:
    """
    Linear-sweep listing of ``program``.

    Intcode freely mixes code and data, so any word that does not decode
    (or whose parameters run past the end) is listed as ``data`` and the
    sweep moves on by one cell.
    """
    lines: List[str] = []
    addr = 0
    while addr < len(program):
        word = program[addr]
        try:
            ins = decode(word)
        except VMError:
            ins = None
        if ins is None or addr + ins.length > len(program):
            lines.append(f"{addr:5d}: data {word}")
            addr += 1
            continue
        args = program[addr + 1: addr + ins.length]
        lines.append(f"{addr:5d}: {format_instruction(ins, args)}")
        addr += ins.length
    return "\n".join(lines)

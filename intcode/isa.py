"""Intcode ISA — opcode table, parameter modes and the instruction decoder.

Instruction word layout (decimal digits):
  [..., mode3, mode2, mode1, op_tens, op_ones]
  opcode = word % 100, mode of parameter n = word // (100 * 10**n) % 10
"""
from __future__ import annotations

from typing import NamedTuple, Tuple

from intcode.errors import InvalidParameterMode, UnknownOpcode

# ── Opcodes ────────────────────────────────────────────────────────────────────
OPCODES: dict[str, int] = {
    "ADD":   1,    # p3 = p1 + p2
    "MUL":   2,    # p3 = p1 * p2
    "IN":    3,    # p1 = next input
    "OUT":   4,    # emit p1
    "JNZ":   5,    # jump-if-true:  ip = p2 if p1 != 0
    "JZ":    6,    # jump-if-false: ip = p2 if p1 == 0
    "LT":    7,    # p3 = 1 if p1 < p2 else 0
    "EQ":    8,    # p3 = 1 if p1 == p2 else 0
    "ARB":   9,    # relative_base += p1
    "HALT": 99,
}

# Reverse lookup: opcode int → mnemonic string
OPCODE_NAMES: dict[int, str] = {v: k for k, v in OPCODES.items()}

# Parameter count per opcode.  Instruction length is always arity + 1.
ARITY: dict[int, int] = {
    1: 3, 2: 3, 3: 1, 4: 1, 5: 2, 6: 2, 7: 3, 8: 3, 9: 1, 99: 0,
}

# Parameters that are write targets (index into the parameter list).
WRITES: dict[int, int] = {1: 2, 2: 2, 3: 0, 7: 2, 8: 2}

# ── Parameter modes ────────────────────────────────────────────────────────────
POSITION  = 0
IMMEDIATE = 1
RELATIVE  = 2

MODE_NAMES = {POSITION: "position", IMMEDIATE: "immediate", RELATIVE: "relative"}

# ── Word range ─────────────────────────────────────────────────────────────────
WORD_MIN = -(2 ** 63)
WORD_MAX = 2 ** 63 - 1


def fits_word(value: int) -> bool:
    return WORD_MIN <= value <= WORD_MAX


class Instruction(NamedTuple):
    """A decoded instruction header: opcode plus one mode per parameter."""
    opcode: int
    modes: Tuple[int, ...]

    @property
    def mnemonic(self) -> str:
        return OPCODE_NAMES[self.opcode]

    @property
    def length(self) -> int:
        return len(self.modes) + 1

    @property
    def write_param(self) -> int | None:
        return WRITES.get(self.opcode)


def decode(word: int, ip: int | None = None) -> Instruction:
    """
    Split a raw instruction word into its opcode and parameter modes.

    Raises UnknownOpcode for an opcode outside the table (negative words
    included) and InvalidParameterMode for a mode digit other than 0/1/2.
    """
    if word < 0:
        raise UnknownOpcode(word, ip)
    opcode = word % 100
    if opcode not in ARITY:
        raise UnknownOpcode(opcode, ip)
    modes = []
    div = 100
    for n in range(ARITY[opcode]):
        mode = word // div % 10
        if mode not in MODE_NAMES:
            raise InvalidParameterMode(mode, n, word)
        modes.append(mode)
        div *= 10
    return Instruction(opcode, tuple(modes))


def encode(opcode: int, *modes: int) -> int:
    """Build an instruction word; the inverse of decode() for the header digits."""
    if opcode not in ARITY:
        raise UnknownOpcode(opcode)
    word = opcode
    div = 100
    for mode in modes:
        word += mode * div
        div *= 10
    return word

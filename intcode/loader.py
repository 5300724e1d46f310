"""Intcode program loader — comma-separated signed integers → list of ints."""
from __future__ import annotations

import re
from pathlib import Path
from typing import List, Union

from intcode.errors import ParseError
from intcode.isa import fits_word

_INT_RE = re.compile(r'[+-]?[0-9]+\Z')


def parse_program(text: str) -> List[int]:
    """
    Parse program text such as ``"1,9,10,3,2,3,11,0,99,30,40,50\\n"``.

    Surrounding whitespace (and whitespace around each token) is ignored.
    Raises ParseError naming the first offending token.
    """
    body = text.strip()
    if not body:
        raise ParseError(text, 0, "empty program")
    program: List[int] = []
    for index, raw in enumerate(body.split(",")):
        token = raw.strip()
        if not _INT_RE.match(token):
            raise ParseError(token, index)
        value = int(token)
        if not fits_word(value):
            raise ParseError(token, index, "outside signed 64-bit range")
        program.append(value)
    return program


def load_program(path: Union[str, Path]) -> List[int]:
    """Read and parse a program file."""
    return parse_program(Path(path).read_text())

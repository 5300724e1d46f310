#!/usr/bin/env python3
"""
Intcode CLI — run, inspect and chain Intcode programs.
Commands: run · disasm · amplify · version
"""

import argparse
import logging
import sys

__version__ = "1.0.0"


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _load(path: str):
    """Read and parse a program file, exiting with status 1 on failure."""
    from intcode.errors import ParseError
    from intcode.loader import load_program
    try:
        return load_program(path)
    except (OSError, ParseError) as e:
        print(f"❌ Load error: {e}", file=sys.stderr)
        sys.exit(1)


def _ascii_inputs(text: str):
    return [ord(c) for c in text]


def _render(values, ascii_mode: bool) -> str:
    if not ascii_mode:
        return "\n".join(str(v) for v in values)
    # non-ASCII values (e.g. a final numeric answer) are printed as numbers
    return "".join(chr(v) if 0 <= v < 128 else f"\n{v}\n" for v in values)


# ---------------------------------------------------------------------------
# sub-command handlers
# ---------------------------------------------------------------------------

def cmd_run(args):
    """intcode run program.txt [-i 1 -i 2] [--ascii-input TEXT] [--ascii] [--trace]"""
    from intcode.errors import VMError
    from intcode.vm import IntcodeVM
    program = _load(args.input)
    vm = IntcodeVM(program, trace=args.trace)
    if args.noun is not None:
        vm.noun(args.noun)
    if args.verb is not None:
        vm.verb(args.verb)
    inputs = list(args.inputs or [])
    if args.ascii_input:
        inputs += _ascii_inputs(args.ascii_input.replace("\\n", "\n"))
    try:
        out = vm.run_and_collect(inputs, max_steps=args.max_steps)
    except VMError as e:
        print(f"❌ Runtime error: {e}", file=sys.stderr)
        sys.exit(1)
    if out:
        print(_render(out, args.ascii))
    if args.result:
        print(vm.result)
    if args.verbose:
        print(f"\n[VM] steps={vm.steps} ip={vm.ip} rb={vm.relative_base} "
              f"memory={len(vm.memory)} cells", file=sys.stderr)


def cmd_disasm(args):
    """intcode disasm program.txt"""
    from intcode.disasm import disassemble
    print(disassemble(_load(args.input)))


def cmd_amplify(args):
    """intcode amplify program.txt [--feedback] [--phases 0 1 2 3 4]"""
    from intcode.errors import VMError
    from runtime.orchestrator import max_signal
    program = _load(args.input)
    phases = args.phases or ([5, 6, 7, 8, 9] if args.feedback else [0, 1, 2, 3, 4])
    try:
        best, signal = max_signal(program, phases, feedback=args.feedback,
                                  max_steps=args.max_steps)
    except VMError as e:
        print(f"❌ Runtime error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Phase configuration {list(best)} yields max signal of {signal}")


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="intcode",
        description=(
            "Intcode VM toolchain\n\n"
            "  run        Run a program, feeding inputs and printing outputs\n"
            "  disasm     Disassemble a program → human-readable\n"
            "  amplify    Search phase settings for an amplifier chain\n"
            "  version    Show version info\n"
        ),
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"intcode {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Log more (-v info, -vv debug)")

    sub = parser.add_subparsers(dest="cmd", required=True)

    # ── run ────────────────────────────────────────────────────────────────
    p_run = sub.add_parser("run", help="Run a program")
    p_run.add_argument("input", help="program file (comma-separated integers)")
    p_run.add_argument("-i", "--input-value", dest="inputs", type=int, action="append",
                       metavar="N", help="input value (repeatable)")
    p_run.add_argument("--ascii-input", metavar="TEXT", help="feed TEXT as ASCII codes")
    p_run.add_argument("--ascii", action="store_true", help="print output as ASCII text")
    p_run.add_argument("--noun", type=int, help="set memory address 1 before running")
    p_run.add_argument("--verb", type=int, help="set memory address 2 before running")
    p_run.add_argument("--result", action="store_true", help="print memory address 0 after halt")
    p_run.add_argument("--max-steps", type=int, default=10_000_000, metavar="N")
    p_run.add_argument("--trace", action="store_true", help="Trace execution")
    p_run.set_defaults(func=cmd_run)

    # ── disasm ─────────────────────────────────────────────────────────────
    p_dis = sub.add_parser("disasm", help="Disassemble a program")
    p_dis.add_argument("input", help="program file")
    p_dis.set_defaults(func=cmd_disasm)

    # ── amplify ────────────────────────────────────────────────────────────
    p_amp = sub.add_parser("amplify", help="Find the best amplifier phase settings")
    p_amp.add_argument("input", help="amplifier program file")
    p_amp.add_argument("--feedback", action="store_true", help="wire the chain as a feedback loop")
    p_amp.add_argument("--phases", type=int, nargs="+", metavar="P",
                       help="phase values to permute (default 0-4, or 5-9 with --feedback)")
    p_amp.add_argument("--max-steps", type=int, default=None, metavar="N")
    p_amp.set_defaults(func=cmd_amplify)

    # ── version ────────────────────────────────────────────────────────────
    p_ver = sub.add_parser("version", help="Show version info")
    p_ver.set_defaults(func=lambda _: print(f"intcode {__version__}"))

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    args.func(args)


if __name__ == "__main__":
    main()

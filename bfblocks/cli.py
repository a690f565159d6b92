from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from .blocks import TranslationError
from .interpreter import BlockInterpreter, StepLimitExceeded, TapeAccessError
from .ir import DEFAULT_TAPE_SIZE, EofPolicy
from .listing import render_program
from .translator import Translator

logger = logging.getLogger(__name__)


def _read_source(path: str) -> str:
    source_path = Path(path)
    if not source_path.exists():
        raise FileNotFoundError(f"Source file not found: {path}")
    return source_path.read_text(encoding="utf-8")


def _write_output(path: str, data: str) -> None:
    output_path = Path(path)
    output_path.write_text(data, encoding="utf-8")


def _to_input_bytes(data: str) -> Iterable[int]:
    return [ord(ch) & 0xFF for ch in data]


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _configure_logging(verbosity: int) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Translate a Brainfuck program into a basic-block graph")
    parser.add_argument("source", help="Path to the program source file")
    parser.add_argument(
        "-o",
        "--emit",
        help="Destination file for the block listing (default: print to stdout)",
    )
    parser.add_argument(
        "--run",
        action="store_true",
        help="Execute the block graph after translation",
    )
    parser.add_argument(
        "--input",
        help="Optional input string supplied to the program when running",
        default="",
    )
    parser.add_argument(
        "--eof-policy",
        choices=[policy.value for policy in EofPolicy],
        default=EofPolicy.ZERO.value,
        help="Value stored by ',' once input is exhausted (default: zero)",
    )
    parser.add_argument(
        "--tape-size",
        type=_positive_int,
        default=DEFAULT_TAPE_SIZE,
        help=f"Number of tape cells (default: {DEFAULT_TAPE_SIZE})",
    )
    parser.add_argument(
        "--max-steps",
        type=_positive_int,
        default=None,
        help="Abort execution after this many steps",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug)",
    )
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        source_text = _read_source(args.source)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    translator = Translator(
        tape_size=args.tape_size,
        eof_policy=EofPolicy(args.eof_policy),
        module_name=Path(args.source).stem or "bfblocks",
    )
    try:
        program = translator.translate(source_text)
    except TranslationError as exc:
        print(f"Translation error: {exc}", file=sys.stderr)
        return 1
    logger.info("translated %s into %d blocks", args.source, len(program.blocks))

    listing = render_program(program)
    if args.emit:
        _write_output(args.emit, listing)
        logger.info("listing written to %s", args.emit)
    elif not args.run:
        sys.stdout.write(listing)

    if args.run:
        interpreter = BlockInterpreter(max_steps=args.max_steps)
        try:
            output = interpreter.run(program, input_data=_to_input_bytes(args.input))
        except (StepLimitExceeded, TapeAccessError) as exc:
            print(f"Execution error: {exc}", file=sys.stderr)
            return 1
        sys.stdout.write(output.decode("latin-1"))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())

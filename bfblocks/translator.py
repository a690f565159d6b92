from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Tuple

from .blocks import BlockManager, TranslationError, UnmatchedBracket
from .ir import DEFAULT_TAPE_SIZE, EofPolicy, OpKind, Program, TapeDeclaration

logger = logging.getLogger(__name__)

SYMBOLS = "><+-.,[]"

_SIMPLE_OPS: Dict[str, Tuple[OpKind, int]] = {
    ">": (OpKind.MOVE_POINTER, 1),
    "<": (OpKind.MOVE_POINTER, -1),
    "+": (OpKind.ADJUST_CELL, 1),
    "-": (OpKind.ADJUST_CELL, -1),
    ".": (OpKind.OUTPUT_CELL, 0),
    ",": (OpKind.INPUT_CELL, 0),
}


def _symbols(source: Iterable[str]) -> Iterator[str]:
    # A str yields characters, a text file yields lines: flatten both.
    for chunk in source:
        yield from chunk


@dataclass
class Translator:
    tape_size: int = DEFAULT_TAPE_SIZE
    eof_policy: EofPolicy = EofPolicy.ZERO
    module_name: str = "bfblocks"

    def __post_init__(self) -> None:
        if self.tape_size < 1:
            raise ValueError(f"tape_size must be at least 1, got {self.tape_size}")

    def translate(self, source: Iterable[str]) -> Program:
        """Translate a symbol stream into a block graph in a single pass.

        ``source`` can be any iterable of strings: a whole program, a text
        file object or a generator of chunks. Characters outside the eight
        instruction symbols are skipped.

        Raises ``UnmatchedBracket`` when a ``]`` has no open loop or the input
        ends with loops still open. No partial program is returned.
        """
        manager = BlockManager()
        for position, symbol in enumerate(_symbols(source)):
            self._translate_symbol(symbol, position, manager)
        manager.finalize()

        program = Program(
            blocks=manager.blocks,
            module_name=self.module_name,
            tape=TapeDeclaration(size=self.tape_size),
            eof_policy=EofPolicy(self.eof_policy),
            loop_count=manager.opened_loops,
        )
        logger.debug(
            "translated %s: %d blocks, %d operations, %d loops",
            program.module_name,
            len(program.blocks),
            program.operation_count(),
            program.loop_count,
        )
        return program

    def _translate_symbol(self, symbol: str, position: int, manager: BlockManager) -> None:
        simple = _SIMPLE_OPS.get(symbol)
        if simple is not None:
            kind, amount = simple
            manager.emit(kind, amount=amount, position=position)
        elif symbol == "[":
            manager.open_loop(position)
        elif symbol == "]":
            manager.close_loop(position)


def translate(source: Iterable[str], **options) -> Program:
    return Translator(**options).translate(source)


__all__ = [
    "SYMBOLS",
    "TranslationError",
    "Translator",
    "UnmatchedBracket",
    "translate",
]

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .ir import Block, Branch, OpKind, Operation, Return

logger = logging.getLogger(__name__)


class TranslationError(Exception):
    pass


class UnmatchedBracket(TranslationError):
    def __init__(self, bracket: str, position: Optional[int] = None) -> None:
        self.bracket = bracket
        self.position = position
        if bracket == "]":
            message = "Unmatched ']'"
        else:
            message = "Unclosed '['"
        if position is not None:
            message = f"{message} at position {position}"
        super().__init__(message)


@dataclass(frozen=True)
class LoopFrame:
    header: Block
    exit: Block
    position: Optional[int] = None


class BlockManager:
    """Tracks the insertion point and the stack of open loop frames.

    Header and exit blocks are pushed and popped together as one
    ``LoopFrame`` so the two halves of a loop cannot drift apart.
    """

    def __init__(self) -> None:
        self.blocks: List[Block] = []
        self._frames: List[LoopFrame] = []
        self.opened_loops = 0
        self.closed_loops = 0
        self.finalized = False
        self.current = self._new_block("entry")

    @property
    def depth(self) -> int:
        return len(self._frames)

    def frames(self) -> List[LoopFrame]:
        return list(self._frames)

    def _new_block(self, label: str) -> Block:
        block = Block(label=label)
        self.blocks.append(block)
        return block

    def emit(self, kind: OpKind, amount: int = 0, position: Optional[int] = None) -> Operation:
        return self.current.append(Operation(kind=kind, amount=amount, position=position))

    def open_loop(self, position: Optional[int] = None) -> LoopFrame:
        self.emit(OpKind.LOOP_TEST, position=position)
        ordinal = self.opened_loops
        header = self._new_block(f"loop{ordinal}")
        exit_block = self._new_block(f"loop{ordinal}.exit")
        self.current.seal(Branch(if_true=header.label, if_false=exit_block.label))

        frame = LoopFrame(header=header, exit=exit_block, position=position)
        self._frames.append(frame)
        self.opened_loops += 1
        self.current = header
        logger.debug("open %s at %s (depth %d)", header.label, position, self.depth)
        return frame

    def close_loop(self, position: Optional[int] = None) -> LoopFrame:
        if not self._frames:
            raise UnmatchedBracket("]", position)
        self.emit(OpKind.LOOP_TEST, position=position)
        frame = self._frames.pop()
        # Re-test the cell: the body may have changed it.
        self.current.seal(Branch(if_true=frame.header.label, if_false=frame.exit.label))
        self.closed_loops += 1
        self.current = frame.exit
        logger.debug("close %s at %s (depth %d)", frame.header.label, position, self.depth)
        return frame

    def finalize(self) -> Block:
        if self._frames:
            innermost = self._frames[-1]
            raise UnmatchedBracket("[", innermost.position)
        self.current.seal(Return(0))
        self.finalized = True
        return self.current


__all__ = [
    "BlockManager",
    "LoopFrame",
    "TranslationError",
    "UnmatchedBracket",
]

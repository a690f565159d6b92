from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

DEFAULT_TAPE_SIZE = 30000


class BlockSealedError(RuntimeError):
    """Raised when a block that already has a terminator is modified."""


class OpKind(str, Enum):
    MOVE_POINTER = "move_pointer"
    ADJUST_CELL = "adjust_cell"
    OUTPUT_CELL = "output_cell"
    INPUT_CELL = "input_cell"
    LOOP_TEST = "loop_test"


class EofPolicy(str, Enum):
    """What an input operation stores once the byte-input source is exhausted."""

    ZERO = "zero"
    UNCHANGED = "unchanged"
    MINUS_ONE = "minus_one"


@dataclass(frozen=True)
class Operation:
    kind: OpKind
    amount: int = 0
    position: Optional[int] = None

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "amount": self.amount, "position": self.position}


# === Terminators ===


@dataclass(frozen=True)
class Jump:
    target: str

    def successors(self) -> Tuple[str, ...]:
        return (self.target,)


@dataclass(frozen=True)
class Branch:
    """Two-way transfer on the most recent loop test (true means the cell is non-zero)."""

    if_true: str
    if_false: str

    def successors(self) -> Tuple[str, ...]:
        return (self.if_true, self.if_false)


@dataclass(frozen=True)
class Return:
    code: int = 0

    def successors(self) -> Tuple[str, ...]:
        return ()


Terminator = Union[Jump, Branch, Return]


def _terminator_to_dict(terminator: Optional[Terminator]) -> Optional[dict]:
    if terminator is None:
        return None
    if isinstance(terminator, Jump):
        return {"kind": "jump", "targets": [terminator.target], "code": None}
    if isinstance(terminator, Branch):
        return {"kind": "branch", "targets": [terminator.if_true, terminator.if_false], "code": None}
    return {"kind": "return", "targets": [], "code": terminator.code}


# === Blocks ===


@dataclass(eq=False)
class Block:
    label: str
    operations: List[Operation] = field(default_factory=list)
    terminator: Optional[Terminator] = None

    @property
    def sealed(self) -> bool:
        return self.terminator is not None

    def append(self, operation: Operation) -> Operation:
        if self.sealed:
            raise BlockSealedError(f"Cannot append to sealed block '{self.label}'")
        self.operations.append(operation)
        return operation

    def seal(self, terminator: Terminator) -> None:
        if self.sealed:
            raise BlockSealedError(f"Block '{self.label}' already has a terminator")
        self.terminator = terminator

    def successors(self) -> Tuple[str, ...]:
        if self.terminator is None:
            return ()
        return self.terminator.successors()

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "operations": [op.to_dict() for op in self.operations],
            "terminator": _terminator_to_dict(self.terminator),
        }


# === Program ===


@dataclass(frozen=True)
class TapeDeclaration:
    name: str = "data"
    size: int = DEFAULT_TAPE_SIZE


@dataclass(frozen=True)
class CellPointerSlot:
    name: str = "cell_ptr"
    initial: int = 0


@dataclass
class Program:
    blocks: List[Block]
    module_name: str = "bfblocks"
    tape: TapeDeclaration = field(default_factory=TapeDeclaration)
    cell_pointer: CellPointerSlot = field(default_factory=CellPointerSlot)
    eof_policy: EofPolicy = EofPolicy.ZERO
    externs: Tuple[str, ...] = ("putchar", "getchar")
    loop_count: int = 0

    _index: Dict[str, Block] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.blocks:
            raise ValueError("A program needs at least an entry block")
        self._index = {}
        for block in self.blocks:
            if block.label in self._index:
                raise ValueError(f"Duplicate block label '{block.label}'")
            self._index[block.label] = block

    @property
    def entry(self) -> Block:
        return self.blocks[0]

    def block(self, label: str) -> Block:
        try:
            return self._index[label]
        except KeyError as exc:
            raise KeyError(f"Unknown block label: {label}") from exc

    def labels(self) -> List[str]:
        return [block.label for block in self.blocks]

    def operation_count(self) -> int:
        return sum(len(block.operations) for block in self.blocks)

    def to_dict(self) -> dict:
        return {
            "module_name": self.module_name,
            "tape": {"name": self.tape.name, "size": self.tape.size},
            "cell_pointer": {"name": self.cell_pointer.name, "initial": self.cell_pointer.initial},
            "eof_policy": self.eof_policy.value,
            "externs": list(self.externs),
            "loop_count": self.loop_count,
            "entry": self.entry.label,
            "blocks": [block.to_dict() for block in self.blocks],
        }


__all__ = [
    "DEFAULT_TAPE_SIZE",
    "Block",
    "BlockSealedError",
    "Branch",
    "CellPointerSlot",
    "EofPolicy",
    "Jump",
    "OpKind",
    "Operation",
    "Program",
    "Return",
    "TapeDeclaration",
    "Terminator",
]

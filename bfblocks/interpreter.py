from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .blocks import UnmatchedBracket
from .ir import DEFAULT_TAPE_SIZE, Block, Branch, EofPolicy, Jump, OpKind, Operation, Program, Return
from .listing import render_operation, render_terminator

ByteSink = Callable[[int], None]


class StepLimitExceeded(RuntimeError):
    """Raised when execution exceeds the configured step budget."""


class TapeAccessError(IndexError):
    """Raised when a cell outside the tape is read or written."""


def _read_input(input_iter: Iterator[int], current: int, policy: EofPolicy) -> int:
    try:
        return next(input_iter) & 0xFF
    except StopIteration:
        if policy == EofPolicy.UNCHANGED:
            return current
        if policy == EofPolicy.MINUS_ONE:
            return 0xFF
        return 0


@dataclass
class ExecutionState:
    step: int
    block: str
    index: int
    command: Optional[str]
    pointer: int
    tape_start: int
    tape: List[int]
    output: bytes
    halted: bool = False
    entered: bool = False


@dataclass
class BlockInterpreter:
    """Executes a translated block graph over a zero-initialised byte tape."""

    max_steps: Optional[int] = None

    tape: bytearray = field(init=False, repr=False)
    pointer: int = field(init=False, repr=False)
    condition: bool = field(init=False, repr=False)
    output_buffer: bytearray = field(init=False, repr=False)
    exit_code: Optional[int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.reset()

    def reset(self, tape_size: int = DEFAULT_TAPE_SIZE, pointer: int = 0) -> None:
        self.tape = bytearray(tape_size)
        self.pointer = pointer
        self.condition = False
        self.output_buffer = bytearray()
        self.exit_code = None

    def run(
        self,
        program: Program,
        input_data: Optional[Iterable[int]] = None,
        max_steps: Optional[int] = None,
        output: Optional[ByteSink] = None,
    ) -> bytes:
        for _ in self._trace(program, input_data, max_steps, output):
            pass
        return bytes(self.output_buffer)

    def step(
        self,
        program: Program,
        input_data: Optional[Iterable[int]] = None,
        max_steps: Optional[int] = None,
        tape_window: int = 10,
        output: Optional[ByteSink] = None,
    ) -> Iterator[ExecutionState]:
        """Yield a snapshot after every operation and every control transfer.

        Snapshots taken right after a transfer have ``entered=True``. The last
        snapshot has ``command=None`` and ``halted=True``.
        """
        steps = 0
        label = program.entry.label
        index = 0
        for steps, label, index, command, entered in self._trace(program, input_data, max_steps, output):
            yield self._snapshot(steps, label, index, command, tape_window, entered=entered)
        yield self._snapshot(steps, label, index, None, tape_window, halted=True)

    def _trace(
        self,
        program: Program,
        input_data: Optional[Iterable[int]],
        max_steps: Optional[int],
        output: Optional[ByteSink],
    ) -> Iterator[Tuple[int, str, int, str, bool]]:
        self.reset(program.tape.size, program.cell_pointer.initial)
        budget = max_steps if max_steps is not None else self.max_steps
        input_iter = iter(list(input_data or []))
        block = program.entry
        index = 0
        steps = 0

        while True:
            if budget is not None and steps >= budget:
                raise StepLimitExceeded("Program exceeded allowed step count")

            entered = False
            if index < len(block.operations):
                op = block.operations[index]
                self._execute_operation(op, program.eof_policy, input_iter, output)
                command = render_operation(op)
                index += 1
            else:
                terminator = block.terminator
                command = render_terminator(terminator)
                if isinstance(terminator, Return):
                    self.exit_code = terminator.code
                    yield steps + 1, block.label, index, command, False
                    return
                block = program.block(self._transfer(block))
                index = 0
                entered = True
            steps += 1
            yield steps, block.label, index, command, entered

    def _transfer(self, block: Block) -> str:
        terminator = block.terminator
        if isinstance(terminator, Jump):
            return terminator.target
        if isinstance(terminator, Branch):
            return terminator.if_true if self.condition else terminator.if_false
        raise ValueError(f"Block '{block.label}' has no terminator")

    def _cell_index(self) -> int:
        if not 0 <= self.pointer < len(self.tape):
            raise TapeAccessError(f"Cell pointer {self.pointer} is outside the tape")
        return self.pointer

    def _execute_operation(
        self,
        op: Operation,
        eof_policy: EofPolicy,
        input_iter: Iterator[int],
        output: Optional[ByteSink],
    ) -> None:
        if op.kind is OpKind.MOVE_POINTER:
            # Unchecked: only touching a cell outside the tape is an error.
            self.pointer += op.amount
        elif op.kind is OpKind.ADJUST_CELL:
            cell = self._cell_index()
            self.tape[cell] = (self.tape[cell] + op.amount) % 256
        elif op.kind is OpKind.OUTPUT_CELL:
            value = self.tape[self._cell_index()]
            self.output_buffer.append(value)
            if output is not None:
                output(value)
        elif op.kind is OpKind.INPUT_CELL:
            cell = self._cell_index()
            self.tape[cell] = _read_input(input_iter, self.tape[cell], eof_policy)
        elif op.kind is OpKind.LOOP_TEST:
            self.condition = self.tape[self._cell_index()] != 0

    def _snapshot(
        self,
        step: int,
        label: str,
        index: int,
        command: Optional[str],
        tape_window: int,
        halted: bool = False,
        entered: bool = False,
    ) -> ExecutionState:
        start, end = _tape_window(self.pointer, len(self.tape), tape_window)
        return ExecutionState(
            step=step,
            block=label,
            index=index,
            command=command,
            pointer=self.pointer,
            tape_start=start,
            tape=list(self.tape[start:end]),
            output=bytes(self.output_buffer),
            halted=halted,
            entered=entered,
        )


def _tape_window(pointer: int, tape_length: int, window: int) -> tuple[int, int]:
    start = min(max(0, pointer - window), tape_length)
    end = max(start, min(tape_length, pointer + window + 1))
    return start, end


@dataclass
class ReferenceInterpreter:
    """Source-level interpreter used to cross-check translated programs."""

    tape_length: int = DEFAULT_TAPE_SIZE
    eof_policy: EofPolicy = EofPolicy.ZERO

    tape: bytearray = field(init=False, repr=False)
    pointer: int = field(init=False, repr=False)
    output_buffer: bytearray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.tape = bytearray(self.tape_length)
        self.pointer = 0
        self.output_buffer = bytearray()

    def run(
        self,
        code: str,
        input_data: Optional[Iterable[int]] = None,
        max_steps: Optional[int] = None,
    ) -> bytes:
        self.reset()
        code_chars = list(code)
        input_iter = iter(list(input_data or []))
        jump_map = self._build_jump_map(code_chars)
        pc = 0
        steps = 0

        while pc < len(code_chars):
            if max_steps is not None and steps >= max_steps:
                raise StepLimitExceeded("Program exceeded allowed step count")
            pc = self._execute_instruction(code_chars[pc], pc, jump_map, input_iter)
            steps += 1
        return bytes(self.output_buffer)

    def _cell(self) -> int:
        if not 0 <= self.pointer < self.tape_length:
            raise TapeAccessError(f"Cell pointer {self.pointer} is outside the tape")
        return self.pointer

    def _execute_instruction(
        self,
        command: str,
        pc: int,
        jump_map: Dict[int, int],
        input_iter: Iterator[int],
    ) -> int:
        new_pc = pc + 1
        if command == ">":
            self.pointer += 1
        elif command == "<":
            self.pointer -= 1
        elif command == "+":
            cell = self._cell()
            self.tape[cell] = (self.tape[cell] + 1) % 256
        elif command == "-":
            cell = self._cell()
            self.tape[cell] = (self.tape[cell] - 1) % 256
        elif command == ".":
            self.output_buffer.append(self.tape[self._cell()])
        elif command == ",":
            cell = self._cell()
            self.tape[cell] = _read_input(input_iter, self.tape[cell], self.eof_policy)
        elif command == "[":
            if self.tape[self._cell()] == 0:
                new_pc = jump_map[pc] + 1
        elif command == "]":
            if self.tape[self._cell()] != 0:
                new_pc = jump_map[pc] + 1
        return new_pc

    def _build_jump_map(self, code_chars: List[str]) -> Dict[int, int]:
        jump_map: Dict[int, int] = {}
        stack: List[int] = []
        for index, char in enumerate(code_chars):
            if char == "[":
                stack.append(index)
            elif char == "]":
                if not stack:
                    raise UnmatchedBracket("]", index)
                start = stack.pop()
                jump_map[start] = index
                jump_map[index] = start
        if stack:
            raise UnmatchedBracket("[", stack.pop())
        return jump_map


__all__ = [
    "BlockInterpreter",
    "ByteSink",
    "ExecutionState",
    "ReferenceInterpreter",
    "StepLimitExceeded",
    "TapeAccessError",
]

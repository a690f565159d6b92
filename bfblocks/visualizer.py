from __future__ import annotations

import argparse
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .blocks import TranslationError
from .interpreter import BlockInterpreter, ExecutionState, StepLimitExceeded, TapeAccessError, _tape_window
from .ir import EofPolicy, Program
from .listing import render_operation, render_terminator
from .translator import Translator


def _to_input_bytes(data: str) -> List[int]:
    return [ord(ch) & 0xFF for ch in data]


@dataclass
class VisualizerSession:
    program: Program
    input_template: List[int]
    tape_window: int = 10
    max_steps: Optional[int] = None
    history_limit: int = 200
    source: Optional[str] = None

    def __post_init__(self) -> None:
        self.breakpoints: set[str] = set()
        self.history: List[ExecutionState] = []
        self.hit_breakpoint: Optional[str] = None
        self._init_interpreter()

    def _init_interpreter(self) -> None:
        self.interpreter = BlockInterpreter()
        self._restart_generator()
        self.finished = False
        self.last_state: ExecutionState = self._initial_state()
        self._record_state(self.last_state)

    def _restart_generator(self) -> None:
        self.step_iter = self.interpreter.step(
            self.program,
            input_data=list(self.input_template),
            max_steps=self.max_steps,
            tape_window=self.tape_window,
        )

    def restart(self) -> None:
        self._init_interpreter()

    def _initial_state(self) -> ExecutionState:
        pointer = self.program.cell_pointer.initial
        start, end = _tape_window(pointer, self.program.tape.size, self.tape_window)
        return ExecutionState(
            step=0,
            block=self.program.entry.label,
            index=0,
            command=None,
            pointer=pointer,
            tape_start=start,
            tape=[0] * (end - start),
            output=b"",
        )

    def _record_state(self, state: ExecutionState) -> None:
        self.history.append(state)
        if len(self.history) > self.history_limit:
            self.history.pop(0)
        self.last_state = state

    def step_forward(self, count: int = 1) -> Sequence[ExecutionState]:
        states: List[ExecutionState] = []
        if count <= 0:
            return states
        self.hit_breakpoint = None
        for _ in range(count):
            if self.finished:
                break
            try:
                state = next(self.step_iter)
            except StopIteration:
                self.finished = True
                break
            except (StepLimitExceeded, TapeAccessError):
                self.finished = True
                raise
            self._record_state(state)
            states.append(state)
            if state.halted:
                self.finished = True
                break
            if state.entered and state.block in self.breakpoints:
                self.hit_breakpoint = state.block
                break
        if not states and self.finished:
            self.hit_breakpoint = None
        return states

    def run_until_break(self, limit: Optional[int] = None) -> Sequence[ExecutionState]:
        states: List[ExecutionState] = []
        executed = 0
        while limit is None or executed < limit:
            step_states = self.step_forward(1)
            if not step_states:
                break
            states.extend(step_states)
            executed += 1
            if self.hit_breakpoint is not None:
                break
        return states

    def current_state(self) -> ExecutionState:
        return self.last_state

    def add_breakpoint(self, label: str) -> None:
        # Raises KeyError for labels the program does not have.
        self.program.block(label)
        self.breakpoints.add(label)

    def remove_breakpoint(self, label: str) -> bool:
        if label in self.breakpoints:
            self.breakpoints.remove(label)
            return True
        return False

    def clear_breakpoints(self) -> None:
        self.breakpoints.clear()

    def list_breakpoints(self) -> List[str]:
        return [label for label in self.program.labels() if label in self.breakpoints]

    def is_finished(self) -> bool:
        return self.finished


def format_state(state: ExecutionState, program: Program) -> str:
    lines: List[str] = []
    cmd_display = state.command if state.command is not None else "(init)"
    if state.halted:
        cmd_display = "(halted)"
    lines.append(
        f"step={state.step} block={state.block}#{state.index} command={cmd_display!r} pointer={state.pointer}"
    )
    if state.output:
        lines.append(f"output={state.output!r}")
    tape_parts: List[str] = []
    for idx, value in enumerate(state.tape):
        absolute = state.tape_start + idx
        cell_repr = f"{absolute}:{value:03}"
        if absolute == state.pointer:
            tape_parts.append(f"[{cell_repr}]")
        else:
            tape_parts.append(f" {cell_repr} ")
    lines.append("tape=" + " ".join(tape_parts))
    lines.append(f"block={_format_block_window(program, state.block, state.index)}")
    return "\n".join(lines)


def _format_block_window(program: Program, label: str, index: int, window: int = 4) -> str:
    block = program.block(label)
    instructions = [render_operation(op) for op in block.operations]
    instructions.append(render_terminator(block.terminator))
    start = max(0, index - window)
    end = min(len(instructions), index + window + 1)
    pieces: List[str] = []
    for position in range(start, end):
        text = instructions[position]
        if position == index:
            pieces.append(f"[{text}]")
        else:
            pieces.append(text)
    if index >= len(instructions):
        pieces.append("[END]")
    return f"{label}: " + "; ".join(pieces)


def run_repl(session: VisualizerSession) -> None:
    print("bfblocks visualizer (type 'help' for commands)")
    _print_state(session.current_state(), session)
    while True:
        try:
            line = input("(viz) ").strip()
        except EOFError:
            print()
            break
        if not line:
            continue
        parts = shlex.split(line)
        command = parts[0].lower()
        args = parts[1:]
        try:
            if command in {"n", "next"}:
                count = 1
                if args:
                    count = max(1, int(args[0]))
                states = session.step_forward(count)
                if states:
                    _print_state(states[-1], session)
                elif session.is_finished():
                    print("Program has finished.")
            elif command in {"r", "run"}:
                limit = int(args[0]) if args else None
                try:
                    states = session.run_until_break(limit)
                except StepLimitExceeded:
                    print("Step limit reached.", file=sys.stderr)
                    continue
                except TapeAccessError as exc:
                    print(f"Tape access error: {exc}", file=sys.stderr)
                    continue
                if states:
                    _print_state(states[-1], session)
                    if session.hit_breakpoint is not None:
                        print(f"Breakpoint hit at {session.hit_breakpoint}.")
                        session.hit_breakpoint = None
                elif session.is_finished():
                    print("Program has finished.")
            elif command == "state":
                _print_state(session.current_state(), session)
            elif command == "history":
                count = int(args[0]) if args else 10
                for state in session.history[-count:]:
                    print("-" * 40)
                    print(format_state(state, session.program))
            elif command == "blocks":
                print(", ".join(session.program.labels()))
            elif command == "break":
                if not args:
                    print("Specify a block label.")
                    continue
                try:
                    session.add_breakpoint(args[0])
                except KeyError:
                    print(f"No block named {args[0]}.")
                    continue
                print(f"Breakpoint set at {args[0]}.")
            elif command == "breaks":
                points = session.list_breakpoints()
                if not points:
                    print("No breakpoints.")
                else:
                    print("Breakpoints:", ", ".join(points))
            elif command == "clear":
                if not args:
                    session.clear_breakpoints()
                    print("All breakpoints cleared.")
                elif session.remove_breakpoint(args[0]):
                    print(f"Breakpoint {args[0]} removed.")
                else:
                    print(f"No breakpoint at {args[0]}.")
            elif command == "restart":
                session.restart()
                print("Session restarted.")
                _print_state(session.current_state(), session)
            elif command in {"quit", "exit"}:
                break
            elif command == "help":
                _print_help()
            else:
                print("Unknown command. See 'help'.")
        except ValueError:
            print("Invalid number.", file=sys.stderr)


def _print_state(state: ExecutionState, session: VisualizerSession) -> None:
    print("-" * 40)
    print(format_state(state, session.program))


def _print_help() -> None:
    print(
        "Commands:\n"
        "  next [N]     : execute N instructions (default 1)\n"
        "  run [N]      : run until a breakpoint or N instructions\n"
        "  state        : show the current state\n"
        "  history [N]  : show the last N states\n"
        "  blocks       : list block labels\n"
        "  break LABEL  : break when entering block LABEL\n"
        "  breaks       : list breakpoints\n"
        "  clear [LABEL]: remove a breakpoint (all when omitted)\n"
        "  restart      : reset the session\n"
        "  quit/exit    : leave\n"
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="bfblocks block-graph visualizer")
    parser.add_argument("source", help="Path to the program source file")
    parser.add_argument("--input", default="", help="Input string supplied to the program")
    parser.add_argument(
        "--eof-policy",
        choices=[policy.value for policy in EofPolicy],
        default=EofPolicy.ZERO.value,
        help="Value stored by ',' once input is exhausted (default: zero)",
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        default=5_000_000,
        help="Step limit (default: 5,000,000)",
    )
    parser.add_argument("--tape-window", type=int, default=10, help="Cells shown around the pointer")
    parser.add_argument("--history-limit", type=int, default=200, help="Number of states kept in history")
    args = parser.parse_args(argv)

    try:
        source_text = Path(args.source).read_text(encoding="utf-8")
    except OSError as exc:
        print(f"Cannot open source: {exc}", file=sys.stderr)
        return 1

    try:
        program = Translator(eof_policy=EofPolicy(args.eof_policy)).translate(source_text)
    except TranslationError as exc:
        print(f"Translation error: {exc}", file=sys.stderr)
        return 1

    session = VisualizerSession(
        program,
        input_template=_to_input_bytes(args.input),
        tape_window=args.tape_window,
        max_steps=args.max_steps,
        history_limit=args.history_limit,
        source=source_text,
    )
    try:
        run_repl(session)
    except StepLimitExceeded:
        print("Step limit reached.", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

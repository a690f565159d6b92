from __future__ import annotations

from typing import List, Optional

from .ir import Block, Branch, Jump, OpKind, Operation, Program, Terminator


def render_operation(op: Operation) -> str:
    if op.kind in (OpKind.MOVE_POINTER, OpKind.ADJUST_CELL):
        return f"{op.kind.value} {op.amount:+d}"
    return op.kind.value


def render_terminator(terminator: Optional[Terminator]) -> str:
    if terminator is None:
        return "(unterminated)"
    if isinstance(terminator, Jump):
        return f"jump {terminator.target}"
    if isinstance(terminator, Branch):
        return f"branch {terminator.if_true}, {terminator.if_false}"
    return f"return {terminator.code}"


def render_block(block: Block, indent: str = "    ") -> List[str]:
    lines = [f"{block.label}:"]
    for op in block.operations:
        lines.append(indent + render_operation(op))
    lines.append(indent + render_terminator(block.terminator))
    return lines


def render_program(program: Program) -> str:
    lines: List[str] = [
        f"module {program.module_name}",
        f"tape {program.tape.name}[{program.tape.size}] zeroinitializer",
        f"slot {program.cell_pointer.name} = {program.cell_pointer.initial}",
        "extern " + ", ".join(program.externs),
        f"eof {program.eof_policy.value}",
    ]
    for block in program.blocks:
        lines.append("")
        lines.extend(render_block(block))
    return "\n".join(lines) + "\n"


__all__ = [
    "render_block",
    "render_operation",
    "render_program",
    "render_terminator",
]

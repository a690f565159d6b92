from .blocks import BlockManager, LoopFrame, TranslationError, UnmatchedBracket
from .interpreter import BlockInterpreter, ExecutionState, ReferenceInterpreter, StepLimitExceeded, TapeAccessError
from .ir import Block, BlockSealedError, Branch, EofPolicy, Jump, OpKind, Operation, Program, Return
from .listing import render_program
from .translator import Translator, translate
from .visualizer import VisualizerSession

__all__ = [
    "Block",
    "BlockInterpreter",
    "BlockManager",
    "BlockSealedError",
    "Branch",
    "EofPolicy",
    "ExecutionState",
    "Jump",
    "LoopFrame",
    "OpKind",
    "Operation",
    "Program",
    "ReferenceInterpreter",
    "Return",
    "StepLimitExceeded",
    "TapeAccessError",
    "TranslationError",
    "Translator",
    "UnmatchedBracket",
    "VisualizerSession",
    "render_program",
    "translate",
]

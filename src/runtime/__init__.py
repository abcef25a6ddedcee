"""Runtime module: interpreter, storage, file and CICS simulation, debugger."""

from .cics import CicsContext, NextTransaction, ScreenBuffer, ScreenChar
from .datasets import Dataset, DatasetStore, FileHandle
from .debugger import Debugger, DebugStatus, StepMode
from .errors import RuntimeAbend, RuntimeStateError
from .interpreter import (
    DebugBreak,
    InputRequest,
    RunResult,
    RunStatus,
    Runtime,
    RuntimeOptions,
    ScreenInputRequest,
    Suspension,
)
from .memory import CellArena, StackFrame, VariableCell

__all__ = [
    "CellArena",
    "CicsContext",
    "Dataset",
    "DatasetStore",
    "DebugBreak",
    "DebugStatus",
    "Debugger",
    "FileHandle",
    "InputRequest",
    "NextTransaction",
    "RunResult",
    "RunStatus",
    "Runtime",
    "RuntimeAbend",
    "RuntimeOptions",
    "RuntimeStateError",
    "ScreenBuffer",
    "ScreenChar",
    "ScreenInputRequest",
    "StackFrame",
    "StepMode",
    "Suspension",
    "VariableCell",
]

"""Breakpoint and stepping control hooked into the interpreter.

The runtime consults the debugger before every statement. When the
debugger decides to stop, the runtime suspends with a DebugBreak request
and returns to the host; the host then issues step/next/continue, which
resumes the attached runtime.
"""

import logging
from enum import Enum
from typing import Callable, Iterable, Optional, Set, TYPE_CHECKING

from cobol_ast.nodes import Statement

if TYPE_CHECKING:
    from .interpreter import RunResult, Runtime

logger = logging.getLogger(__name__)


class DebugStatus(Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    TERMINATED = "TERMINATED"


class StepMode(Enum):
    RUN = "RUN"
    STEP = "STEP"
    NEXT = "NEXT"


class Debugger:
    """Debug adapter with line breakpoints, STEP and NEXT.

    Example:
        debugger = Debugger()
        runtime = Runtime(debugger=debugger)
        debugger.toggle_breakpoint(12)
        result = runtime.run(program)      # suspended at line 12
        result = debugger.next()           # steps over CALLs
        result = debugger.continue_()
    """

    def __init__(
        self,
        on_status_change: Optional[Callable[[DebugStatus], None]] = None,
        on_statement: Optional[Callable[[Statement, list], None]] = None,
        on_variables: Optional[Callable[[dict], None]] = None,
    ):
        self.on_status_change = on_status_change
        self.on_statement = on_statement
        self.on_variables = on_variables
        self.breakpoints: Set[int] = set()
        self.mode = StepMode.RUN
        self.status = DebugStatus.STOPPED
        self.current_line: Optional[int] = None
        self._pause_requested = False
        self._paused_depth = 0
        self._next_depth = 0
        self._runtime: Optional["Runtime"] = None

    def attach(self, runtime: "Runtime") -> None:
        self._runtime = runtime

    # --- Breakpoints ---

    def toggle_breakpoint(self, line: int) -> bool:
        """Add or remove a breakpoint; returns True when the line is now set."""
        if line in self.breakpoints:
            self.breakpoints.discard(line)
            return False
        self.breakpoints.add(line)
        return True

    def set_breakpoints(self, lines: Iterable[int]) -> None:
        self.breakpoints = set(lines)

    def clear_breakpoints(self) -> None:
        self.breakpoints.clear()

    # --- Commands ---

    def pause(self) -> None:
        """Stop before the next statement, whatever the mode."""
        self._pause_requested = True

    def step(self) -> Optional["RunResult"]:
        self.mode = StepMode.STEP
        return self._resume()

    def next(self) -> Optional["RunResult"]:
        self.mode = StepMode.NEXT
        self._next_depth = self._paused_depth
        return self._resume()

    def continue_(self) -> Optional["RunResult"]:
        self.mode = StepMode.RUN
        return self._resume()

    def _resume(self) -> Optional["RunResult"]:
        if self._runtime is None or not self._runtime.is_suspended_for_debug:
            return None
        return self._runtime.resume(self._runtime.suspension.token)

    # --- Runtime hooks ---

    def started(self) -> None:
        self._pause_requested = False
        self.current_line = None
        self._set_status(DebugStatus.RUNNING)

    def resumed(self) -> None:
        self._set_status(DebugStatus.RUNNING)

    def finished(self) -> None:
        self._set_status(DebugStatus.TERMINATED)

    def before_statement(self, statement: Statement, depth: int, runtime: "Runtime") -> Optional[str]:
        """Decide whether to stop before ``statement``.

        Args:
            statement: Statement about to execute
            depth: Current call-stack depth
            runtime: The runtime, for call stack and memory views

        Returns:
            The reason for stopping ("pause", "breakpoint", "step", "next") or None
        """
        line = statement.span.line
        self.current_line = line
        if self.on_statement:
            self.on_statement(statement, runtime.call_stack)

        reason = None
        if self._pause_requested:
            self._pause_requested = False
            reason = "pause"
        elif line in self.breakpoints:
            reason = "breakpoint"
        elif self.mode == StepMode.STEP:
            reason = "step"
        elif self.mode == StepMode.NEXT and depth <= self._next_depth:
            reason = "next"

        if reason is not None:
            self._paused_depth = depth
            logger.debug(f"Debugger stopped at line {line} ({reason}), depth {depth}")
            self._set_status(DebugStatus.PAUSED)
            if self.on_variables:
                self.on_variables(runtime.get_memory())
        return reason

    def _set_status(self, status: DebugStatus) -> None:
        if status == self.status:
            return
        self.status = status
        if self.on_status_change:
            self.on_status_change(status)

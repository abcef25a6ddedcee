"""Tree-walking interpreter for parsed COBOL programs.

Execution is driven by a generator. Every point where the program has to
wait for the outside world (ACCEPT, CICS RECEIVE MAP, a debugger stop)
yields a request object. The runtime answers the request with the
matching host callback when one was supplied; otherwise ``run`` returns a
SUSPENDED result carrying a token and the host continues later with
``resume(token, value)``. Debugger stops are always returned to the host.

Runtime abends terminate the task. Output produced before the fault is
kept and the abend is appended to the error list.
"""

import itertools
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from enum import Enum
from typing import Callable, Dict, Generator, List, Mapping, Optional, Union

from cobol_ast.nodes import (
    AcceptStatement,
    AddStatement,
    ArithmeticStatement,
    BinaryExpression,
    BinaryOperator,
    CallStatement,
    CicsCommand,
    CloseStatement,
    CobolProgram,
    ComputeStatement,
    Condition,
    DisplayStatement,
    DivideStatement,
    ExecCicsStatement,
    ExitProgramStatement,
    Expression,
    FileControlEntry,
    GobackStatement,
    IfStatement,
    Literal,
    MoveStatement,
    MultiplyStatement,
    OpenMode,
    OpenStatement,
    Operand,
    PerformStatement,
    PicType,
    ReadStatement,
    RelationalOperator,
    Statement,
    StopRunStatement,
    SubtractStatement,
    UnaryExpression,
    VariableRef,
    WriteStatement,
)
from .cics import CONDITION_ABENDS, RESP_CODES, CicsContext, NextTransaction, ScreenBuffer
from .datasets import DatasetStore, FileHandle
from .debugger import Debugger
from .errors import RuntimeAbend, RuntimeStateError
from .memory import (
    CellArena,
    StackFrame,
    Value,
    VariableCell,
    fit_alphanumeric,
    initial_cell,
    parse_number,
    plain_text,
    snapshot,
    to_number,
)

logger = logging.getLogger(__name__)

MAX_LOOP_ITERATIONS = 100000
MAX_STACK_DEPTH = 100
# About four generator frames per level must fit under sys.getrecursionlimit()
MAX_NESTING_DEPTH = 150

ABEND_RETURN_CODE = 16


class RunStatus(Enum):
    COMPLETED = "COMPLETED"
    SUSPENDED = "SUSPENDED"
    ABENDED = "ABENDED"


@dataclass
class InputRequest:
    """ACCEPT is waiting for a value for ``variable``."""

    variable: str
    pic_type: PicType
    length: int


@dataclass
class ScreenInputRequest:
    """CICS RECEIVE MAP is waiting for the operator.

    The resume value may be None (the screen buffer already holds the
    input) or a mapping of field name to typed text.
    """

    map_name: str
    mapset_name: Optional[str]
    fields: List[str] = field(default_factory=list)


@dataclass
class DebugBreak:
    """The debugger stopped before the statement on ``line``."""

    line: int
    depth: int
    reason: str


Request = Union[InputRequest, ScreenInputRequest, DebugBreak]


@dataclass
class Suspension:
    token: int
    request: Request


@dataclass
class RunResult:
    """Outcome of ``run``, ``run_transaction`` or ``resume``."""

    status: RunStatus
    output: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    next_transaction: Optional[NextTransaction] = None
    suspension: Optional[Suspension] = None

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def suspended(self) -> bool:
        return self.status == RunStatus.SUSPENDED

    @property
    def abended(self) -> bool:
        return self.status == RunStatus.ABENDED

    @property
    def return_code(self) -> int:
        return ABEND_RETURN_CODE if self.abended else 0


@dataclass
class RuntimeOptions:
    """Hard limits of the interpreter.

    Attributes:
        max_loop_iterations: Iterations allowed per PERFORM before an INFINITE LOOP abend
        max_stack_depth: Nested program invocations allowed before a STACK OVERFLOW abend
        max_nesting_depth: Statements executing inside one another (nested IF/PERFORM
            bodies, PERFORMed paragraphs and CALLs) allowed before a STACK OVERFLOW abend
    """
    max_loop_iterations: int = MAX_LOOP_ITERATIONS
    max_stack_depth: int = MAX_STACK_DEPTH
    max_nesting_depth: int = MAX_NESTING_DEPTH


class _StopRun(Exception):
    """STOP RUN, GOBACK from the main program, or CICS RETURN ending the task."""


class _ProgramExit(Exception):
    """EXIT PROGRAM / GOBACK / CICS RETURN leaving a called program."""


InputHandler = Callable[[str, PicType, int], Optional[str]]
ScreenUpdate = Callable[[ScreenBuffer], None]
ScreenInput = Callable[[ScreenInputRequest], Optional[Mapping[str, str]]]

Task = Generator[Request, object, None]


class Runtime:
    """Executes parsed programs with a call stack, files and CICS simulation.

    Example:
        runtime = Runtime(input_handler=lambda name, pic, length: "42")
        result = runtime.run(program)
        print(result.output)

    Without an input handler, ACCEPT suspends the run:
        result = runtime.run(program)
        while result.suspended:
            result = runtime.resume(result.suspension.token, "42")
    """

    def __init__(
        self,
        input_handler: Optional[InputHandler] = None,
        screen_update: Optional[ScreenUpdate] = None,
        screen_input: Optional[ScreenInput] = None,
        debugger: Optional[Debugger] = None,
        options: Optional[RuntimeOptions] = None,
        datasets: Optional[DatasetStore] = None,
    ):
        self.input_handler = input_handler
        self.screen_update = screen_update
        self.screen_input = screen_input
        self.debugger = debugger
        self.options = options or RuntimeOptions()
        self.datasets = datasets if datasets is not None else DatasetStore()

        self.programs: Dict[str, CobolProgram] = {}
        self.transactions: Dict[str, str] = {}

        self.arena = CellArena()
        self.cics = CicsContext()
        self.open_files: Dict[str, FileHandle] = {}
        self.output: List[str] = []
        self.errors: List[str] = []
        self._stack: List[StackFrame] = []
        self._nesting = 0
        self._task: Optional[Task] = None
        self._suspension: Optional[Suspension] = None
        self._tokens = itertools.count(1)

        self._handlers = {
            MoveStatement: self._exec_move,
            AddStatement: self._exec_arithmetic,
            SubtractStatement: self._exec_arithmetic,
            MultiplyStatement: self._exec_arithmetic,
            DivideStatement: self._exec_arithmetic,
            ComputeStatement: self._exec_compute,
            IfStatement: self._exec_if,
            PerformStatement: self._exec_perform,
            DisplayStatement: self._exec_display,
            AcceptStatement: self._exec_accept,
            CallStatement: self._exec_call,
            ExitProgramStatement: self._exec_exit_program,
            GobackStatement: self._exec_goback,
            StopRunStatement: self._exec_stop_run,
            OpenStatement: self._exec_open,
            CloseStatement: self._exec_close,
            ReadStatement: self._exec_read,
            WriteStatement: self._exec_write,
            ExecCicsStatement: self._exec_cics,
        }
        self._cics_handlers = {
            CicsCommand.SEND_MAP: self._cics_send_map,
            CicsCommand.RECEIVE_MAP: self._cics_receive_map,
            CicsCommand.READ: self._cics_read,
            CicsCommand.WRITE: self._cics_write,
            CicsCommand.REWRITE: self._cics_rewrite,
            CicsCommand.DELETE: self._cics_delete,
            CicsCommand.RETURN: self._cics_return,
            CicsCommand.LINK: self._cics_link,
            CicsCommand.HANDLE_CONDITION: self._cics_handle_condition,
        }

        if debugger is not None:
            debugger.attach(self)

    # --- Registry ---

    def register_program(self, program: CobolProgram) -> None:
        """Make a program callable by CALL and EXEC CICS LINK."""
        self.programs[program.program_id.upper()] = program

    def register_transaction(self, trans_id: str, program_id: str) -> None:
        self.transactions[trans_id.upper()] = program_id.upper()

    # --- Host API ---

    def run(self, program: CobolProgram, commarea: Optional[str] = None) -> RunResult:
        """Run a program from the top with freshly initialized storage.

        Args:
            program: Program to run; it is also registered
            commarea: Text placed into a Linkage DFHCOMMAREA, if declared

        Returns:
            RunResult, SUSPENDED when a request needs a host answer
        """
        return self._start(program, None, commarea)

    def run_transaction(self, trans_id: str, commarea: str = "") -> RunResult:
        """Start the program registered for ``trans_id`` (or the program of that name).

        Raises:
            RuntimeStateError: If no program is registered for the transaction
        """
        program_id = self.transactions.get(trans_id.upper(), trans_id.upper())
        program = self.programs.get(program_id)
        if program is None:
            raise RuntimeStateError(f"NO PROGRAM FOUND FOR TRANSACTION '{trans_id}'")
        return self._start(program, trans_id.upper(), commarea)

    def resume(self, token: int, value: object = None) -> RunResult:
        """Continue a suspended run.

        Args:
            token: Token of the current suspension
            value: Answer to the pending request (ignored for debugger stops)

        Raises:
            RuntimeStateError: If nothing is suspended or the token is stale
        """
        if self._suspension is None or self._task is None:
            raise RuntimeStateError("Runtime is not suspended")
        if token != self._suspension.token:
            raise RuntimeStateError(
                f"Stale resume token {token}; current token is {self._suspension.token}"
            )
        request = self._suspension.request
        self._suspension = None
        if isinstance(request, DebugBreak):
            value = None
            if self.debugger is not None:
                self.debugger.resumed()
        return self._drive(value)

    @property
    def suspension(self) -> Optional[Suspension]:
        return self._suspension

    @property
    def is_suspended_for_debug(self) -> bool:
        return self._suspension is not None and isinstance(self._suspension.request, DebugBreak)

    @property
    def call_stack(self) -> List[str]:
        """Program ids of the active frames, outermost first."""
        return [frame.program_id for frame in self._stack]

    def get_memory(self) -> Dict[str, VariableCell]:
        """Copies of the cells visible in the active frame."""
        if not self._stack:
            return {}
        return snapshot(self.arena, self._stack[-1])

    def get_files(self) -> Dict[str, FileHandle]:
        return dict(self.open_files)

    def get_screen_buffer(self) -> ScreenBuffer:
        return self.cics.screen

    def get_cics_context(self) -> CicsContext:
        return self.cics

    # --- Task driving ---

    def _start(self, program: CobolProgram, trans_id: Optional[str], commarea: Optional[str]) -> RunResult:
        if self._task is not None:
            logger.info("Abandoning suspended run")
            self._task.close()
        self.register_program(program)

        self.arena.clear()
        self._stack = []
        self._nesting = 0
        self.output = []
        self.errors = []
        self.open_files = {}
        self._suspension = None
        self.cics.reset()
        self.cics.trans_id = trans_id
        self.cics.commarea = commarea or ""

        if self.debugger is not None:
            self.debugger.started()
        logger.info(f"Running program {program.program_id}")
        self._task = self._main(program)
        return self._drive(None)

    def _drive(self, value: object) -> RunResult:
        while True:
            try:
                request = self._task.send(value)
            except StopIteration:
                return self._finish(RunStatus.COMPLETED)
            except RuntimeAbend as e:
                logger.warning(f"Run abended: {e}")
                self.errors.append(e.report)
                return self._finish(RunStatus.ABENDED)
            except RecursionError:
                abend = RuntimeAbend("IGZ0099S", "STACK OVERFLOW.")
                logger.warning(f"Run abended: {abend}")
                self.errors.append(abend.report)
                return self._finish(RunStatus.ABENDED)

            value = None
            if isinstance(request, InputRequest) and self.input_handler is not None:
                value = self.input_handler(request.variable, request.pic_type, request.length)
                continue
            if isinstance(request, ScreenInputRequest) and self.screen_input is not None:
                value = self.screen_input(request)
                continue

            self._suspension = Suspension(next(self._tokens), request)
            logger.debug(f"Run suspended: {request}")
            return RunResult(
                status=RunStatus.SUSPENDED,
                output=list(self.output),
                errors=list(self.errors),
                next_transaction=self.cics.next_transaction,
                suspension=self._suspension,
            )

    def _finish(self, status: RunStatus) -> RunResult:
        self._task = None
        self._suspension = None
        if self.debugger is not None:
            self.debugger.finished()
        logger.info(f"Run finished: {status.value}, {len(self.output)} output line(s)")
        return RunResult(
            status=status,
            output=list(self.output),
            errors=list(self.errors),
            next_transaction=self.cics.next_transaction,
        )

    def _main(self, program: CobolProgram) -> Task:
        try:
            yield from self._invoke(program, {}, is_main=True)
        except _StopRun:
            pass

    def _invoke(
        self,
        program: CobolProgram,
        bindings: Dict[str, int],
        is_main: bool = False,
        linked: bool = False,
    ) -> Task:
        """Push a frame for ``program``, run its procedure division, pop the frame.

        ``bindings`` maps Linkage names to caller handles. The main
        program's frame stays on the stack after the run so the host can
        inspect final storage.
        """
        if len(self._stack) >= self.options.max_stack_depth:
            raise RuntimeAbend("IGZ0099S", "STACK OVERFLOW.")

        frame = StackFrame(program=program, watermark=self.arena.watermark, linked=linked)
        data = program.data_division
        for declaration in data.file_records + data.working_storage:
            frame.locals[declaration.name] = self.arena.allocate(initial_cell(declaration))
        for declaration in data.linkage:
            if declaration.name in bindings:
                frame.linkage[declaration.name] = bindings[declaration.name]
                continue
            cell = initial_cell(declaration)
            if declaration.name == "DFHCOMMAREA":
                cell.store(self.cics.commarea)
            frame.locals[declaration.name] = self.arena.allocate(cell)
        for name, handle in bindings.items():
            if frame.resolve(name) is None:
                frame.linkage[name] = handle

        self._stack.append(frame)
        logger.debug(f"Invoked {program.program_id} at depth {len(self._stack)}")
        try:
            yield from self._execute_block(program.procedure_division.statements)
        except _ProgramExit:
            pass
        finally:
            if not is_main and self._stack and self._stack[-1] is frame:
                self._stack.pop()
                self.arena.release_to(frame.watermark)

    def _execute_block(self, statements: List[Statement]) -> Task:
        for statement in statements:
            yield from self._execute(statement)

    def _execute(self, statement: Statement) -> Task:
        if self._nesting >= self.options.max_nesting_depth:
            raise RuntimeAbend("IGZ0099S", "STACK OVERFLOW.")
        self._nesting += 1
        try:
            if self.debugger is not None:
                depth = len(self._stack)
                reason = self.debugger.before_statement(statement, depth, self)
                if reason is not None:
                    yield DebugBreak(statement.span.line, depth, reason)
            outcome = self._handlers[type(statement)](statement)
            if outcome is not None:
                yield from outcome
        finally:
            self._nesting -= 1

    # --- Storage helpers ---

    def _frame(self) -> StackFrame:
        if not self._stack:
            raise RuntimeStateError("No active stack frame")
        return self._stack[-1]

    def _handle(self, name: str) -> int:
        handle = self._frame().resolve(name)
        if handle is None:
            raise RuntimeAbend("IGZ0001S", f"REFERENCE TO UNDEFINED VARIABLE '{name}'.")
        return handle

    def _cell(self, name: str) -> VariableCell:
        return self.arena.get(self._handle(name))

    def _find_cell(self, name: str) -> Optional[VariableCell]:
        handle = self._frame().resolve(name.upper())
        return self.arena.get(handle) if handle is not None else None

    def _numeric_cell(self, name: str, verb: str) -> VariableCell:
        cell = self._cell(name)
        if not cell.is_numeric:
            raise RuntimeAbend("IGZ0013S", f"DATA ITEM '{name}' MUST BE NUMERIC FOR {verb}.")
        return cell

    def _value(self, operand: Operand) -> Value:
        if isinstance(operand, Literal):
            if operand.figurative == "ZERO":
                return Decimal(0)
            if operand.figurative == "SPACE":
                return " "
            return operand.value
        return self._cell(operand.name).value

    def _number(self, operand: Operand) -> Decimal:
        return to_number(self._value(operand))

    @staticmethod
    def _key_text(cell: VariableCell) -> str:
        if cell.is_numeric:
            return str(abs(int(cell.value))).zfill(cell.length)
        return cell.value.strip()

    # --- Data manipulation ---

    def _exec_move(self, stmt: MoveStatement) -> None:
        target = self._cell(stmt.target)
        figurative = stmt.source.figurative if isinstance(stmt.source, Literal) else None
        value = self._value(stmt.source)
        if stmt.ref_mod is None:
            target.store(value, figurative)
            return
        if figurative == "ZERO":
            value = "0" * stmt.ref_mod.length
        target.store_slice(value, stmt.ref_mod.start, stmt.ref_mod.length)

    def _exec_arithmetic(self, stmt: ArithmeticStatement) -> None:
        operand = self._number(stmt.operand)
        target = self._number(stmt.target)

        if isinstance(stmt, AddStatement):
            result = target + operand
        elif isinstance(stmt, SubtractStatement):
            result = target - operand
        elif isinstance(stmt, MultiplyStatement):
            result = target * operand
        else:
            dividend, divisor = (operand, target) if stmt.by_form else (target, operand)
            if divisor == 0:
                raise RuntimeAbend("IGZ0017S", "DIVIDE BY ZERO.")
            result = dividend / divisor

        receiving = stmt.receiving_item
        if receiving is None:
            raise RuntimeAbend("IGZ0013S", f"{stmt.verb} HAS NO RECEIVING ITEM.")
        self._numeric_cell(receiving, stmt.verb).store(result)

    def _exec_compute(self, stmt: ComputeStatement) -> None:
        try:
            result = self._evaluate(stmt.expression)
        except ArithmeticError as e:
            raise RuntimeAbend("IGZ0020S", f"INVALID ARITHMETIC IN COMPUTE: {type(e).__name__}.") from e
        if stmt.rounded:
            result = result.quantize(Decimal(1), rounding=ROUND_HALF_UP)
        self._numeric_cell(stmt.target, "COMPUTE").store(result)

    def _evaluate(self, expression: Expression) -> Decimal:
        if isinstance(expression, Literal):
            return to_number(self._value(expression))
        if isinstance(expression, VariableRef):
            return to_number(self._cell(expression.name).value)
        if isinstance(expression, UnaryExpression):
            return -self._evaluate(expression.operand)

        left = self._evaluate(expression.left)
        right = self._evaluate(expression.right)
        if expression.operator == BinaryOperator.ADD:
            return left + right
        if expression.operator == BinaryOperator.SUBTRACT:
            return left - right
        if expression.operator == BinaryOperator.MULTIPLY:
            return left * right
        if expression.operator == BinaryOperator.DIVIDE:
            if right == 0:
                raise RuntimeAbend("IGZ0017S", "DIVIDE BY ZERO.")
            return left / right
        return left ** right

    # --- Control flow ---

    def _evaluate_condition(self, condition: Condition) -> bool:
        left = self._value(condition.left)
        right = self._value(condition.right)
        left_number = _comparable_number(left)
        right_number = _comparable_number(right)

        if left_number is not None and right_number is not None:
            a, b = left_number, right_number
        else:
            a, b = plain_text(left), plain_text(right)
            width = max(len(a), len(b))
            a, b = a.ljust(width), b.ljust(width)

        if condition.operator == RelationalOperator.EQUAL:
            return a == b
        if condition.operator == RelationalOperator.GREATER:
            return a > b
        return a < b

    def _exec_if(self, stmt: IfStatement) -> Task:
        if self._evaluate_condition(stmt.condition):
            yield from self._execute_block(stmt.then_body)
        elif stmt.else_body is not None:
            yield from self._execute_block(stmt.else_body)

    def _exec_perform(self, stmt: PerformStatement) -> Task:
        body = stmt.body
        if stmt.paragraph is not None:
            body = self._frame().program.procedure_division.paragraph_statements(stmt.paragraph)
            if body is None:
                raise RuntimeAbend("IGZ0064S", f"PARAGRAPH '{stmt.paragraph}' NOT FOUND.")

        limit = self.options.max_loop_iterations
        if stmt.until is not None:
            iterations = 0
            while not self._evaluate_condition(stmt.until):
                if iterations >= limit:
                    raise RuntimeAbend("IGZ0099S", "INFINITE LOOP.")
                iterations += 1
                yield from self._execute_block(body)
        elif stmt.times is not None:
            count = int(self._number(stmt.times).to_integral_value(rounding=ROUND_DOWN))
            for iteration in range(max(count, 0)):
                if iteration >= limit:
                    raise RuntimeAbend("IGZ0099S", "INFINITE LOOP.")
                yield from self._execute_block(body)
        else:
            yield from self._execute_block(body)

    def _exec_display(self, stmt: DisplayStatement) -> None:
        self.output.append("".join(plain_text(self._value(value)) for value in stmt.values))

    def _exec_accept(self, stmt: AcceptStatement) -> Task:
        cell = self._cell(stmt.target)
        value = yield InputRequest(cell.name, cell.pic_type, cell.length)
        if value is None:
            return
        text = str(value)
        self.output.append(f"> {text}")
        cell.store(text)

    def _program_name(self, operand: Operand) -> str:
        if isinstance(operand, Literal):
            return plain_text(operand.value).strip().upper()
        return self._cell(operand.name).text.strip().upper()

    def _exec_call(self, stmt: CallStatement) -> Task:
        name = self._program_name(stmt.program)
        program = self.programs.get(name)
        if program is None:
            raise RuntimeAbend("IGZ0002S", f"CALL TO UNDEFINED PROGRAM '{name}'.")

        parameters = program.procedure_division.using
        if len(parameters) != len(stmt.using):
            raise RuntimeAbend(
                "IGZ0003S",
                f"PARAMETER MISMATCH: CALL PASSES {len(stmt.using)}, "
                f"'{name}' EXPECTS {len(parameters)}.",
            )
        bindings = {param: self._handle(arg) for param, arg in zip(parameters, stmt.using)}
        yield from self._invoke(program, bindings)

    def _exec_exit_program(self, stmt: ExitProgramStatement) -> None:
        # EXIT PROGRAM in the main program is a no-op
        if len(self._stack) > 1:
            raise _ProgramExit()

    def _exec_goback(self, stmt: GobackStatement) -> None:
        if len(self._stack) > 1:
            raise _ProgramExit()
        raise _StopRun()

    def _exec_stop_run(self, stmt: StopRunStatement) -> None:
        raise _StopRun()

    # --- File I/O ---

    def _set_file_status(self, entry: FileControlEntry, status: str) -> None:
        if entry.file_status:
            cell = self._find_cell(entry.file_status)
            if cell is not None:
                cell.store(status)

    def _file_error(self, entry: FileControlEntry, status: str, code: str, message: str) -> None:
        """Report an I/O error through FILE STATUS when declared, otherwise abend."""
        if entry.file_status:
            logger.info(f"File {entry.file_name}: status {status} ({message})")
            self._set_file_status(entry, status)
            return
        raise RuntimeAbend(code, message)

    def _open_handle(self, file_name: str) -> FileHandle:
        handle = self.open_files.get(file_name)
        if handle is None:
            raise RuntimeAbend("IGZ0042S", f"FILE '{file_name}' IS NOT OPEN.")
        return handle

    def _exec_open(self, stmt: OpenStatement) -> None:
        program = self._frame().program
        for mode, file_name in stmt.files:
            entry = program.get_file_control(file_name)
            if entry is None:
                raise RuntimeAbend("IGZ0035S", f"FILE '{file_name}' IS NOT DEFINED.")
            if file_name in self.open_files:
                self._file_error(entry, "41", "IGZ0041S", f"FILE '{file_name}' IS ALREADY OPEN.")
                continue

            dataset = self.datasets.get(entry.external_name)
            if mode in (OpenMode.INPUT, OpenMode.I_O):
                if dataset is None:
                    self._file_error(
                        entry,
                        "35",
                        "IGZ0035S",
                        f"OPEN FAILED FOR FILE '{file_name}': DATASET '{entry.external_name}' NOT FOUND.",
                    )
                    continue
            elif mode == OpenMode.OUTPUT or dataset is None:
                dataset = self.datasets.create(entry.external_name, entry.organization)

            self.open_files[file_name] = FileHandle(file_name, entry, dataset, mode)
            self._set_file_status(entry, "00")
            logger.debug(f"Opened {file_name} ({mode.value}) on dataset {dataset.name}")

    def _exec_close(self, stmt: CloseStatement) -> None:
        for file_name in stmt.files:
            handle = self._open_handle(file_name)
            del self.open_files[file_name]
            self._set_file_status(handle.entry, "00")

    def _exec_read(self, stmt: ReadStatement) -> Task:
        handle = self._open_handle(stmt.file_name)
        entry = handle.entry
        if handle.mode not in (OpenMode.INPUT, OpenMode.I_O):
            raise RuntimeAbend(
                "IGZ0047S", f"READ NOT ALLOWED: FILE '{stmt.file_name}' IS OPEN {handle.mode.value}."
            )

        if handle.keyed_access:
            key = self._key_text(self._cell(entry.record_key))
            record = handle.dataset.keyed.get(key)
            if record is None:
                self._file_error(
                    entry, "23", "IGZ0023S", f"RECORD NOT FOUND FOR KEY '{key}' IN FILE '{stmt.file_name}'."
                )
                return
        else:
            record = handle.dataset.record_at(handle.position)
            if record is None:
                if stmt.at_end is not None:
                    self._set_file_status(entry, "10")
                    yield from self._execute_block(stmt.at_end)
                    return
                self._file_error(
                    entry, "10", "IGZ0037S", f"END OF FILE ON '{stmt.file_name}' WITH NO AT END PHRASE."
                )
                return
            handle.position += 1

        for fd in self._frame().program.data_division.file_section:
            if fd.file_name == stmt.file_name:
                for declaration in fd.records:
                    self._cell(declaration.name).store(record)
        if stmt.into:
            self._cell(stmt.into).store(record)
        self._set_file_status(entry, "00")

    def _exec_write(self, stmt: WriteStatement) -> None:
        fd = self._frame().program.get_file_for_record(stmt.record)
        if fd is None:
            raise RuntimeAbend("IGZ0044S", f"'{stmt.record}' IS NOT A FILE RECORD.")
        handle = self._open_handle(fd.file_name)
        entry = handle.entry
        if handle.mode == OpenMode.INPUT:
            raise RuntimeAbend("IGZ0048S", f"WRITE NOT ALLOWED: FILE '{fd.file_name}' IS OPEN INPUT.")

        record_cell = self._cell(stmt.record)
        if stmt.from_name:
            record_cell.store(self._cell(stmt.from_name).value)
        text = record_cell.text

        if handle.dataset.is_indexed:
            if not entry.record_key:
                raise RuntimeAbend("IGZ0044S", f"INDEXED FILE '{fd.file_name}' HAS NO RECORD KEY.")
            key = self._key_text(self._cell(entry.record_key))
            if key in handle.dataset.keyed:
                self._file_error(entry, "22", "IGZ0022S", f"DUPLICATE KEY '{key}' ON FILE '{fd.file_name}'.")
                return
            handle.dataset.keyed[key] = text
        else:
            handle.dataset.records.append(text)
        self._set_file_status(entry, "00")

    # --- EXEC CICS ---

    def _exec_cics(self, stmt: ExecCicsStatement) -> Task:
        outcome = self._cics_handlers[stmt.command](stmt.params)
        if outcome is not None:
            yield from outcome

    def _cics_name(self, value: Optional[Operand]) -> Optional[str]:
        """Resolve a name option: literal text, a declared item's value, or the bare name."""
        if value is None:
            return None
        if isinstance(value, Literal):
            return plain_text(value.value).strip().upper()
        cell = self._find_cell(value.name)
        if cell is not None:
            return cell.text.strip().upper()
        return value.name

    def _cics_required(self, params: Dict[str, Optional[Operand]], option: str) -> str:
        name = self._cics_name(params.get(option))
        if not name:
            raise RuntimeAbend("AEIP", f"INVALID REQUEST: MISSING {option} OPTION.")
        return name

    def _cics_area(self, params: Dict[str, Optional[Operand]], option: str) -> VariableCell:
        value = params.get(option)
        if not isinstance(value, VariableRef):
            raise RuntimeAbend("AEIP", f"INVALID REQUEST: {option} MUST NAME A DATA AREA.")
        return self._cell(value.name)

    def _cics_key(self, params: Dict[str, Optional[Operand]]) -> str:
        value = params.get("RIDFLD")
        if isinstance(value, VariableRef):
            return self._key_text(self._cell(value.name))
        if isinstance(value, Literal):
            return plain_text(value.value).strip()
        raise RuntimeAbend("AEIP", "INVALID REQUEST: MISSING RIDFLD OPTION.")

    def _cics_normal(self, params: Dict[str, Optional[Operand]]) -> None:
        self.cics.last_resp = RESP_CODES["NORMAL"]
        resp = params.get("RESP")
        if isinstance(resp, VariableRef):
            self._cell(resp.name).store(Decimal(RESP_CODES["NORMAL"]))

    def _cics_condition(self, name: str, params: Dict[str, Optional[Operand]]) -> None:
        """Raise a CICS condition: RESP capture, then HANDLE CONDITION, else abend."""
        code = RESP_CODES[name]
        self.cics.last_resp = code
        resp = params.get("RESP")
        if isinstance(resp, VariableRef):
            self._cell(resp.name).store(Decimal(code))
            return
        label = self.cics.handlers.get(name)
        if label is not None:
            logger.info(f"CICS condition {name} handled by {label}")
            self.errors.append(
                f"CICS HANDLE CONDITION TRIGGERED: {name} -> GOTO {label} (GOTO NOT FULLY SUPPORTED)"
            )
            return
        raise RuntimeAbend(CONDITION_ABENDS[name], f"CICS CONDITION '{name}' NOT HANDLED.")

    def _cics_map(self, params: Dict[str, Optional[Operand]]):
        map_name = self._cics_required(params, "MAP")
        mapset_name = self._cics_name(params.get("MAPSET"))
        bms_map = self._frame().program.find_map(map_name, mapset_name)
        if bms_map is None:
            raise RuntimeAbend("AEI9", f"MAP '{map_name}' IN MAPSET '{mapset_name or ''}' NOT FOUND.")
        return bms_map

    def _cics_send_map(self, params: Dict[str, Optional[Operand]]) -> None:
        bms_map = self._cics_map(params)
        screen = self.cics.screen
        screen.clear()
        for map_field in bms_map.fields:
            cell = self._find_cell(map_field.name)
            if cell is not None:
                text, attr = cell.text, "UNPROTECTED"
            else:
                text, attr = map_field.initial or "", "PROTECTED"
            screen.write(map_field.row, map_field.column, fit_alphanumeric(text, map_field.length), attr)
        self._cics_normal(params)
        if self.screen_update is not None:
            self.screen_update(screen)

    def _cics_receive_map(self, params: Dict[str, Optional[Operand]]) -> Task:
        bms_map = self._cics_map(params)
        self.cics.receiving_map = bms_map
        try:
            typed = yield ScreenInputRequest(
                bms_map.map_name, bms_map.mapset_name, [f.name for f in bms_map.fields]
            )
        finally:
            self.cics.receiving_map = None

        if typed:
            fields = {f.name: f for f in bms_map.fields}
            for name, text in typed.items():
                map_field = fields.get(str(name).upper())
                if map_field is None:
                    logger.warning(f"Ignoring input for unknown field {name} of map {bms_map.map_name}")
                    continue
                self.cics.key_in(map_field, str(text))

        for map_field in bms_map.fields:
            cell = self._find_cell(map_field.name)
            if cell is not None:
                cell.store(self.cics.field_at(map_field))
        self._cics_normal(params)

    def _cics_read(self, params: Dict[str, Optional[Operand]]) -> None:
        dataset = self.datasets.get(self._cics_required(params, "FILE"))
        key = self._cics_key(params)
        if dataset is None or not dataset.is_indexed or key not in dataset.keyed:
            self._cics_condition("NOTFND", params)
            return
        self._cics_area(params, "INTO").store(dataset.keyed[key])
        self._cics_normal(params)

    def _cics_write(self, params: Dict[str, Optional[Operand]]) -> None:
        dataset = self.datasets.get(self._cics_required(params, "FILE"))
        if dataset is None:
            self._cics_condition("NOTFND", params)
            return
        text = self._cics_area(params, "FROM").text
        if not dataset.is_indexed:
            dataset.records.append(text)
        else:
            key = self._cics_key(params)
            if key in dataset.keyed:
                self._cics_condition("DUPREC", params)
                return
            dataset.keyed[key] = text
        self._cics_normal(params)

    def _cics_rewrite(self, params: Dict[str, Optional[Operand]]) -> None:
        dataset = self.datasets.get(self._cics_required(params, "FILE"))
        key = self._cics_key(params)
        if dataset is None or not dataset.is_indexed or key not in dataset.keyed:
            self._cics_condition("NOTFND", params)
            return
        dataset.keyed[key] = self._cics_area(params, "FROM").text
        self._cics_normal(params)

    def _cics_delete(self, params: Dict[str, Optional[Operand]]) -> None:
        dataset = self.datasets.get(self._cics_required(params, "FILE"))
        key = self._cics_key(params)
        if dataset is None or not dataset.is_indexed or key not in dataset.keyed:
            self._cics_condition("NOTFND", params)
            return
        del dataset.keyed[key]
        self._cics_normal(params)

    def _cics_return(self, params: Dict[str, Optional[Operand]]) -> None:
        trans_id = self._cics_name(params.get("TRANSID"))
        if trans_id:
            commarea = params.get("COMMAREA")
            if isinstance(commarea, VariableRef):
                text = self._cell(commarea.name).text
            elif isinstance(commarea, Literal):
                text = plain_text(commarea.value)
            else:
                text = ""
            self.cics.next_transaction = NextTransaction(trans_id, text)
        if self._frame().linked:
            raise _ProgramExit()
        raise _StopRun()

    def _cics_link(self, params: Dict[str, Optional[Operand]]) -> Task:
        name = self._cics_required(params, "PROGRAM")
        program = self.programs.get(name)
        if program is None:
            raise RuntimeAbend("IGZ0002S", f"LINK TO UNDEFINED PROGRAM '{name}'.")
        bindings = {}
        commarea = params.get("COMMAREA")
        if isinstance(commarea, VariableRef):
            bindings["DFHCOMMAREA"] = self._handle(commarea.name)
        yield from self._invoke(program, bindings, linked=True)
        self._cics_normal(params)

    def _cics_handle_condition(self, params: Dict[str, Optional[Operand]]) -> None:
        for condition, label in params.items():
            if isinstance(label, VariableRef):
                self.cics.handlers[condition] = label.name
            elif isinstance(label, Literal):
                self.cics.handlers[condition] = plain_text(label.value).strip().upper()


def _comparable_number(value: Value) -> Optional[Decimal]:
    if isinstance(value, Decimal):
        return value
    if not value.strip():
        return None
    return parse_number(value)

"""Tests for the interpreter: storage rules, control flow, CALL and suspension."""

import pytest
from decimal import Decimal

# Path is setup in conftest.py

from cobol_ast import STATEMENT_TYPES, PicType
from cobol_ast.nodes import CicsCommand
from runtime import (
    InputRequest,
    RunStatus,
    Runtime,
    RuntimeOptions,
    RuntimeStateError,
)


def run(program, **runtime_args):
    runtime = Runtime(**runtime_args)
    return runtime, runtime.run(program)


class TestMoveSemantics:
    """Tests for PICTURE-driven storage rules."""

    def test_alphanumeric_truncation_and_padding(self, build_program):
        """Test that long values are truncated and short ones space padded."""
        program = build_program(
            ['MOVE "ABCDEF" TO WS-SHORT', 'MOVE "AB" TO WS-LONG.'],
            working_storage=["01 WS-SHORT PIC X(3).", "01 WS-LONG PIC X(6)."],
        )
        runtime, result = run(program)
        memory = runtime.get_memory()

        assert result.completed
        assert memory["WS-SHORT"].value == "ABC"
        assert memory["WS-LONG"].value == "AB    "

    def test_numeric_overflow_keeps_low_order_digits(self, build_program):
        """Test that numeric cells store value mod 10^length."""
        program = build_program(
            ["MOVE 12345 TO WS-NUM", "ADD 999 TO WS-WRAP."],
            working_storage=["01 WS-NUM PIC 9(3).", "01 WS-WRAP PIC 9(3) VALUE 1."],
        )
        runtime, _ = run(program)
        memory = runtime.get_memory()

        assert memory["WS-NUM"].value == Decimal(345)
        assert memory["WS-WRAP"].value == Decimal(0)

    def test_reference_modification(self, build_program):
        """Test MOVE into a (start:length) substring."""
        program = build_program(
            ['MOVE "XY" TO WS-TEXT(2:2).'],
            working_storage=['01 WS-TEXT PIC X(6) VALUE "ABCDEF".'],
        )
        runtime, _ = run(program)
        assert runtime.get_memory()["WS-TEXT"].value == "AXYDEF"

    def test_numeric_item_to_alphanumeric(self, build_program):
        """Test that numbers are moved as their display text."""
        program = build_program(
            ["MOVE WS-NUM TO WS-TEXT."],
            working_storage=["01 WS-NUM PIC 9(3) VALUE 42.", "01 WS-TEXT PIC X(6)."],
        )
        runtime, _ = run(program)
        assert runtime.get_memory()["WS-TEXT"].value == "42    "

    def test_figurative_constants(self, build_program):
        """Test ZERO into PIC X and SPACES into PIC 9."""
        program = build_program(
            ["MOVE ZERO TO WS-TEXT", "MOVE SPACES TO WS-NUM."],
            working_storage=['01 WS-TEXT PIC X(4) VALUE "ABCD".', "01 WS-NUM PIC 9(2) VALUE 12."],
        )
        runtime, _ = run(program)
        memory = runtime.get_memory()

        assert memory["WS-TEXT"].value == "0000"
        assert memory["WS-NUM"].value == Decimal(0)

    def test_invalid_numeric_data_abends(self, build_program):
        """Test that moving non-numeric text into a PIC 9 item abends."""
        program = build_program(
            ['DISPLAY "START"', "MOVE WS-TEXT TO WS-NUM", 'DISPLAY "NOT REACHED".'],
            working_storage=['01 WS-TEXT PIC X(3) VALUE "ABC".', "01 WS-NUM PIC 9(3)."],
        )
        _, result = run(program)

        assert result.abended
        assert result.output == ["START"]
        assert result.errors[0].startswith("IGZ9999S RUNTIME TERMINATED ABNORMALLY: IGZ0020S")
        assert result.return_code == 16


class TestArithmetic:
    """Tests for ADD, SUBTRACT, MULTIPLY, DIVIDE and COMPUTE."""

    def test_arithmetic_verbs(self, build_program):
        """Test each verb against one accumulator."""
        program = build_program(
            [
                "ADD 5 TO WS-A",
                "SUBTRACT 3 FROM WS-A",
                "MULTIPLY 2 BY WS-A",
                "DIVIDE 4 INTO WS-A",
                "DIVIDE 20 BY 4 GIVING WS-B",
                "ADD WS-A TO WS-B GIVING WS-C.",
            ],
            working_storage=["01 WS-A PIC 9(4) VALUE 10.", "01 WS-B PIC 9(4).", "01 WS-C PIC 9(4)."],
        )
        runtime, _ = run(program)
        memory = runtime.get_memory()

        assert memory["WS-A"].value == Decimal(6)
        assert memory["WS-B"].value == Decimal(5)
        assert memory["WS-C"].value == Decimal(11)

    def test_division_truncates(self, build_program):
        """Test that a fractional quotient is truncated toward zero."""
        program = build_program(
            ["DIVIDE 4 INTO WS-A."], working_storage=["01 WS-A PIC 9(2) VALUE 6."]
        )
        runtime, _ = run(program)
        assert runtime.get_memory()["WS-A"].value == Decimal(1)

    def test_divide_by_zero_item(self, build_program):
        """Test that dividing by a zero-valued item abends."""
        program = build_program(
            ["DIVIDE WS-ZERO INTO WS-A."],
            working_storage=["01 WS-A PIC 9(2) VALUE 6.", "01 WS-ZERO PIC 9 VALUE 0."],
        )
        _, result = run(program)

        assert result.abended
        assert "IGZ0017S" in result.errors[0]

    def test_compute(self, build_program):
        """Test operator precedence, parentheses and ROUNDED."""
        program = build_program(
            ["COMPUTE WS-A = (2 + 3) * 4 - 10 / 4", "COMPUTE WS-B ROUNDED = 10 / 4."],
            working_storage=["01 WS-A PIC 9(3).", "01 WS-B PIC 9(3)."],
        )
        runtime, _ = run(program)
        memory = runtime.get_memory()

        assert memory["WS-A"].value == Decimal(17)
        assert memory["WS-B"].value == Decimal(3)


class TestControlFlow:
    """Tests for IF, PERFORM, DISPLAY and STOP RUN."""

    def test_perform_until_counts_to_six(self, build_program):
        """Test the classic counter loop: five iterations, counter ends at 6."""
        program = build_program(
            [
                "PERFORM UNTIL WS-COUNT > 5",
                "    ADD 1 TO WS-COUNT",
                "    ADD 1 TO WS-RUNS",
                "END-PERFORM.",
            ],
            working_storage=["01 WS-COUNT PIC 9(2) VALUE 1.", "01 WS-RUNS PIC 9(2) VALUE 0."],
        )
        runtime, _ = run(program)
        memory = runtime.get_memory()

        assert memory["WS-COUNT"].value == Decimal(6)
        assert memory["WS-RUNS"].value == Decimal(5)

    def test_perform_until_true_at_entry(self, build_program):
        """Test that a pre-test loop whose condition already holds never runs."""
        program = build_program(
            ["PERFORM UNTIL WS-COUNT = 1", '    DISPLAY "BODY"', "END-PERFORM."],
            working_storage=["01 WS-COUNT PIC 9 VALUE 1."],
        )
        _, result = run(program)
        assert result.output == []

    def test_perform_zero_times(self, build_program):
        """Test PERFORM n TIMES with n = 0."""
        program = build_program(
            ["PERFORM WS-N TIMES", '    DISPLAY "BODY"', "END-PERFORM."],
            working_storage=["01 WS-N PIC 9 VALUE 0."],
        )
        _, result = run(program)
        assert result.output == []

    def test_perform_paragraph_times(self, build_program):
        """Test out-of-line PERFORM of a paragraph a fixed number of times."""
        program = build_program(
            ["PERFORM SHOW-IT 3 TIMES", "STOP RUN.", " " * 7 + "SHOW-IT.", 'DISPLAY "HI".']
        )
        _, result = run(program)
        assert result.output == ["HI", "HI", "HI"]

    def test_paragraphs_fall_through(self, build_program):
        """Test that execution continues into the next paragraph without STOP RUN."""
        program = build_program(
            ['DISPLAY "A".', " " * 7 + "SECOND-PARA.", 'DISPLAY "B".']
        )
        _, result = run(program)
        assert result.output == ["A", "B"]

    def test_if_compares_padded_text(self, build_program):
        """Test that alphanumeric comparison pads the shorter operand."""
        program = build_program(
            [
                'IF WS-NAME = "AB"',
                '    DISPLAY "EQUAL"',
                "ELSE",
                '    DISPLAY "DIFFERENT"',
                "END-IF.",
            ],
            working_storage=['01 WS-NAME PIC X(5) VALUE "AB".'],
        )
        _, result = run(program)
        assert result.output == ["EQUAL"]

    def test_if_compares_numbers(self, build_program):
        """Test numeric comparison of an item and a literal."""
        program = build_program(
            ["IF WS-NUM < 10", '    DISPLAY "SMALL"', "END-IF."],
            working_storage=["01 WS-NUM PIC 9(3) VALUE 7."],
        )
        _, result = run(program)
        assert result.output == ["SMALL"]

    def test_display_concatenates_values(self, build_program):
        """Test that DISPLAY joins its operands and drops leading zeros."""
        program = build_program(
            ['DISPLAY "N=" WS-NUM " NAME=" WS-NAME.'],
            working_storage=["01 WS-NUM PIC 9(3) VALUE 7.", '01 WS-NAME PIC X(3) VALUE "AB".'],
        )
        _, result = run(program)
        assert result.output == ["N=7 NAME=AB "]

    def test_stop_run_ends_the_program(self, build_program):
        """Test that nothing after STOP RUN executes."""
        program = build_program(['DISPLAY "ONE"', "STOP RUN", 'DISPLAY "TWO".'])
        _, result = run(program)

        assert result.status == RunStatus.COMPLETED
        assert result.output == ["ONE"]

    def test_infinite_loop_preserves_output(self, build_program):
        """Test the iteration ceiling: fatal error, earlier output kept."""
        program = build_program(
            ['DISPLAY "BEFORE"', "PERFORM UNTIL WS-N > 5", '    DISPLAY "LOOP"', "END-PERFORM."],
            working_storage=["01 WS-N PIC 9 VALUE 0."],
        )
        _, result = run(program, options=RuntimeOptions(max_loop_iterations=10))

        assert result.abended
        assert result.output[0] == "BEFORE"
        assert result.output.count("LOOP") == 10
        assert "IGZ0099S" in result.errors[0]
        assert "INFINITE LOOP" in result.errors[0]


class TestAccept:
    """Tests for ACCEPT with handlers and suspension."""

    def test_input_handler_answers_accept(self, build_program):
        """Test that a host callback supplies ACCEPT input synchronously."""
        program = build_program(
            ["ACCEPT WS-NAME", "DISPLAY WS-NAME."], working_storage=["01 WS-NAME PIC X(5)."]
        )
        calls = []

        def handler(name, pic_type, length):
            calls.append((name, pic_type, length))
            return "JOHN"

        _, result = run(program, input_handler=handler)

        assert calls == [("WS-NAME", PicType.ALPHANUMERIC, 5)]
        assert result.output == ["> JOHN", "JOHN "]

    def test_accept_suspends_without_handler(self, build_program):
        """Test SUSPENDED status and resume with the typed value."""
        program = build_program(
            ['DISPLAY "ENTER"', "ACCEPT WS-NUM", "DISPLAY WS-NUM."],
            working_storage=["01 WS-NUM PIC 9(3)."],
        )
        runtime, result = run(program)

        assert result.suspended
        assert result.output == ["ENTER"]
        request = result.suspension.request
        assert isinstance(request, InputRequest)
        assert (request.variable, request.pic_type, request.length) == ("WS-NUM", PicType.NUMERIC, 3)

        resumed = runtime.resume(result.suspension.token, "42")
        assert resumed.completed
        assert resumed.output == ["ENTER", "> 42", "42"]

    def test_stale_token_is_rejected(self, build_program):
        """Test that only the current suspension token resumes the run."""
        program = build_program(
            ["ACCEPT WS-A", "ACCEPT WS-B."],
            working_storage=["01 WS-A PIC X.", "01 WS-B PIC X."],
        )
        runtime, first = run(program)
        second = runtime.resume(first.suspension.token, "A")

        assert second.suspended
        assert second.suspension.token != first.suspension.token
        with pytest.raises(RuntimeStateError):
            runtime.resume(first.suspension.token, "B")

        done = runtime.resume(second.suspension.token, "B")
        assert done.completed
        with pytest.raises(RuntimeStateError):
            runtime.resume(second.suspension.token, "C")

    def test_handler_returning_none_leaves_value(self, build_program):
        """Test that a None answer keeps the current value without echo."""
        program = build_program(
            ["ACCEPT WS-NAME", "DISPLAY WS-NAME."],
            working_storage=['01 WS-NAME PIC X(3) VALUE "OLD".'],
        )
        _, result = run(program, input_handler=lambda name, pic, length: None)
        assert result.output == ["OLD"]

    def test_new_run_abandons_suspension(self, build_program):
        """Test that run() starts over even when a run is suspended."""
        program = build_program(
            ['DISPLAY "HELLO"', "ACCEPT WS-A."], working_storage=["01 WS-A PIC X."]
        )
        runtime, first = run(program)
        second = runtime.run(program)

        assert second.suspended
        assert second.output == ["HELLO"]
        with pytest.raises(RuntimeStateError):
            runtime.resume(first.suspension.token, "X")


class TestCall:
    """Tests for CALL, EXIT PROGRAM and GOBACK."""

    @pytest.fixture
    def doubler(self, build_program):
        return build_program(
            ["MULTIPLY 2 BY LK-AMOUNT", "GOBACK."],
            program_id="DOUBLER",
            linkage=["01 LK-AMOUNT PIC 9(5)."],
            using=["LK-AMOUNT"],
        )

    def test_call_by_reference(self, build_program, doubler):
        """Test that the callee updates the caller's item through Linkage."""
        main = build_program(
            ['CALL "DOUBLER" USING WS-AMOUNT', 'DISPLAY "AMOUNT " WS-AMOUNT', "STOP RUN."],
            working_storage=["01 WS-AMOUNT PIC 9(5) VALUE 100."],
        )
        runtime = Runtime()
        runtime.register_program(doubler)
        result = runtime.run(main)

        assert result.output == ["AMOUNT 200"]
        assert runtime.call_stack == ["TESTPGM"]
        assert len(runtime.arena) == 1

    def test_parameter_count_mismatch(self, build_program, doubler):
        """Test that passing more arguments than the callee declares abends."""
        main = build_program(
            ['CALL "DOUBLER" USING WS-A WS-B.'],
            working_storage=["01 WS-A PIC 9(5).", "01 WS-B PIC 9(5)."],
        )
        runtime = Runtime()
        runtime.register_program(doubler)
        result = runtime.run(main)

        assert result.abended
        assert "IGZ0003S" in result.errors[0]

    def test_undefined_program(self, build_program):
        """Test CALL to a program that was never registered."""
        _, result = run(build_program(['CALL "NOWHERE".']))

        assert result.abended
        assert "IGZ0002S" in result.errors[0]
        assert "NOWHERE" in result.errors[0]

    def test_exit_program_returns_to_caller(self, build_program):
        """Test EXIT PROGRAM in a subprogram and as a no-op in the main program."""
        sub = build_program(
            ['DISPLAY "IN SUB"', "EXIT PROGRAM", 'DISPLAY "NOT REACHED".'], program_id="SUB"
        )
        main = build_program(['CALL "SUB"', "EXIT PROGRAM", 'DISPLAY "BACK".'])
        runtime = Runtime()
        runtime.register_program(sub)
        result = runtime.run(main)

        assert result.output == ["IN SUB", "BACK"]

    def test_goback_in_main_ends_run(self, build_program):
        """Test that GOBACK from the main program ends the run."""
        _, result = run(build_program(['DISPLAY "A"', "GOBACK", 'DISPLAY "B".']))

        assert result.completed
        assert result.output == ["A"]

    def test_stack_overflow(self, build_program):
        """Test that unbounded recursion hits the stack depth limit."""
        program = build_program(['CALL "RECUR"', "GOBACK."], program_id="RECUR")
        runtime = Runtime(options=RuntimeOptions(max_stack_depth=5))
        result = runtime.run(program)

        assert result.abended
        assert "STACK OVERFLOW" in result.errors[0]
        assert runtime.call_stack == ["RECUR"]


class TestNestingLimits:
    """Tests for the statement nesting ceiling."""

    @pytest.fixture
    def self_performing(self, build_program):
        return build_program(
            [
                'DISPLAY "BEGIN"',
                "PERFORM LOOP-PARA",
                "STOP RUN.",
                " " * 7 + "LOOP-PARA.",
                "ADD 1 TO WS-N",
                "PERFORM LOOP-PARA.",
            ],
            working_storage=["01 WS-N PIC 9(5) VALUE 0."],
        )

    def test_recursive_call_inside_nested_scopes(self, build_program):
        """Test that recursion through IF and PERFORM bodies abends with default limits."""
        program = build_program(
            [
                'DISPLAY "START"',
                "IF WS-ON = 1",
                "    PERFORM 1 TIMES",
                "        IF WS-ON = 1",
                "            PERFORM UNTIL WS-ON = 2",
                '                CALL "TESTPGM"',
                "            END-PERFORM",
                "        END-IF",
                "    END-PERFORM",
                "END-IF.",
            ],
            working_storage=["01 WS-ON PIC 9 VALUE 1."],
        )
        runtime, result = run(program)

        assert result.abended
        assert "IGZ0099S STACK OVERFLOW" in result.errors[0]
        assert result.output[0] == "START"
        assert set(result.output) == {"START"}
        assert runtime.call_stack == ["TESTPGM"]

    def test_paragraph_performing_itself(self, self_performing):
        """Test that a paragraph PERFORMing itself abends instead of recursing forever."""
        runtime, result = run(self_performing)

        assert result.abended
        assert "IGZ0099S STACK OVERFLOW" in result.errors[0]
        assert result.output == ["BEGIN"]
        assert runtime.get_memory()["WS-N"].value > 0

    def test_configured_nesting_depth(self, self_performing):
        """Test the exact number of nested paragraph entries under a small ceiling."""
        runtime, result = run(self_performing, options=RuntimeOptions(max_nesting_depth=10))

        assert result.abended
        # ADD runs at nesting levels 2 through 10
        assert runtime.get_memory()["WS-N"].value == 9

    def test_interpreter_recursion_limit_is_an_abend(self, self_performing):
        """Test that exhausting Python recursion still yields an abended result."""
        options = RuntimeOptions(max_stack_depth=1000000, max_nesting_depth=1000000)
        _, result = run(self_performing, options=options)

        assert result.abended
        assert "IGZ0099S STACK OVERFLOW" in result.errors[0]
        assert result.output == ["BEGIN"]

    def test_nesting_resets_between_runs(self, build_program):
        """Test that an abended run does not leave nesting behind for the next run."""
        recursive = build_program(
            ['PERFORM AGAIN', "STOP RUN.", " " * 7 + "AGAIN.", "PERFORM AGAIN."]
        )
        runtime = Runtime(options=RuntimeOptions(max_nesting_depth=20))
        assert runtime.run(recursive).abended

        flat = build_program(['DISPLAY "OK".'], program_id="FLAT")
        result = runtime.run(flat)

        assert result.completed
        assert result.output == ["OK"]


class TestRuntimeState:
    """Tests for host-facing runtime state."""

    def test_every_statement_kind_has_a_handler(self):
        """Test that dispatch covers the closed statement vocabulary."""
        runtime = Runtime()
        assert set(runtime._handlers) == set(STATEMENT_TYPES)
        assert set(runtime._cics_handlers) == set(CicsCommand)

    def test_resume_without_suspension(self):
        """Test resume on an idle runtime."""
        with pytest.raises(RuntimeStateError):
            Runtime().resume(1, "X")

    def test_unknown_transaction(self):
        """Test run_transaction with nothing registered."""
        with pytest.raises(RuntimeStateError):
            Runtime().run_transaction("ZZZZ")

    def test_runs_start_with_fresh_storage(self, build_program):
        """Test that a second run re-initializes Working-Storage."""
        program = build_program(
            ["ADD 1 TO WS-N", "DISPLAY WS-N."], working_storage=["01 WS-N PIC 9 VALUE 0."]
        )
        runtime = Runtime()

        assert runtime.run(program).output == ["1"]
        assert runtime.run(program).output == ["1"]

    def test_memory_is_a_copy(self, build_program):
        """Test that get_memory returns copies the host cannot corrupt."""
        program = build_program(['DISPLAY "X".'], working_storage=["01 WS-N PIC 9 VALUE 5."])
        runtime, _ = run(program)

        runtime.get_memory()["WS-N"].value = Decimal(9)
        assert runtime.get_memory()["WS-N"].value == Decimal(5)

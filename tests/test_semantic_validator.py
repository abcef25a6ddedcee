"""Tests for the semantic validator."""

import pytest

# Path is setup in conftest.py

from analyzers import SemanticAnalyzer, Severity, has_errors, max_severity, return_code, validate_semantics
from parser import parse_source

AREA_A = " " * 7
AREA_B = " " * 11

WORKING_STORAGE = [
    "01 WS-NUM PIC 9(3).",
    "01 WS-NAME PIC X(5).",
]


def program_source(procedure, working_storage=WORKING_STORAGE, extra_data=()):
    lines = [
        AREA_A + "IDENTIFICATION DIVISION.",
        AREA_A + "PROGRAM-ID. CHECKS.",
        AREA_A + "DATA DIVISION.",
        AREA_A + "WORKING-STORAGE SECTION.",
    ]
    lines += [AREA_A + entry for entry in working_storage]
    lines += [AREA_A + entry for entry in extra_data]
    lines.append(AREA_A + "PROCEDURE DIVISION.")
    lines += [line if line.startswith(AREA_A) else AREA_B + line for line in procedure]
    return "\n".join(lines)


def codes(procedure, **kwargs):
    program = parse_source(program_source(procedure, **kwargs))
    return [d.code for d in validate_semantics(program)]


class TestSymbolTable:
    """Tests for the declaration pass."""

    def test_clean_program(self):
        """Test that a well-typed program produces no diagnostics."""
        assert codes(["MOVE 12 TO WS-NUM", "MOVE 'AB' TO WS-NAME", "DISPLAY WS-NAME WS-NUM", "STOP RUN."]) == []

    def test_duplicate_symbol(self):
        """Test that a second declaration with the same name is an error."""
        program = parse_source(
            program_source(["STOP RUN."], working_storage=WORKING_STORAGE + ["01 WS-NUM PIC 9."])
        )
        analyzer = SemanticAnalyzer(program)
        diagnostics = analyzer.analyze()

        assert [d.code for d in diagnostics] == ["IGYPS2112-S"]
        assert diagnostics[0].severity == Severity.ERROR
        assert analyzer.symbols["WS-NUM"].length == 3

    def test_symbol_sections(self):
        """Test that symbols remember the section they were declared in."""
        program = parse_source(
            program_source(["GOBACK."], extra_data=["LINKAGE SECTION.", "01 LK-A PIC X."])
        )
        analyzer = SemanticAnalyzer(program)
        analyzer.analyze()

        assert analyzer.symbols["WS-NAME"].section == "WORKING-STORAGE"
        assert analyzer.symbols["LK-A"].section == "LINKAGE"

    def test_using_item_must_be_in_linkage(self):
        """Test PROCEDURE DIVISION USING a working-storage item."""
        source = program_source(["GOBACK."]).replace(
            "PROCEDURE DIVISION.", "PROCEDURE DIVISION USING WS-NUM."
        )
        diagnostics = validate_semantics(parse_source(source))
        assert [d.code for d in diagnostics] == ["IGYPS2122-E"]

    def test_undeclared_identifier(self):
        """Test that every reference to an unknown name is reported."""
        diagnostics = validate_semantics(parse_source(program_source(["MOVE WS-GHOST TO WS-NAME."])))

        assert diagnostics[0].code == "IGYPS2001-E"
        assert "WS-GHOST" in diagnostics[0].message
        assert diagnostics[0].line == 8


class TestMoveChecks:
    """Tests for MOVE compatibility rules."""

    def test_numeric_literal_to_alphanumeric(self):
        """Test that a numeric literal cannot move to a PIC X item."""
        assert codes(["MOVE 5 TO WS-NAME."]) == ["IGYPS2104-E"]

    def test_alphanumeric_literal_to_numeric(self):
        """Test that non-numeric text cannot move to a PIC 9 item."""
        assert codes(["MOVE 'ABC' TO WS-NUM."]) == ["IGYPS2104-E"]

    def test_numeric_text_literal_to_numeric(self):
        """Test that a quoted number is accepted for a numeric item."""
        assert codes(["MOVE '42' TO WS-NUM."]) == []

    def test_figurative_constants_move_anywhere(self):
        """Test that ZERO and SPACES are never type errors."""
        assert codes(["MOVE ZERO TO WS-NAME", "MOVE SPACES TO WS-NUM."]) == []

    def test_alphanumeric_item_to_numeric_warns(self):
        """Test the conversion warning for PIC X to PIC 9 moves."""
        assert codes(["MOVE WS-NAME TO WS-NUM."]) == ["IGYPS4006-W"]

    def test_reference_modification_of_numeric(self):
        """Test that reference modification needs an alphanumeric target."""
        assert codes(["MOVE '1' TO WS-NUM(1:1)."]) == ["IGYPS2113-E"]

    def test_reference_modification_out_of_range(self):
        """Test that (start:length) must fit inside the item."""
        assert codes(["MOVE 'AB' TO WS-NAME(4:3)."]) == ["IGYPS2160-E"]


class TestArithmeticChecks:
    """Tests for arithmetic and COMPUTE rules."""

    def test_non_numeric_operand(self):
        """Test ADD with an alphanumeric literal."""
        program = parse_source(program_source(['ADD "X" TO WS-NUM.']))
        diagnostics = validate_semantics(program)

        assert [d.code for d in diagnostics] == ["IGYPS2113-E"]
        assert "FOR ADD" in diagnostics[0].message

    def test_non_numeric_receiving_item(self):
        """Test SUBTRACT into a PIC X item."""
        assert codes(["SUBTRACT 1 FROM WS-NAME."]) == ["IGYPS2113-E"]

    def test_giving_target_must_be_numeric(self):
        """Test MULTIPLY ... GIVING a PIC X item."""
        assert codes(["MULTIPLY 2 BY WS-NUM GIVING WS-NAME."]) == ["IGYPS2113-E"]

    def test_divide_by_zero_literal(self):
        """Test both DIVIDE forms with a zero divisor."""
        assert codes(["DIVIDE 0 INTO WS-NUM."]) == ["IGYPS2146-E"]
        assert codes(["DIVIDE WS-NUM BY 0 GIVING WS-NUM."]) == ["IGYPS2146-E"]

    def test_compute_expression(self):
        """Test COMPUTE operand types and literal division by zero."""
        assert codes(["COMPUTE WS-NUM = WS-NUM * 2 + 1."]) == []
        assert codes(["COMPUTE WS-NUM = WS-NAME + 1."]) == ["IGYPS2113-E"]
        assert codes(["COMPUTE WS-NUM = WS-NUM / 0."]) == ["IGYPS2146-E"]
        assert codes(["COMPUTE WS-NAME = 1."]) == ["IGYPS2113-E"]


class TestControlFlowChecks:
    """Tests for IF, PERFORM and ACCEPT rules."""

    def test_numeric_compared_with_text(self):
        """Test comparing a numeric item with non-numeric text."""
        assert codes(["IF WS-NUM = 'ABC'", '    DISPLAY "X"', "END-IF."]) == ["IGYPS4002-W"]

    def test_undefined_paragraph(self):
        """Test PERFORM of a missing paragraph."""
        assert codes(["PERFORM NOWHERE."]) == ["IGYPS2121-E"]

    def test_invalid_times_value(self):
        """Test PERFORM 0 TIMES."""
        assert codes(["PERFORM 0 TIMES", '    DISPLAY "X"', "END-PERFORM."]) == ["IGYPS2135-E"]

    def test_times_identifier_must_be_numeric(self):
        """Test PERFORM with an alphanumeric TIMES item."""
        assert codes(["PERFORM WS-NAME TIMES", '    DISPLAY "X"', "END-PERFORM."]) == ["IGYPS2113-E"]

    def test_static_until_condition(self):
        """Test the infinite loop warning for literal-only UNTIL conditions."""
        assert codes(["PERFORM SHOW-IT UNTIL 1 = 2.", "STOP RUN.", AREA_A + "SHOW-IT.", "DISPLAY 'X'."]) == [
            "IGYPS4001-W"
        ]

    def test_nested_statements_are_checked(self):
        """Test that statements inside IF bodies are validated."""
        assert codes(["IF WS-NUM = 1", "    MOVE WS-GHOST TO WS-NAME", "END-IF."]) == ["IGYPS2001-E"]

    def test_accept_into_numeric_warns(self):
        """Test that ACCEPT into a PIC 9 item is a warning."""
        program = parse_source(program_source(["ACCEPT WS-NUM."]))
        diagnostics = validate_semantics(program)

        assert [d.code for d in diagnostics] == ["IGYPS4005-W"]
        assert max_severity(diagnostics) == Severity.WARNING
        assert return_code(diagnostics) == 4
        assert not has_errors(diagnostics)


class TestFileAndCicsChecks:
    """Tests for file and EXEC CICS rules."""

    def test_unknown_file(self):
        """Test OPEN of a file missing from FILE-CONTROL."""
        assert codes(["OPEN INPUT NO-FILE."]) == ["IGYPS2123-E"]

    def test_write_needs_file_record(self):
        """Test WRITE of a working-storage item."""
        assert codes(["WRITE WS-NAME."]) == ["IGYPS2124-E"]

    def test_undefined_map(self):
        """Test SEND MAP of a map that is not in the MAP SECTION."""
        assert codes(["EXEC CICS SEND MAP('NOPE') END-EXEC."]) == ["IGYPS2125-E"]

    def test_handle_condition_label(self):
        """Test HANDLE CONDITION pointing at a missing paragraph."""
        assert codes(["EXEC CICS HANDLE CONDITION NOTFND(MISSING-PARA) END-EXEC."]) == ["IGYPS4010-W"]

    def test_cics_data_areas_must_exist(self):
        """Test that INTO/RIDFLD names are resolved."""
        assert codes(["EXEC CICS READ FILE('CUST') INTO(WS-GHOST)", "    RIDFLD(WS-NUM) END-EXEC."]) == [
            "IGYPS2001-E"
        ]


class TestOrdering:
    """Tests for diagnostic ordering."""

    @pytest.fixture
    def diagnostics(self):
        source = program_source(["ACCEPT WS-NUM", "MOVE 5 TO WS-NAME", "PERFORM NOWHERE."])
        return validate_semantics(parse_source(source))

    def test_sorted_by_position(self, diagnostics):
        """Test that diagnostics come back in source order."""
        assert [d.line for d in diagnostics] == [8, 9, 10]

    def test_worst_severity_wins(self, diagnostics):
        """Test that MAXCC reflects the worst diagnostic."""
        assert return_code(diagnostics) == 12

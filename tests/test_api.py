"""Tests for the public compile API."""

import pytest
from pathlib import Path

# Path is setup in conftest.py

from cobol_ast import (
    CompilationResult,
    CompileOptions,
    build_debug_tree,
    compile_file,
    compile_source,
    statement_lines,
)
from cobol_ast.debug_tree import find_innermost
from runtime import Runtime


# Path to test fixtures
FIXTURES_DIR = Path(__file__).parent / "fixtures"


class TestCompileFile:
    """Tests for the compile_file function."""

    def test_clean_program(self):
        """Test compiling a program with no diagnostics."""
        result = compile_file(FIXTURES_DIR / "hello.cob")

        assert isinstance(result, CompilationResult)
        assert result.succeeded
        assert result.return_code == 0
        assert result.program.program_id == "HELLO"
        assert result.source_name == "hello.cob"
        assert result.diagnostics == []
        assert result.execution_time_seconds >= 0

    def test_warnings_do_not_block_execution(self):
        """Test that a warning-only compile succeeds with MAXCC 4."""
        result = compile_file(FIXTURES_DIR / "warnings.cob")

        assert result.succeeded
        assert result.return_code == 4
        assert [d.code for d in result.diagnostics] == ["IGYPS4005-W"]

    def test_errors_block_execution(self):
        """Test that a semantic error keeps the program but fails the compile."""
        result = compile_file(FIXTURES_DIR / "errors.cob")

        assert not result.succeeded
        assert result.program is not None
        assert result.return_code == 12

    def test_copybook_paths(self):
        """Test COPY REPLACING resolved from a copybook directory."""
        options = CompileOptions(copybook_paths=[FIXTURES_DIR / "copybooks"])
        result = compile_file(FIXTURES_DIR / "customer.cob", options)

        assert result.succeeded
        names = [d.name for d in result.program.data_division.working_storage]
        assert names == ["WS-CUST-NAME", "WS-CUST-BALANCE", "WS-TOTAL"]

        output = Runtime().run(result.program).output
        assert output == ["ACME".ljust(20) + " 250"]

    def test_original_location(self):
        """Test mapping expanded lines back to the copybook and the main file."""
        options = CompileOptions(copybook_paths=[FIXTURES_DIR / "copybooks"])
        result = compile_file(FIXTURES_DIR / "customer.cob", options)

        assert result.original_location(7) == (2, "CUSTREC", True)
        assert result.original_location(2)[0] == 2
        assert result.original_location(2)[2] is False

    def test_missing_file(self):
        """Test that a nonexistent source path raises."""
        with pytest.raises(FileNotFoundError):
            compile_file(FIXTURES_DIR / "nonexistent.cob")

    def test_directory_is_not_a_source(self):
        """Test that a directory path raises."""
        with pytest.raises(FileNotFoundError):
            compile_file(FIXTURES_DIR)


class TestMissingCopybook:
    """Tests for the missing-copybook result and retry."""

    def test_missing_copy_reported(self):
        """Test that the missing copybook is a value, not an exception."""
        result = compile_file(FIXTURES_DIR / "missing_copy.cob")

        assert not result.succeeded
        assert result.program is None
        assert result.return_code == 12
        assert result.missing_copy.name == "NOSUCHBOOK"
        assert result.missing_copy.line == 5

    def test_retry_with_library(self):
        """Test supplying the missing copybook and compiling again."""
        source = (FIXTURES_DIR / "missing_copy.cob").read_text()
        first = compile_source(source)
        library = {first.missing_copy.name: "       01 WS-FLAG PIC X."}
        second = compile_source(source, CompileOptions(library=library))

        assert second.succeeded
        assert second.program.data_division.working_storage[0].name == "WS-FLAG"


class TestCompileSource:
    """Tests for compile_source on in-memory text."""

    def test_lex_error_is_a_value(self):
        """Test that a lexical error is returned with its position."""
        source = "\n".join(
            [
                "       IDENTIFICATION DIVISION.",
                "       PROGRAM-ID. BROKEN.",
                "       PROCEDURE DIVISION.",
                '           DISPLAY "OOPS.',
            ]
        )
        result = compile_source(source)

        assert not result.succeeded
        assert result.error.startswith("IGYPS2002-S")
        assert result.error_line == 4
        assert result.return_code == 12

    def test_syntax_error_is_a_value(self):
        """Test that a parse error is returned rather than raised."""
        source = "\n".join(
            [
                "       IDENTIFICATION DIVISION.",
                "       PROGRAM-ID. BROKEN.",
                "       PROCEDURE DIVISION.",
                "           ELSE.",
            ]
        )
        result = compile_source(source)

        assert result.program is None
        assert result.error.startswith("IGYPS2120-S")
        assert result.error_line == 4

    def test_validators_can_be_skipped(self):
        """Test run_validators=False leaves diagnostics empty."""
        source = (FIXTURES_DIR / "errors.cob").read_text()
        result = compile_source(source, CompileOptions(run_validators=False))

        assert result.diagnostics == []
        assert result.succeeded

    def test_column_and_semantic_diagnostics_merge(self):
        """Test that both validators feed one position-ordered list."""
        source = (FIXTURES_DIR / "errors.cob").read_text().replace(
            "           STOP RUN.", "       STOP RUN."
        )
        result = compile_source(source)

        assert [d.code for d in result.diagnostics] == ["IGYPS2113-E", "IGYDS1088-S"]


class TestDebugTree:
    """Tests for the source-mapped structural tree."""

    @pytest.fixture
    def program(self):
        return compile_file(FIXTURES_DIR / "hello.cob").program

    def test_tree_shape(self, program):
        """Test the division and paragraph nodes."""
        tree = build_debug_tree(program)

        assert tree.kind == "PROGRAM"
        assert tree.name == "HELLO"
        assert [child.kind for child in tree.children] == ["DATA DIVISION", "PROCEDURE DIVISION"]

        data = tree.children[0]
        assert [child.name for child in data.children] == ["WS-NAME", "WS-COUNT"]

        paragraph = tree.children[1].children[0]
        assert paragraph.kind == "PARAGRAPH"
        assert paragraph.name == "MAIN-PARA"
        assert [child.kind for child in paragraph.children] == ["DISPLAY", "PERFORM", "STOPRUN"]

    def test_nested_body(self, program):
        """Test that the inline PERFORM body spans its statements."""
        perform = build_debug_tree(program).children[1].children[0].children[1]

        assert (perform.start_line, perform.end_line) == (11, 14)
        body = perform.children[0]
        assert body.kind == "BODY"
        assert (body.start_line, body.end_line) == (12, 13)

    def test_find_innermost(self, program):
        """Test locating the deepest node for a line."""
        tree = build_debug_tree(program)

        assert find_innermost(tree, 13).kind == "ADD"
        assert find_innermost(tree, 6).kind == "VARIABLE"

    def test_statement_lines(self, program):
        """Test the executable lines used to validate breakpoints."""
        assert statement_lines(program) == [10, 11, 12, 13, 15]

    def test_result_debug_tree(self):
        """Test the CompilationResult shortcut and its dictionary form."""
        result = compile_file(FIXTURES_DIR / "hello.cob")
        tree = result.debug_tree().to_dict()

        assert tree["kind"] == "PROGRAM"
        assert tree["name"] == "HELLO"
        assert compile_file(FIXTURES_DIR / "missing_copy.cob").debug_tree() is None

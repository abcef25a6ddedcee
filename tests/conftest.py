"""Shared pytest configuration: puts src/ on sys.path and provides fixtures."""

import sys
from pathlib import Path

import pytest

SRC_PATH = Path(__file__).parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from cobol_ast import CompileOptions, compile_source  # noqa: E402

AREA_A = " " * 7
AREA_B = " " * 11


@pytest.fixture
def fixtures_path():
    """Directory holding sample programs, copybooks and configs."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def build_source():
    """Assemble a fixed-format program from its parts.

    Entries are placed in Area A; procedure lines already starting in
    Area A (paragraph labels) are kept, everything else goes to Area B.
    """

    def _build(
        procedure,
        working_storage=(),
        linkage=(),
        program_id="TESTPGM",
        using=(),
        select=(),
        file_section=(),
        map_section=(),
    ):
        lines = [AREA_A + "IDENTIFICATION DIVISION.", AREA_A + f"PROGRAM-ID. {program_id}."]
        if select:
            lines += [
                AREA_A + "ENVIRONMENT DIVISION.",
                AREA_A + "INPUT-OUTPUT SECTION.",
                AREA_A + "FILE-CONTROL.",
            ]
            lines += [AREA_B + entry for entry in select]
        lines.append(AREA_A + "DATA DIVISION.")
        for header, entries in (
            ("FILE SECTION.", file_section),
            ("WORKING-STORAGE SECTION.", working_storage),
            ("LINKAGE SECTION.", linkage),
            ("MAP SECTION.", map_section),
        ):
            if entries:
                lines.append(AREA_A + header)
                lines += [AREA_A + entry for entry in entries]
        header = "PROCEDURE DIVISION"
        if using:
            header += " USING " + " ".join(using)
        lines.append(AREA_A + header + ".")
        lines += [line if line.startswith(AREA_A) else AREA_B + line for line in procedure]
        return "\n".join(lines)

    return _build


@pytest.fixture
def compile_program():
    """Compile source text and fail the test if it does not compile cleanly."""

    def _compile(source, library=None):
        result = compile_source(source, CompileOptions(library=library or {}))
        assert result.succeeded, [result.error] + [d.format() for d in result.diagnostics]
        return result.program

    return _compile


@pytest.fixture
def build_program(build_source, compile_program):
    """Build and compile a program in one step."""

    def _build_program(procedure, **parts):
        return compile_program(build_source(procedure, **parts))

    return _build_program

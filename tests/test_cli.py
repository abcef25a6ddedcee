"""Tests for the cobol-sim command line interface."""

import json
import sys
from pathlib import Path

import pytest

# Path is setup in conftest.py

from main import load_config, main

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def run_cli(monkeypatch, *argv):
    """Invoke main() with the given arguments and return its exit code."""
    monkeypatch.setattr(sys, "argv", ["cobol-sim", *[str(arg) for arg in argv]])
    with pytest.raises(SystemExit) as exc_info:
        main()
    return exc_info.value.code


class TestLoadConfig:
    """Tests for YAML configuration loading."""

    def test_defaults(self):
        """Test the configuration used when no file is given."""
        config = load_config(None)

        assert config["runtime"]["max_loop_iterations"] == 100000
        assert config["runtime"]["max_nesting_depth"] == 150
        assert config["output"]["pretty_print"] is True
        assert config["datasets"] == {}

    def test_merge_with_file(self):
        """Test that nested sections merge key by key."""
        config = load_config(FIXTURES_DIR / "config.yaml")

        assert config["runtime"]["max_loop_iterations"] == 500
        assert config["runtime"]["max_stack_depth"] == 100
        assert config["output"]["pretty_print"] is False
        assert config["output"]["indent_size"] == 2
        assert config["copybook_paths"] == []
        assert config["datasets"]["INPUT.TXT"]["records"] == ["FIRST", "SECOND"]

    def test_missing_file_uses_defaults(self, tmp_path):
        """Test that a nonexistent config path is ignored."""
        assert load_config(tmp_path / "absent.yaml") == load_config(None)


class TestCheckCommand:
    """Tests for the check subcommand."""

    def test_clean_source(self, monkeypatch, capsys):
        """Test that a clean program exits 0 with a listing."""
        code = run_cli(monkeypatch, "check", FIXTURES_DIR / "hello.cob", "-q")

        assert code == 0
        assert capsys.readouterr().out.splitlines() == ["MAXCC=0000"]

    def test_exit_code_is_maxcc(self, monkeypatch):
        """Test warning and error exit codes."""
        assert run_cli(monkeypatch, "check", FIXTURES_DIR / "warnings.cob", "-q") == 4
        assert run_cli(monkeypatch, "check", FIXTURES_DIR / "errors.cob", "-q") == 12

    def test_json_report(self, monkeypatch, capsys):
        """Test the JSON report on stdout."""
        code = run_cli(monkeypatch, "check", FIXTURES_DIR / "warnings.cob", "--json", "-q")
        report = json.loads(capsys.readouterr().out)

        assert code == 4
        assert report["program_id"] == "WARNS"
        assert report["diagnostics"][0]["code"] == "IGYPS4005-W"

    def test_json_report_to_file(self, monkeypatch, tmp_path):
        """Test writing the JSON report to a file."""
        output_path = tmp_path / "report.json"
        run_cli(monkeypatch, "check", FIXTURES_DIR / "hello.cob", "--json", "-o", output_path, "-q")

        assert json.loads(output_path.read_text())["return_code"] == 0

    def test_missing_source(self, monkeypatch, tmp_path):
        """Test that an unreadable source is a fatal error."""
        assert run_cli(monkeypatch, "check", tmp_path / "nonexistent.cob", "-q") == 12


class TestExpandCommand:
    """Tests for the expand subcommand."""

    def test_expand_with_copybook_path(self, monkeypatch, capsys):
        """Test printing the COPY-expanded source."""
        code = run_cli(
            monkeypatch, "expand", FIXTURES_DIR / "customer.cob", "-c", FIXTURES_DIR / "copybooks", "-q"
        )
        out = capsys.readouterr().out

        assert code == 0
        assert "01 WS-CUST-NAME PIC X(20)." in out
        assert "*++ BEGIN COPY CUSTREC" in out

    def test_expand_to_file(self, monkeypatch, tmp_path):
        """Test writing the expanded source to a file."""
        output_path = tmp_path / "expanded.cob"
        code = run_cli(monkeypatch, "expand", FIXTURES_DIR / "hello.cob", "-o", output_path, "-q")

        assert code == 0
        assert "PROGRAM-ID. HELLO." in output_path.read_text()

    def test_missing_copybook(self, monkeypatch, capsys):
        """Test that a missing copybook is reported on stderr with exit code 12."""
        code = run_cli(monkeypatch, "expand", FIXTURES_DIR / "missing_copy.cob", "-q")

        assert code == 12
        assert "IGYLI0001-S" in capsys.readouterr().err


class TestRunCommand:
    """Tests for the run subcommand."""

    def test_run_program(self, monkeypatch, capsys):
        """Test running a program and printing its output."""
        code = run_cli(monkeypatch, "run", FIXTURES_DIR / "hello.cob", "-q")

        assert code == 0
        assert capsys.readouterr().out.splitlines() == [
            "HELLO WORLD     ",
            "COUNT 1",
            "COUNT 2",
            "COUNT 3",
        ]

    def test_run_with_called_program(self, monkeypatch, capsys):
        """Test that -p makes a subprogram available to CALL."""
        code = run_cli(
            monkeypatch, "run", FIXTURES_DIR / "caller.cob", "-p", FIXTURES_DIR / "doubler.cob", "-q"
        )

        assert code == 0
        assert capsys.readouterr().out.splitlines() == ["AMOUNT 200"]

    def test_run_with_datasets_from_config(self, monkeypatch, capsys):
        """Test reading a dataset defined in the YAML configuration."""
        code = run_cli(
            monkeypatch, "run", FIXTURES_DIR / "report.cob", "--config", FIXTURES_DIR / "config.yaml", "-q"
        )

        assert code == 0
        assert capsys.readouterr().out.splitlines() == [
            "LINE " + "FIRST".ljust(20),
            "LINE " + "SECOND".ljust(20),
        ]

    def test_run_reads_accept_from_console(self, monkeypatch, capsys):
        """Test the console ACCEPT handler."""
        monkeypatch.setattr("builtins.input", lambda prompt="": "42")
        code = run_cli(monkeypatch, "run", FIXTURES_DIR / "warnings.cob", "-q")

        assert code == 0
        assert capsys.readouterr().out.splitlines() == ["> 42", "42"]

    def test_run_json_report(self, monkeypatch, capsys):
        """Test the JSON run report with final memory."""
        code = run_cli(monkeypatch, "run", FIXTURES_DIR / "hello.cob", "--json", "--dump-memory", "-q")
        report = json.loads(capsys.readouterr().out)

        assert code == 0
        assert report["status"] == "COMPLETED"
        assert report["memory"]["WS-NAME"] == "WORLD     "

    def test_chain_to_unknown_transaction(self, monkeypatch, capsys, tmp_path):
        """Test that chaining to an unregistered transaction is a fatal error, not a traceback."""
        source = tmp_path / "handoff.cob"
        source.write_text(
            "\n".join(
                [
                    "       IDENTIFICATION DIVISION.",
                    "       PROGRAM-ID. HANDOFF.",
                    "       DATA DIVISION.",
                    "       PROCEDURE DIVISION.",
                    '           DISPLAY "FIRST"',
                    "           EXEC CICS RETURN TRANSID('NOPE')",
                    "           END-EXEC.",
                ]
            )
        )
        code = run_cli(monkeypatch, "run", source, "--chain", "-q")

        assert code == 12
        assert capsys.readouterr().out.splitlines()[0] == "FIRST"

    def test_compile_errors_stop_the_run(self, monkeypatch, capsys):
        """Test that a failed compile returns its MAXCC without running."""
        code = run_cli(monkeypatch, "run", FIXTURES_DIR / "errors.cob", "-q")
        captured = capsys.readouterr()

        assert code == 12
        assert captured.out == ""
        assert "MAXCC=0012" in captured.err


class TestMain:
    """Tests for top-level argument handling."""

    def test_no_command_prints_help(self, monkeypatch, capsys):
        """Test that running without a subcommand shows help."""
        assert run_cli(monkeypatch) == 0
        assert "cobol-sim" in capsys.readouterr().out

    def test_verbose_and_quiet_conflict(self, monkeypatch):
        """Test that -v and -q cannot be combined."""
        assert run_cli(monkeypatch, "check", FIXTURES_DIR / "hello.cob", "-v", "-q") == 2

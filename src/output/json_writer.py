"""JSON output writer for compilation and run results.

This module provides functionality to write compile and run reports
to JSON format with various formatting options.
"""

import dataclasses
import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, TextIO


class JSONWriter:
    """Writes reports to JSON format.

    Supports:
    - Pretty printing with configurable indentation
    - Output to file, stream or string
    - Dataclasses, enums, Decimal, Path and datetime values
    """

    def __init__(
        self,
        pretty_print: bool = True,
        indent: int = 2,
        sort_keys: bool = False,
    ):
        """Initialize the JSON writer.

        Args:
            pretty_print: Whether to format JSON with indentation
            indent: Number of spaces for indentation
            sort_keys: Whether to sort dictionary keys
        """
        self.pretty_print = pretty_print
        self.indent = indent if pretty_print else None
        self.sort_keys = sort_keys

    def write(self, data: Dict[str, Any], output_path: Optional[Path] = None) -> str:
        """Write a report to JSON.

        Args:
            data: Report dictionary
            output_path: Optional path to write file (if None, only returns string)

        Returns:
            JSON string
        """
        json_str = json.dumps(
            data,
            indent=self.indent,
            sort_keys=self.sort_keys,
            ensure_ascii=False,
            default=self._json_serializer,
        )

        if output_path:
            output_path.write_text(json_str, encoding="utf-8")

        return json_str

    def write_to_stream(self, data: Dict[str, Any], stream: TextIO) -> None:
        json.dump(
            data,
            stream,
            indent=self.indent,
            sort_keys=self.sort_keys,
            ensure_ascii=False,
            default=self._json_serializer,
        )

    def format_compact(self, data: Dict[str, Any]) -> str:
        """Format data in compact single-line JSON."""
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=self.sort_keys,
            ensure_ascii=False,
            default=self._json_serializer,
        )

    def _json_serializer(self, obj: Any) -> Any:
        """Custom JSON serializer for special types.

        Args:
            obj: Object to serialize

        Returns:
            JSON-serializable representation
        """
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            # integral values stay numbers, fractions keep their digits as text
            return int(obj) if obj == obj.to_integral_value() else str(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, set):
            return sorted(list(obj))
        if isinstance(obj, Path):
            return str(obj)
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
        if hasattr(obj, "__dict__"):
            return obj.__dict__

        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def create_compile_report(result, include_source: bool = False) -> Dict[str, Any]:
    """Create a report dictionary from a CompilationResult.

    Args:
        result: CompilationResult from compile_source/compile_file
        include_source: Whether to include the expanded source text

    Returns:
        Report dictionary
    """
    report: Dict[str, Any] = {
        "source": result.source_name,
        "analysis_date": datetime.now().isoformat(),
        "program_id": result.program.program_id if result.program else None,
        "succeeded": result.succeeded,
        "return_code": result.return_code,
        "execution_time_seconds": round(result.execution_time_seconds, 4),
        "diagnostics": [
            {
                "line": d.line,
                "column": d.column,
                "code": d.code,
                "severity": d.severity,
                "message": d.message,
            }
            for d in result.diagnostics
        ],
    }
    if result.error:
        report["error"] = {
            "message": result.error,
            "line": result.error_line,
            "column": result.error_column,
        }
    if result.missing_copy:
        report["missing_copy"] = result.missing_copy
    if include_source:
        report["expanded_source"] = result.expanded_source
    return report


def create_run_report(run_result, memory=None, datasets=None) -> Dict[str, Any]:
    """Create a report dictionary from a RunResult.

    Args:
        run_result: RunResult returned by the runtime
        memory: Optional final memory snapshot (name to VariableCell)
        datasets: Optional DatasetStore to include

    Returns:
        Report dictionary
    """
    report: Dict[str, Any] = {
        "status": run_result.status,
        "return_code": run_result.return_code,
        "output": run_result.output,
        "errors": run_result.errors,
    }
    if run_result.next_transaction is not None:
        report["next_transaction"] = run_result.next_transaction
    if memory is not None:
        report["memory"] = {name: cell.value for name, cell in memory.items()}
    if datasets is not None:
        report["datasets"] = datasets.to_dict()
    return report

"""Output module for compile listings and JSON reports."""

from .json_writer import JSONWriter, create_compile_report, create_run_report
from .listing import format_listing

__all__ = ["JSONWriter", "create_compile_report", "create_run_report", "format_listing"]

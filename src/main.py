"""Main entry point for the COBOL simulator.

This module provides the CLI interface for expanding, checking and
running COBOL programs.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from cobol_ast import CompilationError, CompileOptions, CompilationResult, compile_file
from cobol_ast.nodes import PicType
from output import JSONWriter, create_compile_report, create_run_report, format_listing
from runtime import (
    DatasetStore,
    Runtime,
    RuntimeOptions,
    RuntimeStateError,
    ScreenBuffer,
    ScreenInputRequest,
)

__version__ = "1.0.0"

FATAL_EXIT_CODE = 12
MAX_CHAINED_TRANSACTIONS = 50


def setup_logging(level: str = "INFO", quiet: bool = False) -> None:
    """Configure logging.

    Args:
        level: Logging level string (DEBUG, INFO, WARNING, ERROR)
        quiet: If True, suppress all output except errors
    """
    if quiet:
        level = "ERROR"
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def load_config(config_path: Optional[Path] = None) -> dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    default_config = {
        "copybook_paths": ["."],
        "copybook_extensions": [".cpy", ".copy", ".cbl", ".cob", ""],
        "compiler": {
            "max_copy_passes": 100,
        },
        "runtime": {
            "max_loop_iterations": 100000,
            "max_stack_depth": 100,
            "max_nesting_depth": 150,
        },
        "datasets": {},
        "output": {
            "pretty_print": True,
            "indent_size": 2,
        },
        "logging": {"level": "INFO"},
    }

    if config_path and config_path.exists():
        with open(config_path, "r") as f:
            user_config = yaml.safe_load(f)
            if user_config:
                # Merge user config with defaults
                for key, value in user_config.items():
                    if isinstance(value, dict) and key in default_config:
                        default_config[key].update(value)
                    else:
                        default_config[key] = value

    return default_config


def build_compile_options(args, config: dict) -> CompileOptions:
    """Combine -c paths (searched first) with the configured copybook paths."""
    paths = list(args.copybook_paths or [])
    paths.extend(Path(p) for p in config.get("copybook_paths", []))
    return CompileOptions(
        copybook_paths=paths,
        copybook_extensions=config.get("copybook_extensions"),
        max_copy_passes=config.get("compiler", {}).get("max_copy_passes"),
    )


def compile_for_cli(source: Path, args, config: dict) -> Optional[CompilationResult]:
    """Compile a source file, logging I/O problems instead of raising."""
    logger = logging.getLogger(__name__)
    try:
        return compile_file(source, build_compile_options(args, config))
    except (FileNotFoundError, CompilationError) as e:
        logger.error(str(e))
        return None


def create_writer(config: dict) -> JSONWriter:
    output_config = config.get("output", {})
    return JSONWriter(
        pretty_print=output_config.get("pretty_print", True),
        indent=output_config.get("indent_size", 2),
    )


# --- Console host callbacks ---


def console_input(name: str, pic_type: PicType, length: int) -> str:
    """ACCEPT handler reading one line from stdin."""
    try:
        return input(f"{name} PIC {pic_type.value}({length}): ")
    except EOFError:
        return ""


def console_screen_update(screen: ScreenBuffer) -> None:
    border = "+" + "-" * screen.columns + "+"
    print(border)
    for line in screen.lines():
        print(f"|{line}|")
    print(border)


def console_screen_input(request: ScreenInputRequest) -> Dict[str, str]:
    """RECEIVE MAP handler prompting for each field; a blank answer keeps the screen text."""
    typed = {}
    print(f"Map {request.map_name} is waiting for input")
    for name in request.fields:
        try:
            text = input(f"  {name}: ")
        except EOFError:
            break
        if text:
            typed[name] = text
    return typed


# --- Subcommand handlers ---


def handle_expand(args) -> int:
    """Handle the expand subcommand: print the COPY-expanded source.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    logger = logging.getLogger(__name__)
    config = load_config(args.config)
    options = build_compile_options(args, config)
    options.run_validators = False
    try:
        result = compile_file(args.source, options)
    except (FileNotFoundError, CompilationError) as e:
        logger.error(str(e))
        return FATAL_EXIT_CODE

    # preprocessing failures carry no position; syntax errors still leave a usable expansion
    if result.missing_copy is not None or (result.error is not None and result.error_line is None):
        for line in format_listing(result):
            print(line, file=sys.stderr)
        return FATAL_EXIT_CODE

    if args.output:
        args.output.write_text(result.expanded_source, encoding="utf-8")
        if not args.quiet:
            print(f"Expanded source written to: {args.output}")
    else:
        print(result.expanded_source)
    return 0


def handle_check(args) -> int:
    """Handle the check subcommand: compile and report diagnostics.

    Returns:
        The compilation MAXCC (0, 4 or 12)
    """
    config = load_config(args.config)
    result = compile_for_cli(args.source, args, config)
    if result is None:
        return FATAL_EXIT_CODE

    if args.json:
        writer = create_writer(config)
        report = create_compile_report(result, include_source=args.include_source)
        if args.output:
            writer.write(report, args.output)
            if not args.quiet:
                print(f"Report written to: {args.output}")
        else:
            print(writer.write(report))
    else:
        for line in format_listing(result):
            print(line)
    return result.return_code


def handle_run(args) -> int:
    """Handle the run subcommand: compile, then execute with console handlers.

    Returns:
        Compile MAXCC when compilation blocks execution, else 0 or 16
    """
    logger = logging.getLogger(__name__)
    config = load_config(args.config)

    programs: List[CompilationResult] = []
    for source in [args.source] + list(args.programs or []):
        result = compile_for_cli(source, args, config)
        if result is None:
            return FATAL_EXIT_CODE
        if not result.succeeded:
            logger.error(f"Compilation of {source} failed with MAXCC={result.return_code}")
            for line in format_listing(result):
                print(line, file=sys.stderr)
            return result.return_code
        programs.append(result)

    runtime_config = config.get("runtime", {})
    datasets = DatasetStore()
    try:
        datasets.load(config.get("datasets") or {})
    except ValueError as e:
        logger.error(f"Invalid dataset configuration: {e}")
        return FATAL_EXIT_CODE

    runtime = Runtime(
        input_handler=console_input,
        screen_update=console_screen_update,
        screen_input=console_screen_input,
        options=RuntimeOptions(
            max_loop_iterations=runtime_config.get("max_loop_iterations", 100000),
            max_stack_depth=runtime_config.get("max_stack_depth", 100),
            max_nesting_depth=runtime_config.get("max_nesting_depth", 150),
        ),
        datasets=datasets,
    )
    for compiled in programs:
        runtime.register_program(compiled.program)
    for trans_id, program_id in (config.get("transactions") or {}).items():
        runtime.register_transaction(trans_id, program_id)

    main_program = programs[0].program
    if args.transaction:
        runtime.register_transaction(args.transaction, main_program.program_id)
        run_result = runtime.run_transaction(args.transaction, args.commarea or "")
    else:
        run_result = runtime.run(main_program, args.commarea)
    print_run_result(run_result, args)

    chained = 0
    while args.chain and run_result.completed and run_result.next_transaction is not None:
        chained += 1
        if chained > MAX_CHAINED_TRANSACTIONS:
            logger.error(f"Stopped after {MAX_CHAINED_TRANSACTIONS} chained transactions")
            break
        following = run_result.next_transaction
        logger.info(f"Chaining to transaction {following.trans_id}")
        try:
            run_result = runtime.run_transaction(following.trans_id, following.commarea)
        except RuntimeStateError as e:
            logger.error(f"Cannot chain to transaction {following.trans_id}: {e}")
            return FATAL_EXIT_CODE
        print_run_result(run_result, args)

    if args.json:
        memory = runtime.get_memory() if args.dump_memory else None
        print(create_writer(config).write(create_run_report(run_result, memory, datasets)))
    elif args.dump_memory:
        for name, cell in runtime.get_memory().items():
            print(f"{name} = '{cell.text}'")
    return run_result.return_code


def print_run_result(run_result, args) -> None:
    if args.json:
        return
    for line in run_result.output:
        print(line)
    for error in run_result.errors:
        print(error, file=sys.stderr)
    if run_result.next_transaction is not None and not args.quiet:
        print(f"NEXT TRANSACTION: {run_result.next_transaction.trans_id}")


# --- Argument parsers ---


def add_common_arguments(subparser) -> None:
    """Copybook, configuration and logging options shared by every subcommand."""
    copybook_group = subparser.add_argument_group("Copybook Options")
    copybook_group.add_argument(
        "-c", "--copybook-path",
        type=Path,
        action="append",
        dest="copybook_paths",
        metavar="PATH",
        help="Path to search for copybooks (can be specified multiple times)",
    )

    config_group = subparser.add_argument_group("Configuration")
    config_group.add_argument(
        "--config",
        type=Path,
        metavar="FILE",
        help="Path to YAML configuration file",
    )

    logging_group = subparser.add_argument_group("Logging")
    logging_group.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output (debug level logging)",
    )
    logging_group.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except errors",
    )


def create_expand_parser(subparsers):
    expand_parser = subparsers.add_parser(
        "expand",
        help="Expand COPY statements and print the resulting source",
        description="Expand COPY statements (with REPLACING) in a COBOL source file.",
    )
    expand_parser.add_argument("source", type=Path, help="Path to the COBOL source file")
    expand_parser.add_argument(
        "-o", "--output",
        type=Path,
        help="Write the expanded source to this file instead of stdout",
    )
    add_common_arguments(expand_parser)
    expand_parser.set_defaults(func=handle_expand)
    return expand_parser


def create_check_parser(subparsers):
    check_parser = subparsers.add_parser(
        "check",
        help="Compile and report diagnostics",
        description="Compile a COBOL source file and report column and semantic diagnostics.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit code is the MAXCC: 0 (clean or INFO), 4 (warnings), 12 (errors).

Examples:
  %(prog)s program.cob
  %(prog)s program.cob -c copybooks/ --json -o report.json
        """,
    )
    check_parser.add_argument("source", type=Path, help="Path to the COBOL source file")

    output_group = check_parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--json",
        action="store_true",
        help="Emit a JSON report instead of a listing",
    )
    output_group.add_argument(
        "-o", "--output",
        type=Path,
        help="Write the JSON report to this file",
    )
    output_group.add_argument(
        "--include-source",
        action="store_true",
        help="Include the expanded source in the JSON report",
    )
    add_common_arguments(check_parser)
    check_parser.set_defaults(func=handle_check)
    return check_parser


def create_run_parser(subparsers):
    run_parser = subparsers.add_parser(
        "run",
        help="Compile and execute a program",
        description="Compile a COBOL program (plus any called programs) and run it interactively.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s main.cob
  %(prog)s main.cob -p sub1.cob -p sub2.cob
  %(prog)s menu.cob --transaction MENU --chain --config datasets.yaml
        """,
    )
    run_parser.add_argument("source", type=Path, help="Path to the main COBOL program")
    run_parser.add_argument(
        "-p", "--program",
        type=Path,
        action="append",
        dest="programs",
        metavar="FILE",
        help="Additional program available to CALL / EXEC CICS LINK (repeatable)",
    )

    cics_group = run_parser.add_argument_group("CICS Options")
    cics_group.add_argument(
        "--transaction",
        metavar="TRANSID",
        help="Start the main program as this transaction",
    )
    cics_group.add_argument(
        "--commarea",
        help="Initial COMMAREA text",
    )
    cics_group.add_argument(
        "--chain",
        action="store_true",
        help="Keep running the transaction named by EXEC CICS RETURN TRANSID",
    )

    output_group = run_parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--json",
        action="store_true",
        help="Emit a JSON run report",
    )
    output_group.add_argument(
        "--dump-memory",
        action="store_true",
        help="Show the final values of the main program's variables",
    )
    add_common_arguments(run_parser)
    run_parser.set_defaults(func=handle_run)
    return run_parser


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="cobol-sim",
        description="COBOL Simulator - Expands, checks and runs fixed-format COBOL programs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  expand  Expand COPY statements
  check   Compile and report diagnostics
  run     Compile and execute a program

For more information on a command, use: %(prog)s <command> --help
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )
    create_expand_parser(subparsers)
    create_check_parser(subparsers)
    create_run_parser(subparsers)

    args = parser.parse_args()

    # Show help if no command specified
    if not args.command:
        parser.print_help()
        sys.exit(0)

    if args.verbose and args.quiet:
        parser.error("--verbose and --quiet cannot be used together")

    config_level = load_config(args.config).get("logging", {}).get("level", "INFO")
    log_level = "DEBUG" if args.verbose else config_level
    setup_logging(log_level, quiet=args.quiet)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()

"""Command-line interface for function-lab."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from function_lab.coercion import coerce
from function_lab.engine import ExecutionEngine, serialize
from function_lab.errors import SyntaxFailure
from function_lab.extractor import extract_file, find_descriptor
from function_lab.models import (
    ExecuteRequest,
    ExecutionOutcome,
    FunctionDescriptor,
    descriptors_to_json,
)

logger = logging.getLogger(__name__)

COMMANDS = ("extract", "locate", "run", "execute", "coerce")


def setup_logging(verbose: bool = False):
    """Configure logging to stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="function-lab",
        description="Discover callables in Python source and run them with ad hoc arguments",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log debug detail to stderr",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # extract subcommand
    extract_parser = subparsers.add_parser(
        "extract",
        help="List the callables in a source file as JSON (default)",
    )
    extract_parser.add_argument("file", help="Python source file")

    # locate subcommand
    locate_parser = subparsers.add_parser(
        "locate",
        help="Print the line span of a callable",
    )
    locate_parser.add_argument("file", help="Python source file")
    locate_parser.add_argument("entry", help="Callable name, e.g. add or Stack.push")

    # run subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Run a callable from a source file with raw arguments",
    )
    run_parser.add_argument("file", help="Python source file")
    run_parser.add_argument("entry", help="Callable name, e.g. add or Stack.push")
    run_parser.add_argument(
        "raw_arguments",
        nargs="*",
        metavar="ARG",
        help="Raw argument text, one per parameter",
    )
    run_parser.add_argument(
        "--follow-up",
        "-f",
        default=None,
        help="Comma-separated arguments for a returned function",
    )
    run_parser.add_argument(
        "--timeout",
        "-t",
        type=float,
        default=None,
        help="Give up after this many seconds (default: no limit)",
    )

    # execute subcommand
    execute_parser = subparsers.add_parser(
        "execute",
        help="Run an execute request read as JSON",
    )
    execute_parser.add_argument(
        "request",
        nargs="?",
        default="-",
        help="Path to the request JSON, or - for stdin (default: -)",
    )
    execute_parser.add_argument(
        "--timeout",
        "-t",
        type=float,
        default=None,
        help="Give up after this many seconds (default: no limit)",
    )

    # coerce subcommand
    coerce_parser = subparsers.add_parser(
        "coerce",
        help="Show how a raw value would be interpreted",
    )
    coerce_parser.add_argument("raw", help="Raw value text")
    coerce_parser.add_argument(
        "--type",
        dest="declared_type",
        default="any",
        help="Declared type of the parameter (default: any)",
    )

    return parser


def parse_args(args: list[str]) -> argparse.Namespace:
    """Parse command-line arguments, treating a bare path as 'extract'."""
    parser = create_parser()

    first = next((a for a in args if not a.startswith("-")), None)
    if first is not None and first not in COMMANDS:
        # Assume it's a file, insert 'extract' after any global flags
        index = args.index(first)
        args = args[:index] + ["extract"] + args[index:]

    return parser.parse_args(args)


def _load_descriptors(file: str) -> list[FunctionDescriptor] | None:
    """Extract descriptors, reporting unreadable or unparseable files."""
    try:
        return extract_file(Path(file))
    except SyntaxFailure as e:
        print(json.dumps(e.to_dict(), indent=2))
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Cannot read {file}: {e}")
        print(f"Error: cannot read {file}: {e}", file=sys.stderr)
    return None


def run_extract(file: str) -> int:
    """Run the extract command."""
    descriptors = _load_descriptors(file)
    if descriptors is None:
        return 1
    print(descriptors_to_json(descriptors))
    return 0


def run_locate(file: str, entry: str) -> int:
    """Run the locate command."""
    descriptors = _load_descriptors(file)
    if descriptors is None:
        return 1
    descriptor = find_descriptor(descriptors, entry)

    if descriptor is None:
        logger.error(f"No callable named {entry} in {file}")
        print(f"Error: no callable named {entry!r} in {file}", file=sys.stderr)
        return 1

    print(
        json.dumps(
            {
                "entryName": descriptor.name,
                "startLine": descriptor.start_line,
                "endLine": descriptor.end_line,
            },
            indent=2,
        )
    )
    return 0


async def run_function(
    file: str,
    entry: str,
    raw_arguments: list[str],
    follow_up: str | None = None,
    timeout: float | None = None,
) -> int:
    """Run the run command.

    Args:
        file: Path to the source file
        entry: Name of the callable to run
        raw_arguments: Raw argument text, one per parameter
        follow_up: Arguments for a returned function
        timeout: Seconds before giving up, or None

    Returns:
        Exit code (0 whenever an outcome was produced)
    """
    descriptors = _load_descriptors(file)
    if descriptors is None:
        return 1
    descriptor = find_descriptor(descriptors, entry)

    if descriptor is None:
        logger.error(f"No callable named {entry} in {file}")
        print(f"Error: no callable named {entry!r} in {file}", file=sys.stderr)
        return 1

    request = ExecuteRequest.for_descriptor(descriptor, raw_arguments, follow_up)
    outcome = await _execute_with_timeout(request, timeout)
    print(outcome.to_json())
    return 0


async def run_execute(request_path: str, timeout: float | None = None) -> int:
    """Run the execute command."""
    try:
        if request_path == "-":
            payload = json.load(sys.stdin)
        else:
            payload = json.loads(Path(request_path).read_text(encoding="utf-8"))
        request = ExecuteRequest.from_dict(payload)
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
        logger.error(f"Invalid execute request: {e}")
        print(f"Error: invalid execute request: {e}", file=sys.stderr)
        return 1

    outcome = await _execute_with_timeout(request, timeout)
    print(outcome.to_json())
    return 0


def run_coerce(raw: str, declared_type: str) -> int:
    """Run the coerce command."""
    value = coerce(raw, declared_type)
    print(json.dumps({"value": serialize(value)}, indent=2))
    return 0


async def _execute_with_timeout(
    request: ExecuteRequest, timeout: float | None
) -> ExecutionOutcome:
    engine = ExecutionEngine()
    if timeout is None:
        return await engine.execute(request)
    try:
        return await asyncio.wait_for(engine.execute(request), timeout=timeout)
    except TimeoutError:
        logger.warning(f"{request.entry_name} timed out after {timeout}s")
        return ExecutionOutcome(
            success=False,
            error_message=f"timed out after {timeout}s",
            elapsed_ms=round(timeout * 1000, 3),
            phase="timeout",
        )


async def run_cli(args: list[str]) -> int:
    """Run the CLI with the given arguments.

    Args:
        args: Command-line arguments (without program name)

    Returns:
        Exit code (0 for success, non-zero for fatal errors)
    """
    try:
        parsed = parse_args(args)
    except SystemExit as e:
        return e.code if e.code else 1

    setup_logging(parsed.verbose)

    if parsed.command is None:
        # No command and no args - show help
        create_parser().print_help(sys.stderr)
        return 1

    if parsed.command == "extract":
        return run_extract(parsed.file)
    elif parsed.command == "locate":
        return run_locate(parsed.file, parsed.entry)
    elif parsed.command == "run":
        return await run_function(
            parsed.file,
            parsed.entry,
            parsed.raw_arguments,
            parsed.follow_up,
            parsed.timeout,
        )
    elif parsed.command == "execute":
        return await run_execute(parsed.request, parsed.timeout)
    elif parsed.command == "coerce":
        return run_coerce(parsed.raw, parsed.declared_type)

    return 1


def main():
    """Entry point for the CLI."""
    exit_code = asyncio.run(run_cli(sys.argv[1:]))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

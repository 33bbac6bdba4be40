"""StaqLang command-line entry point."""
from __future__ import annotations
import argparse
import os
import sys
from typing import List, Optional

from instructions import format_listing
from interpreter import Interpreter, StaqRuntimeError, TracebackFormatter
from lexer import StaqParseError
from vfs import FileSystem, RealLocalFileSystem, VirtualFileSystem


def _build_file_system(args: argparse.Namespace, filename: str) -> FileSystem:
    if args.vfs:
        return VirtualFileSystem()
    # Programs see the directory that holds them as their filesystem root.
    if filename == "<string>":
        return RealLocalFileSystem(os.getcwd())
    return RealLocalFileSystem(os.path.dirname(os.path.abspath(filename)))


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="StaqLang stack machine interpreter")
    parser.add_argument("program", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit stack snapshots in tracebacks and a run summary")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--vfs", action="store_true", help="Run against an empty in-memory filesystem")
    parser.add_argument("--dump", action="store_true", help="Print the resolved instruction listing before running")
    args = parser.parse_args(argv)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(
        source=source_text,
        filename=filename,
        verbose=args.verbose,
        file_system=_build_file_system(args, filename),
    )
    try:
        instructions = interpreter.parse()
        if args.dump:
            print(format_listing(instructions), file=sys.stderr)
            print(f"Number of commands: {len(instructions)}", file=sys.stderr)
        summary = interpreter.execute(instructions)
    except StaqParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    except StaqRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    if args.verbose:
        print(file=sys.stderr)
        print(summary.format_text(), file=sys.stderr)
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()

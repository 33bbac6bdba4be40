from __future__ import annotations
import re
import sys
from typing import Callable, Dict, List, Optional, Type

from instructions import (
    INVALID_STACK,
    STACK_NAMES,
    Add,
    BitAnd,
    BitLeftShift,
    BitOr,
    BitRightShift,
    BitXor,
    Clear,
    Copy,
    CreateFile,
    CreateFileStream,
    Divide,
    Equal,
    Exit,
    GetNextIn,
    GreaterThan,
    GreaterThanOrEqual,
    Instruction,
    Label,
    LessThan,
    LessThanOrEqual,
    Modulo,
    Move,
    Multiply,
    OpenFileStream,
    Pop,
    Print,
    PrintNum,
    Push,
    ReadFileStream,
    SourceLocation,
    Subtract,
    UnresolvedJump,
    WriteFileStream,
)


class StaqError(Exception):
    """Base class for interpreter errors."""


class StaqParseError(StaqError):
    """Raised when parsing fails."""


COMMENT_MARKER = "//"

# Mnemonics that take no arguments.
SIMPLE_MNEMONICS: Dict[str, Type[Instruction]] = {
    "exit": Exit,
    "print": Print,
    "printnum": PrintNum,
    "getnextin": GetNextIn,
    "readfilestream": ReadFileStream,
    "writefilestream": WriteFileStream,
    "+": Add,
    "-": Subtract,
    "*": Multiply,
    "/": Divide,
    "%": Modulo,
    "==": Equal,
    ">": GreaterThan,
    ">=": GreaterThanOrEqual,
    "<": LessThan,
    "<=": LessThanOrEqual,
    "&": BitAnd,
    "|": BitOr,
    "^": BitXor,
    ">>": BitRightShift,
    "<<": BitLeftShift,
}

# Mnemonics whose single argument is an optional literal path.
PATH_MNEMONICS: Dict[str, Type[Instruction]] = {
    "createfile": CreateFile,
    "createfilestream": CreateFileStream,
    "openfilestream": OpenFileStream,
}

_COMMAND_RE = re.compile(r"\S+")
# Digit groups may be separated by underscores, but not lead with one.
_INTEGER_RE = re.compile(r"[+-]?[0-9][0-9_]*")


def stack_index(text: str) -> int:
    """Map a stack letter to its index; unknown letters map to INVALID_STACK."""
    try:
        return STACK_NAMES.index(text)
    except ValueError:
        return INVALID_STACK


def _stderr_sink(text: str) -> None:
    print(text, file=sys.stderr)


class Lexer:
    def __init__(
        self,
        text: str,
        filename: str,
        *,
        diagnostic_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.text = text
        self.filename = filename
        self.diagnostic_sink = diagnostic_sink or _stderr_sink
        self.diagnostics: List[str] = []

    def tokenize(self) -> List[Instruction]:
        instructions: List[Instruction] = []
        append = instructions.append
        for line_no, line in enumerate(self._lines(), start=1):
            for match in _COMMAND_RE.finditer(line):
                command = match.group(0)
                if command.startswith(COMMENT_MARKER):
                    break
                location = SourceLocation(self.filename, line_no, match.start() + 1, command)
                instruction = self._parse_command(command, location)
                if instruction is not None:
                    append(instruction)
            # Stack C is line-scoped.
            append(Clear(location=SourceLocation(self.filename, line_no, len(line) + 1, "")))
        return instructions

    def _lines(self) -> List[str]:
        # Only "\n" and "\r\n" end a line; other vertical whitespace separates commands.
        lines = self.text.split("\n")
        if lines[-1] == "":
            lines.pop()
        return [line[:-1] if line.endswith("\r") else line for line in lines]

    def _parse_command(self, command: str, location: SourceLocation) -> Optional[Instruction]:
        parts = command.split(":")
        mnemonic = parts[0]
        if mnemonic == "":
            return None

        simple = SIMPLE_MNEMONICS.get(mnemonic)
        if simple is not None:
            return simple(location=location)

        path_cls = PATH_MNEMONICS.get(mnemonic)
        if path_cls is not None:
            path = parts[1] if len(parts) > 1 and parts[1] != "" else None
            return path_cls(path, location=location)

        if mnemonic == "push":
            literal = self._argument(parts, 1, location)
            if not _INTEGER_RE.fullmatch(literal):
                raise StaqParseError(
                    f"Failed parsing push argument '{literal}' at {self._where(location)}"
                )
            return Push(int(literal.replace("_", "")), location=location)
        if mnemonic == "pop":
            return Pop(stack_index(self._argument(parts, 1, location)), location=location)
        if mnemonic == "move":
            return Move(
                stack_index(self._argument(parts, 1, location)),
                stack_index(self._argument(parts, 2, location)),
                location=location,
            )
        if mnemonic == "copy":
            return Copy(
                stack_index(self._argument(parts, 1, location)),
                stack_index(self._argument(parts, 2, location)),
                location=location,
            )
        if mnemonic == "jump":
            return UnresolvedJump(self._argument(parts, 1, location), location=location)
        if mnemonic == "label":
            return Label(self._argument(parts, 1, location), location=location)

        self._diagnose(f"Invalid token: {command} at {self._where(location)}")
        return None

    def _argument(self, parts: List[str], index: int, location: SourceLocation) -> str:
        if index >= len(parts):
            raise StaqParseError(
                f"'{parts[0]}' expects {index} argument(s) at {self._where(location)}: {location.statement}"
            )
        return parts[index]

    def _where(self, location: SourceLocation) -> str:
        return f"{location.file}:{location.line}:{location.column}"

    def _diagnose(self, message: str) -> None:
        self.diagnostics.append(message)
        self.diagnostic_sink(message)

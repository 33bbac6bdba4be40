from __future__ import annotations
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Type


# Stack identifiers as they appear in programs, mapped to stack indices.
STACK_NAMES: Tuple[str, ...] = ("A", "B", "C")
STACK_A = 0
STACK_B = 1
STACK_C = 2
INVALID_STACK = 255

# Jump target used for labels that do not exist. Any index past the end of
# the program terminates the run as a normal end-of-program.
UNRESOLVED_TARGET = sys.maxsize


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass(frozen=True)
class Instruction:
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False, kw_only=True)

    @property
    def rule(self) -> str:
        return RULES.get(type(self), type(self).__name__.upper())


class Exit(Instruction):
    pass


class Print(Instruction):
    pass


class PrintNum(Instruction):
    pass


class GetNextIn(Instruction):
    pass


@dataclass(frozen=True)
class CreateFile(Instruction):
    path: Optional[str] = None


@dataclass(frozen=True)
class CreateFileStream(Instruction):
    path: Optional[str] = None


@dataclass(frozen=True)
class OpenFileStream(Instruction):
    path: Optional[str] = None


class ReadFileStream(Instruction):
    pass


class WriteFileStream(Instruction):
    pass


class Clear(Instruction):
    pass


@dataclass(frozen=True)
class Push(Instruction):
    value: int


@dataclass(frozen=True)
class Pop(Instruction):
    stack: int


class Add(Instruction):
    pass


class Subtract(Instruction):
    pass


class Multiply(Instruction):
    pass


class Divide(Instruction):
    pass


class Modulo(Instruction):
    pass


@dataclass(frozen=True)
class Move(Instruction):
    source: int
    target: int


@dataclass(frozen=True)
class Copy(Instruction):
    source: int
    target: int


@dataclass(frozen=True)
class UnresolvedJump(Instruction):
    """A jump that still names its label; only the resolver produces Jump."""

    label: str


@dataclass(frozen=True)
class Jump(Instruction):
    target: int


@dataclass(frozen=True)
class Label(Instruction):
    name: str


class Equal(Instruction):
    pass


class GreaterThan(Instruction):
    pass


class GreaterThanOrEqual(Instruction):
    pass


class LessThan(Instruction):
    pass


class LessThanOrEqual(Instruction):
    pass


class BitAnd(Instruction):
    pass


class BitOr(Instruction):
    pass


class BitXor(Instruction):
    pass


class BitRightShift(Instruction):
    pass


class BitLeftShift(Instruction):
    pass


# Every instruction the engine must be able to execute. UnresolvedJump is
# deliberately absent: it never survives resolution.
INSTRUCTION_TYPES: Tuple[Type[Instruction], ...] = (
    Exit,
    Print,
    PrintNum,
    GetNextIn,
    CreateFile,
    CreateFileStream,
    OpenFileStream,
    ReadFileStream,
    WriteFileStream,
    Clear,
    Push,
    Pop,
    Add,
    Subtract,
    Multiply,
    Divide,
    Modulo,
    Move,
    Copy,
    Jump,
    Label,
    Equal,
    GreaterThan,
    GreaterThanOrEqual,
    LessThan,
    LessThanOrEqual,
    BitAnd,
    BitOr,
    BitXor,
    BitRightShift,
    BitLeftShift,
)

# Short names used in tracebacks and the step log.
RULES: Dict[Type[Instruction], str] = {
    Add: "ADD",
    Subtract: "SUB",
    Multiply: "MUL",
    Divide: "DIV",
    Modulo: "MOD",
    BitRightShift: "SHR",
    BitLeftShift: "SHL",
    GreaterThan: "GT",
    GreaterThanOrEqual: "GTE",
    LessThan: "LT",
    LessThanOrEqual: "LTE",
    Equal: "EQ",
    BitAnd: "AND",
    BitOr: "OR",
    BitXor: "XOR",
    UnresolvedJump: "JUMP",
}


def stack_name(index: int) -> str:
    if 0 <= index < len(STACK_NAMES):
        return STACK_NAMES[index]
    return f"<invalid {index}>"


def format_instruction(instruction: Instruction) -> str:
    """Render an instruction the way the instruction listing prints it."""
    name = type(instruction).__name__
    if isinstance(instruction, (CreateFile, CreateFileStream, OpenFileStream)):
        return name if instruction.path is None else f"{name} {instruction.path!r}"
    if isinstance(instruction, Push):
        return f"{name} {instruction.value}"
    if isinstance(instruction, Pop):
        return f"{name} {stack_name(instruction.stack)}"
    if isinstance(instruction, (Move, Copy)):
        return f"{name} {stack_name(instruction.source)} -> {stack_name(instruction.target)}"
    if isinstance(instruction, UnresolvedJump):
        return f"{name} {instruction.label!r}"
    if isinstance(instruction, Jump):
        target = "<undefined>" if instruction.target == UNRESOLVED_TARGET else str(instruction.target)
        return f"{name} {target}"
    if isinstance(instruction, Label):
        return f"{name} {instruction.name!r}"
    return name


def format_listing(instructions: List[Instruction]) -> str:
    return "\n".join(f"{index}. {format_instruction(ins)}" for index, ins in enumerate(instructions))

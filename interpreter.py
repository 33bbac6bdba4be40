from __future__ import annotations
import json
import os
import sys
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Type

import numpy as np
from numpy.typing import NDArray

from instructions import (
    INSTRUCTION_TYPES,
    STACK_A,
    STACK_B,
    STACK_C,
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
    Jump,
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
    WriteFileStream,
)
from lexer import Lexer, StaqError
from resolver import LabelResolver
from vfs import FileStream, FileSystem, VirtualFileSystem


# Reserved path of the default read/write stream.
SCRATCH_PATH = "staqdump"

SUCCESS = 1
FAILURE = -1

END_OF_PROGRAM = "reached end of program"

# Shift amounts must fit in a signed 128-bit integer.
SHIFT_LIMIT = 1 << 127

DEFAULT_HISTORY = 1000


class StaqRuntimeError(StaqError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rewrite_rule: Optional[str] = None,
        instruction_index: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rewrite_rule = rewrite_rule
        self.instruction_index = instruction_index
        self.step_index: Optional[int] = None


class ExitSignal(Exception):
    def __init__(self, index: int) -> None:
        super().__init__(index)
        self.index = index


class Stack:
    """LIFO stack of integers. Popping an empty stack yields 0."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._data: List[int] = []

    def push(self, value: int) -> None:
        self._data.append(value)

    def pop(self) -> int:
        if not self._data:
            return 0
        return self._data.pop()

    def drain(self) -> List[int]:
        """Pop every value, returning them in pop order."""
        values = self._data[::-1]
        self._data.clear()
        return values

    def clear(self) -> None:
        self._data.clear()

    def snapshot(self) -> List[int]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Stack({self.name}, {self._data!r})"


@dataclass
class ExecutionContext:
    stacks: List[Stack] = field(default_factory=lambda: [Stack(name) for name in STACK_NAMES])
    ip: int = 0
    read_stream: Optional[FileStream] = None
    write_stream: Optional[FileStream] = None
    owns_scratch: bool = False

    def stack(self, index: int) -> Stack:
        if not 0 <= index < len(self.stacks):
            raise StaqRuntimeError(f"Invalid stack identifier {index}", rewrite_rule="STACK")
        return self.stacks[index]

    def snapshot(self) -> Dict[str, List[int]]:
        return {stack.name: stack.snapshot() for stack in self.stacks}


def _to_bytes(values: List[int], rule: str) -> bytes:
    if not values:
        return b""
    data: NDArray[Any] = np.array(values, dtype=object)
    bad = ((data < 0) | (data > 255)).astype(bool)
    if bad.any():
        offending = data[int(np.flatnonzero(bad)[0])]
        raise StaqRuntimeError(f"Invalid byte value {offending}", rewrite_rule=rule)
    return data.astype(np.uint8).tobytes()


def _truncating_div(a: int, b: int) -> int:
    if b == 0:
        raise StaqRuntimeError("Division by zero", rewrite_rule="DIV")
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


def _truncating_mod(a: int, b: int) -> int:
    if b == 0:
        raise StaqRuntimeError("Modulo by zero", rewrite_rule="MOD")
    # Remainder takes the sign of the dividend.
    return a - b * _truncating_div(a, b)


def _check_shift(amount: int, rule: str) -> None:
    if not -SHIFT_LIMIT <= amount < SHIFT_LIMIT:
        raise StaqRuntimeError(f"Shift amount {amount} does not fit in 128 bits", rewrite_rule=rule)
    if amount < 0:
        raise StaqRuntimeError(f"Shift amount {amount} must be non-negative", rewrite_rule=rule)


def _shift_left(a: int, b: int) -> int:
    _check_shift(b, "SHL")
    try:
        return a << b
    except (OverflowError, MemoryError):
        raise StaqRuntimeError(f"Shift amount {b} is too large", rewrite_rule="SHL") from None


def _shift_right(a: int, b: int) -> int:
    _check_shift(b, "SHR")
    return a >> b


# Instructions that pop a from A and b from B and push the result onto C.
BINARY_OPERATORS: Dict[Type[Instruction], Callable[[int, int], int]] = {
    Add: lambda a, b: a + b,
    Subtract: lambda a, b: a - b,
    Multiply: lambda a, b: a * b,
    Divide: _truncating_div,
    Modulo: _truncating_mod,
    Equal: lambda a, b: int(a == b),
    GreaterThan: lambda a, b: int(a > b),
    GreaterThanOrEqual: lambda a, b: int(a >= b),
    LessThan: lambda a, b: int(a < b),
    LessThanOrEqual: lambda a, b: int(a <= b),
    BitAnd: lambda a, b: a & b,
    BitOr: lambda a, b: a | b,
    BitXor: lambda a, b: a ^ b,
    BitRightShift: _shift_right,
    BitLeftShift: _shift_left,
}


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    instruction_index: int
    rule: str
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    stack_snapshot: Optional[Dict[str, List[int]]]


class StateLogger:
    """Keeps the most recent executed steps for tracebacks.

    In verbose mode each step also carries a snapshot of the three stacks.
    """

    def __init__(self, verbose: bool, history: int = DEFAULT_HISTORY) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0

    def record(
        self,
        *,
        instruction_index: int,
        rule: str,
        location: Optional[SourceLocation],
        stack_snapshot: Optional[Dict[str, List[int]]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            instruction_index=instruction_index,
            rule=rule,
            source_location=location,
            statement=location.statement if location else None,
            stack_snapshot=stack_snapshot,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry

    @property
    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None

    @property
    def steps(self) -> int:
        return self.next_state_index


@dataclass
class RunSummary:
    exit_reason: str
    exit_index: Optional[int]
    steps: int
    elapsed: float
    instruction_count: int

    def format_text(self) -> str:
        return (
            f"Program execution finished: {self.exit_reason}\n"
            f"Time taken: {self.elapsed * 1000:.3f}ms over {self.steps} steps "
            f"({self.instruction_count} instructions)"
        )


Handler = Callable[[Instruction, ExecutionContext], None]


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str,
        verbose: bool = False,
        file_system: Optional[FileSystem] = None,
        input_provider: Optional[Callable[[], bytes]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        diagnostic_sink: Optional[Callable[[str], None]] = None,
        history: int = DEFAULT_HISTORY,
    ) -> None:
        self.source = source
        self.filename = filename if filename == "<string>" else os.path.abspath(filename)
        self.verbose = verbose
        self.file_system: FileSystem = file_system if file_system is not None else VirtualFileSystem()
        self.input_provider = input_provider or (lambda: sys.stdin.buffer.read(1))
        self.output_sink = output_sink or (lambda text: print(text, end="", flush=True))
        self.diagnostic_sink = diagnostic_sink or (lambda text: print(text, file=sys.stderr))
        self.logger = StateLogger(verbose=verbose, history=history)
        self.instructions: List[Instruction] = []
        self.context: Optional[ExecutionContext] = None

        self._handlers: Dict[Type[Instruction], Handler] = {
            Exit: self._exit,
            Print: self._print,
            PrintNum: self._print_num,
            GetNextIn: self._get_next_in,
            CreateFile: self._create_file,
            CreateFileStream: self._create_file_stream,
            OpenFileStream: self._open_file_stream,
            ReadFileStream: self._read_file_stream,
            WriteFileStream: self._write_file_stream,
            Clear: self._clear,
            Push: self._push,
            Pop: self._pop,
            Move: self._move,
            Copy: self._copy,
            Jump: self._jump,
            Label: self._label,
        }
        for instruction_type in BINARY_OPERATORS:
            self._handlers[instruction_type] = self._binary
        missing = [cls.__name__ for cls in INSTRUCTION_TYPES if cls not in self._handlers]
        if missing:
            raise StaqError(f"No handler for instruction(s): {', '.join(missing)}")

    def parse(self) -> List[Instruction]:
        lexer = Lexer(self.source, self.filename, diagnostic_sink=self.diagnostic_sink)
        tokens = lexer.tokenize()
        return LabelResolver(tokens, diagnostic_sink=self.diagnostic_sink).resolve()

    def run(self) -> RunSummary:
        self.instructions = self.parse()
        return self.execute(self.instructions)

    def execute(self, instructions: List[Instruction]) -> RunSummary:
        context = ExecutionContext()
        self.context = context
        started = time.perf_counter()
        try:
            self._open_scratch(context)
            exit_reason, exit_index = self._dispatch(instructions, context)
        except BaseException:
            self._release(context, strict=False)
            raise
        self._release(context, strict=True)
        return RunSummary(
            exit_reason=exit_reason,
            exit_index=exit_index,
            steps=self.logger.steps,
            elapsed=time.perf_counter() - started,
            instruction_count=len(instructions),
        )

    def _dispatch(self, instructions: List[Instruction], context: ExecutionContext) -> Tuple[str, Optional[int]]:
        handlers = self._handlers
        record = self.logger.record
        verbose = self.logger.verbose
        count = len(instructions)
        try:
            while True:
                ip = context.ip
                if ip >= count:
                    return END_OF_PROGRAM, None
                instruction = instructions[ip]
                record(
                    instruction_index=ip,
                    rule=instruction.rule,
                    location=instruction.location,
                    stack_snapshot=context.snapshot() if verbose else None,
                )
                handler = handlers.get(type(instruction))
                if handler is None:
                    raise StaqRuntimeError(
                        f"Cannot execute {type(instruction).__name__}; was the program resolved?",
                        rewrite_rule=instruction.rule,
                    )
                handler(instruction, context)
                # Also applies after a taken jump, so execution resumes past the label.
                context.ip += 1
        except ExitSignal as sig:
            return f"exit command at index {sig.index}", sig.index
        except StaqRuntimeError as error:
            self._annotate(error, instructions, context)
            raise
        except Exception as exc:
            # Convert unexpected Python-level exceptions into StaqRuntimeError
            # so callers can format them as program tracebacks.
            wrapped = StaqRuntimeError(f"Internal interpreter error: {exc}", rewrite_rule="internal")
            self._annotate(wrapped, instructions, context)
            raise wrapped from exc

    def _annotate(self, error: StaqRuntimeError, instructions: List[Instruction], context: ExecutionContext) -> None:
        if error.instruction_index is None:
            error.instruction_index = context.ip
        if error.location is None and 0 <= context.ip < len(instructions):
            error.location = instructions[context.ip].location
        entry = self.logger.last_entry
        if entry is not None:
            error.step_index = entry.step_index

    # Scratch stream

    def _open_scratch(self, context: ExecutionContext) -> None:
        try:
            context.write_stream = self.file_system.create_stream(SCRATCH_PATH)
            context.owns_scratch = True
            context.read_stream = self.file_system.open_stream(SCRATCH_PATH)
        except OSError as exc:
            raise StaqRuntimeError(
                f"Could not open scratch stream '{SCRATCH_PATH}': {exc}", rewrite_rule="SCRATCH"
            ) from exc

    def _release(self, context: ExecutionContext, *, strict: bool) -> None:
        for stream in (context.read_stream, context.write_stream):
            if stream is not None:
                stream.close()
        context.read_stream = None
        context.write_stream = None
        if not context.owns_scratch:
            return
        context.owns_scratch = False
        try:
            self.file_system.remove(SCRATCH_PATH)
        except OSError as exc:
            message = f"Failed to remove '{SCRATCH_PATH}' temporary file: {exc}"
            if strict:
                raise StaqRuntimeError(message, rewrite_rule="SCRATCH") from exc
            self.diagnostic_sink(message)

    # Instruction handlers

    def _exit(self, instruction: Instruction, context: ExecutionContext) -> None:
        raise ExitSignal(context.ip)

    def _print(self, instruction: Instruction, context: ExecutionContext) -> None:
        text = _to_bytes(context.stacks[STACK_C].drain(), "PRINT").decode("latin-1")
        if text:
            self.output_sink(text)

    def _print_num(self, instruction: Instruction, context: ExecutionContext) -> None:
        text = "".join(str(value) for value in context.stacks[STACK_C].drain())
        if text:
            self.output_sink(text)

    def _get_next_in(self, instruction: Instruction, context: ExecutionContext) -> None:
        data = self.input_provider()
        if data:
            context.stacks[STACK_C].push(data[0])

    def _path_operand(self, instruction: Any, context: ExecutionContext) -> str:
        if instruction.path is not None:
            return instruction.path
        return _to_bytes(context.stacks[STACK_C].drain(), instruction.rule).decode("latin-1")

    def _create_file(self, instruction: Instruction, context: ExecutionContext) -> None:
        path = self._path_operand(instruction, context)
        try:
            stream = self.file_system.create_stream(path)
        except OSError:
            context.stacks[STACK_C].push(FAILURE)
            return
        stream.close()
        context.stacks[STACK_C].push(SUCCESS)

    def _create_file_stream(self, instruction: Instruction, context: ExecutionContext) -> None:
        path = self._path_operand(instruction, context)
        try:
            stream = self.file_system.create_stream(path)
        except OSError:
            context.stacks[STACK_C].push(FAILURE)
            return
        if context.write_stream is not None:
            context.write_stream.close()
        context.write_stream = stream
        context.stacks[STACK_C].push(SUCCESS)

    def _open_file_stream(self, instruction: Instruction, context: ExecutionContext) -> None:
        path = self._path_operand(instruction, context)
        try:
            stream = self.file_system.open_stream(path)
        except OSError:
            context.stacks[STACK_C].push(FAILURE)
            return
        if context.read_stream is not None:
            context.read_stream.close()
        context.read_stream = stream
        context.stacks[STACK_C].push(SUCCESS)

    def _read_file_stream(self, instruction: Instruction, context: ExecutionContext) -> None:
        stack = context.stacks[STACK_C]
        if context.read_stream is None:
            stack.push(FAILURE)
            return
        try:
            chunk = context.read_stream.read(1)
        except OSError:
            stack.push(FAILURE)
            return
        if not chunk:
            stack.push(FAILURE)
            return
        stack.push(chunk[0])
        stack.push(SUCCESS)

    def _write_file_stream(self, instruction: Instruction, context: ExecutionContext) -> None:
        stack = context.stacks[STACK_C]
        data = _to_bytes(stack.drain(), instruction.rule)
        if context.write_stream is None:
            stack.push(FAILURE)
            return
        try:
            context.write_stream.write(data)
        except OSError:
            stack.push(FAILURE)
            return
        stack.push(SUCCESS)

    def _clear(self, instruction: Instruction, context: ExecutionContext) -> None:
        context.stacks[STACK_C].clear()

    def _push(self, instruction: Any, context: ExecutionContext) -> None:
        context.stacks[STACK_C].push(instruction.value)

    def _pop(self, instruction: Any, context: ExecutionContext) -> None:
        context.stack(instruction.stack).pop()

    def _move(self, instruction: Any, context: ExecutionContext) -> None:
        source = context.stack(instruction.source)
        target = context.stack(instruction.target)
        target.push(source.pop())

    def _copy(self, instruction: Any, context: ExecutionContext) -> None:
        source = context.stack(instruction.source)
        target = context.stack(instruction.target)
        value = source.pop()
        source.push(value)
        target.push(value)

    def _jump(self, instruction: Any, context: ExecutionContext) -> None:
        if context.stacks[STACK_C].pop() > 0:
            context.ip = instruction.target

    def _label(self, instruction: Instruction, context: ExecutionContext) -> None:
        pass

    def _binary(self, instruction: Instruction, context: ExecutionContext) -> None:
        a = context.stacks[STACK_A].pop()
        b = context.stacks[STACK_B].pop()
        context.stacks[STACK_C].push(BINARY_OPERATORS[type(instruction)](a, b))


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def format_text(self, error: StaqRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        location = error.location
        if location:
            lines.append(f"  File \"{location.file}\", line {location.line}, in <program>")
            if location.statement:
                lines.append(f"    {location.statement}")
        else:
            lines.append("  <unknown location> in <program>")
        entry = self.interpreter.logger.last_entry
        if error.instruction_index is not None:
            line = f"    Instruction index: {error.instruction_index}"
            if entry is not None:
                line += f"  State log index: {entry.step_index}  State id: {entry.state_id}"
            lines.append(line)
        if verbose and entry is not None and entry.stack_snapshot is not None:
            snapshot = "  ".join(f"{name}={values}" for name, values in entry.stack_snapshot.items())
            lines.append(f"    Stacks: {snapshot}")
        rule = error.rewrite_rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rewrite: {rule})")
        return "\n".join(lines)

    def to_json(self, error: StaqRuntimeError) -> str:
        recent: List[Dict[str, Any]] = []
        for entry in self.interpreter.logger.entries:
            item: Dict[str, Any] = {
                "step_index": entry.step_index,
                "state_id": entry.state_id,
                "instruction_index": entry.instruction_index,
                "rule": entry.rule,
            }
            if entry.source_location:
                item["source_location"] = {
                    "file": entry.source_location.file,
                    "line": entry.source_location.line,
                    "column": entry.source_location.column,
                    "statement": entry.source_location.statement,
                }
            if entry.stack_snapshot is not None:
                item["stacks"] = entry.stack_snapshot
            recent.append(item)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rewrite_rule": error.rewrite_rule,
                "instruction_index": error.instruction_index,
                "failing_step_index": error.step_index,
            },
            "recent_steps": recent[-20:],
        }
        return json.dumps(data, indent=2)

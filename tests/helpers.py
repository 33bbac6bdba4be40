from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import List, Optional

from interpreter import Interpreter, RunSummary
from vfs import FileSystem


@dataclass
class ProgramRun:
    interpreter: Interpreter
    summary: Optional[RunSummary] = None
    output: List[str] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.output)

    def stack(self, index: int) -> List[int]:
        assert self.interpreter.context is not None
        return self.interpreter.context.stacks[index].snapshot()


def make_run(
    source: str,
    *,
    file_system: Optional[FileSystem] = None,
    stdin: bytes = b"",
    verbose: bool = False,
) -> ProgramRun:
    """Build an interpreter wired to in-memory sinks without running it."""
    stdin_buffer = io.BytesIO(stdin)
    output: List[str] = []
    diagnostics: List[str] = []
    interpreter = Interpreter(
        source=source,
        filename="<string>",
        verbose=verbose,
        file_system=file_system,
        input_provider=lambda: stdin_buffer.read(1),
        output_sink=output.append,
        diagnostic_sink=diagnostics.append,
    )
    return ProgramRun(interpreter=interpreter, output=output, diagnostics=diagnostics)


def run_program(
    source: str,
    *,
    file_system: Optional[FileSystem] = None,
    stdin: bytes = b"",
    verbose: bool = False,
) -> ProgramRun:
    run = make_run(source, file_system=file_system, stdin=stdin, verbose=verbose)
    run.summary = run.interpreter.run()
    return run

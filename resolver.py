"""Post-pass over the tokenizer output: clear collapsing and jump resolution."""

from __future__ import annotations
import sys
from typing import Callable, Dict, List, Optional

from instructions import UNRESOLVED_TARGET, Clear, Instruction, Jump, Label, UnresolvedJump


def collapse_clears(instructions: List[Instruction]) -> List[Instruction]:
    """Drop every Clear that directly follows another Clear."""
    collapsed: List[Instruction] = []
    for instruction in instructions:
        if isinstance(instruction, Clear) and collapsed and isinstance(collapsed[-1], Clear):
            continue
        collapsed.append(instruction)
    return collapsed


def find_label(instructions: List[Instruction], name: str) -> int:
    # First occurrence wins when a label name is repeated.
    for index, instruction in enumerate(instructions):
        if isinstance(instruction, Label) and instruction.name == name:
            return index
    return UNRESOLVED_TARGET


class LabelResolver:
    def __init__(
        self,
        instructions: List[Instruction],
        *,
        diagnostic_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.instructions = instructions
        self.diagnostic_sink = diagnostic_sink or (lambda text: print(text, file=sys.stderr))
        self.diagnostics: List[str] = []

    def resolve(self) -> List[Instruction]:
        # Collapsing shifts indices, so it has to run before any target is computed.
        resolved = collapse_clears(self.instructions)
        self._report_duplicate_labels(resolved)
        for index, instruction in enumerate(resolved):
            if not isinstance(instruction, UnresolvedJump):
                continue
            target = find_label(resolved, instruction.label)
            if target == UNRESOLVED_TARGET:
                self._diagnose(f"Jump at index {index} refers to undefined label '{instruction.label}'")
            resolved[index] = Jump(target, location=instruction.location)
        return resolved

    def _report_duplicate_labels(self, instructions: List[Instruction]) -> None:
        first_seen: Dict[str, int] = {}
        for index, instruction in enumerate(instructions):
            if not isinstance(instruction, Label):
                continue
            if instruction.name in first_seen:
                self._diagnose(
                    f"Label '{instruction.name}' at index {index} duplicates index {first_seen[instruction.name]}; "
                    "jumps resolve to the first occurrence"
                )
            else:
                first_seen[instruction.name] = index

    def _diagnose(self, message: str) -> None:
        self.diagnostics.append(message)
        self.diagnostic_sink(message)


def resolve(instructions: List[Instruction], diagnostic_sink: Optional[Callable[[str], None]] = None) -> List[Instruction]:
    return LabelResolver(instructions, diagnostic_sink=diagnostic_sink).resolve()

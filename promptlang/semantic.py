from __future__ import annotations
from pathlib import Path
from typing import Union

from loguru import logger

from .ast import Program, PromptUnit
from .callgraph import CallGraph
from .errors import InvalidMetadata, PromptError, PromptSyntaxError, UnresolvedReference
from .parser import add_units, parse_units
from .schemas import Metadata


class SemanticAnalyzer:
    """Second load phase over parsed units:
    - metadata coercion (eager/history only accept true/false; direction required)
    - every unit call target resolves to a loaded unit
    - units calling a blocked unit are blocked too
    - static call cycles are reported (not blocked)

    Invalid units are moved to `program.blocked`; the rest of the program stays usable.
    """

    def __init__(self, program: Program, strict: bool = False):
        self.program = program
        self.strict = strict
        self.graph: CallGraph = CallGraph()

    def analyze(self) -> Program:
        program = self.program
        for unit in list(program):
            try:
                unit.metadata = Metadata.from_raw(unit.name, unit.raw_metadata)
            except InvalidMetadata as e:
                e.line, e.column, e.source = unit.line, unit.column, unit.source
                self._block(unit, e)
            else:
                if not unit.match_block.arms:
                    self._block(unit, InvalidMetadata(f"Unit '{unit.name}' has an empty match block"))

        self.graph = CallGraph.from_units(program)
        program.call_graph = self.graph
        bad = {}
        for caller, target, line in self.graph.dangling():
            unit = program.lookup(caller)
            if caller in bad or unit is None:
                continue
            reason = "failed to load" if target.casefold() in program.blocked else "is not defined"
            bad[caller] = UnresolvedReference(
                f"Unit '{unit.name}' calls '{target}', which {reason}", line, None, unit.source
            )
        for key in list(bad):
            for upstream in self.graph.callers_of(key):
                if upstream not in bad and upstream in program:
                    unit = program[upstream]
                    bad[upstream] = UnresolvedReference(
                        f"Unit '{unit.name}' depends on '{program[key].name}', which cannot load",
                        unit.line, unit.column, unit.source,
                    )
        for key, error in bad.items():
            self._block(program[key], error)

        for cycle in self.graph.cycles():
            logger.warning("[load] possible call cycle: {}", " -> ".join(cycle + cycle[:1]))

        if self.strict and program.load_errors:
            raise program.load_errors[0]
        return program

    def _block(self, unit: PromptUnit, error: PromptError) -> None:
        logger.error("[load] unit '{}' blocked: {}", unit.name, error)
        self.program.block(unit, error)


def load_program(*sources: Union[str, Path], strict: bool = False) -> Program:
    """Parse every source, then validate cross references across all of them.

    A file with a syntax error contributes no units; the error is recorded
    in `load_errors` (or raised when strict).
    """
    program = Program()
    for source in sources:
        label = str(source) if isinstance(source, Path) else "<string>"
        try:
            units = parse_units(source)
        except PromptSyntaxError as e:
            if strict:
                raise
            logger.error("[load] {}", e)
            program.load_errors.append(e)
            continue
        program.sources.append(label)
        add_units(program, units)
    return SemanticAnalyzer(program, strict=strict).analyze()

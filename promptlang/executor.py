from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from loguru import logger

from .ast import Action, Pipe, PromptUnit, ShellCommand, UnitCall
from .errors import CommandFailed, CyclicInvocation, PromptError, UnresolvedReference
from .resolver import export_env, interpolate, trim_output
from .session import Session
from .types import TRANSITIONS, ChainOutcome, ChainState


def unit_workdir(unit: PromptUnit) -> Optional[Path]:
    """Commands run in the directory of the file that defines the unit."""
    if unit.source:
        path = Path(unit.source)
        if path.is_file():
            return path.resolve().parent
    return None


def _log(msg: str, level: str = "INFO") -> None:
    logger.log(level, msg)


@dataclass
class Chain:
    """Bookkeeping for one chain: state trail, in-flight call stack, warnings."""
    root: str
    log: Callable[..., None] = _log
    state: ChainState = ChainState.Idle
    states: List[ChainState] = field(default_factory=lambda: [ChainState.Idle])
    stack: List[str] = field(default_factory=list)
    trail: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)

    def transition(self, new: ChainState) -> None:
        if new == self.state:
            return
        if new not in TRANSITIONS[self.state]:
            raise PromptError(f"Illegal chain transition {self.state.value} -> {new.value}")
        self.log(f"[chain] {self.root}: {self.state.value} -> {new.value}", "DEBUG")
        self.state = new
        self.states.append(new)

    def warn(self, error: PromptError) -> None:
        self.warnings.append(str(error))
        self.log(f"[warn] {error}", "WARNING")

    def in_flight(self, unit: PromptUnit) -> bool:
        return unit.name.casefold() in (n.casefold() for n in self.stack)


class ActionExecutor:
    """Carries out the action of a matched arm.

    `engine` supplies the program, the process runner and `run_unit`, the
    coroutine that drives one unit through model call and matching.
    """

    def __init__(self, engine):
        self.engine = engine

    async def execute(self, action: Action, session: Session, chain: Chain,
                      unit: PromptUnit) -> ChainOutcome:
        if isinstance(action, ShellCommand):
            result = await self._shell(action, session, unit)
            chain.outputs.append(result.stdout)
            if not result.ok:
                # a caller with more targets keeps going; the last action decides the outcome
                chain.warn(CommandFailed(interpolate(action.text, session.bindings, unit.name), result))
                return ChainOutcome.CommandFailed
            return ChainOutcome.Success

        if isinstance(action, Pipe):
            result = await self._shell(action.command, session, unit)
            if not result.ok:
                raise CommandFailed(interpolate(action.command.text, session.bindings, unit.name), result)
            session.bindings["AI"] = trim_output(result.stdout)
            self.engine.log(f"[pipe] {unit.name}: $AI <- {session.bindings['AI']!r}")
            return await self._call(action.call, session, chain, unit)

        if isinstance(action, UnitCall):
            return await self._call(action, session, chain, unit)

        raise TypeError(f"Unsupported action: {action!r}")

    async def _shell(self, command: ShellCommand, session: Session, unit: PromptUnit):
        text = interpolate(command.text, session.bindings, unit.name)
        self.engine.log(f"[shell] {unit.name}: {text}")
        return await self.engine.runner.run(text, env=export_env(session.bindings), cwd=unit_workdir(unit))

    async def _call(self, call: UnitCall, session: Session, chain: Chain,
                    caller: PromptUnit) -> ChainOutcome:
        outcome = ChainOutcome.Success
        for name in call.targets:
            target = self.engine.program.lookup(name)
            if target is None:
                raise UnresolvedReference(f"Unit '{caller.name}' calls '{name}', which is not loaded",
                                          source=caller.source)
            if chain.in_flight(target):
                raise CyclicInvocation(chain.stack, target.name)
            self.engine.log(f"[call] {caller.name} -> {target.name}")
            sub = session if target.history else session.fork(preserve_bindings=True)
            outcome = await self.engine.run_unit(target, sub, chain)
            chain.transition(ChainState.Acting)
        return outcome

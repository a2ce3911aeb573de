from __future__ import annotations
import asyncio
import contextlib
import os
import time
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

try:
    from opentelemetry import trace
    if os.getenv("PROMPTLANG_TRACE") == "1":
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
        _provider = TracerProvider()
        _provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        trace.set_tracer_provider(_provider)
    _otel_tracer = trace.get_tracer(__name__)
except Exception:  # pragma: no cover - optional dependency
    _otel_tracer = None

from .ai_providers import ModelClient, ScriptedProvider, select_provider
from .ast import Program, PromptUnit
from .config import Settings, load_settings
from .errors import (
    CommandFailed, CyclicInvocation, ModelUnavailable, PromptError,
    PromptSyntaxError, UnresolvedVariable,
)
from .executor import ActionExecutor, Chain, unit_workdir
from .matcher import match
from .persistence import PersistenceManager
from .resolver import MetadataResolver
from .schemas import ChainReport
from .semantic import load_program
from .session import Session
from .shell import DryRunRunner, ProcessRunner
from .types import ChainOutcome, ChainState

# runtime error -> terminal outcome of the chain
_OUTCOMES = (
    (CommandFailed, ChainOutcome.CommandFailed),
    (ModelUnavailable, ChainOutcome.ModelUnavailable),
    (CyclicInvocation, ChainOutcome.CyclicInvocation),
    (UnresolvedVariable, ChainOutcome.UnresolvedVariable),
    (PromptSyntaxError, ChainOutcome.LoadError),
)


class Runtime:
    def __init__(self, settings: Optional[Settings] = None, provider: Optional[ModelClient] = None,
                 runner=None, dry_run: bool = False,
                 persistence: Optional[PersistenceManager] = None):
        self.settings = settings if settings is not None else load_settings()
        self.dry_run = dry_run
        self.console: List[str] = []
        self.program: Program = Program()
        self.tracer = _otel_tracer
        if provider is None:
            provider = ScriptedProvider(echo=True) if dry_run else select_provider(self.settings)
        self.provider = provider
        if runner is None:
            runner = DryRunRunner() if dry_run else ProcessRunner(timeout_s=self.settings.command_timeout_s)
        self.runner = runner
        self.resolver = MetadataResolver(self.runner)
        self.executor = ActionExecutor(self)
        self.persistence = persistence
        self.reports: List[ChainReport] = []

    def log(self, msg: str, level: str = "INFO"):
        self.console.append(msg)
        logger.log(level, msg)

    def load(self, *sources: Union[str, Path], strict: bool = False) -> Program:
        self.program = load_program(*sources, strict=strict)
        for error in self.program.load_errors:
            self.log(f"[load] {error}", "ERROR")
        self.log(f"[load] {len(self.program)} unit(s) ready: {', '.join(self.program.names) or '-'}")
        return self.program

    def _span(self, name: str):
        if self.tracer:
            return self.tracer.start_as_current_span(name)
        return contextlib.nullcontext()

    # ---------- Execution entry ----------
    def run(self, name: Optional[str] = None, user: str = "",
            session: Optional[Session] = None) -> List[ChainReport]:
        """Blocking entry point: one named chain, or every eager unit when no name is given."""
        if name is None:
            return asyncio.run(self.run_eager(user))
        return [asyncio.run(self.invoke(name, user, session=session))]

    async def run_eager(self, user: str = "") -> List[ChainReport]:
        units = self.program.eager_units()
        if not units:
            self.log("[chain] no eager units to run")
            return []
        self.log(f"[chain] starting {len(units)} eager chain(s): {', '.join(u.name for u in units)}")
        return list(await asyncio.gather(*(self.invoke(u.name, user) for u in units)))

    async def invoke(self, name: str, user: str = "", session: Optional[Session] = None) -> ChainReport:
        """Run one chain rooted at `name` to its Terminal state.

        Errors end this chain only and are reported through the outcome.
        Passing a restored `session` continues an earlier conversation.
        """
        started = time.perf_counter()
        chain = Chain(root=name, log=self.log)
        if session is None:
            session = Session(user=user)
        elif user:
            session.bindings["USER"] = user
        error: Optional[BaseException] = None

        unit = self.program.lookup(name)
        if unit is None:
            blocked = self.program.blocked.get(name.casefold())
            error = blocked or PromptSyntaxError(f"Unit '{name}' is not defined")
            outcome = ChainOutcome.LoadError
        else:
            chain.root = unit.name
            with self._span(f"chain:{unit.name}"):
                try:
                    outcome = await self.run_unit(unit, session, chain)
                except asyncio.CancelledError as e:
                    error, outcome = e, ChainOutcome.Cancelled
                except PromptError as e:
                    error, outcome = e, self._outcome_for(e)
                except Exception as e:
                    logger.exception("[chain] {} crashed", unit.name)
                    error, outcome = e, ChainOutcome.InternalError

        chain.transition(ChainState.Terminal)
        if error is not None:
            error_text = str(error) or type(error).__name__
        elif outcome == ChainOutcome.CommandFailed and chain.warnings:
            error_text = chain.warnings[-1]
        else:
            error_text = None
        report = ChainReport(
            unit=chain.root,
            outcome=outcome,
            trail=chain.trail,
            answer=session.lookup("AI") or None,
            bindings=dict(session.bindings),
            warnings=chain.warnings,
            outputs=chain.outputs,
            error=error_text,
            states=chain.states,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        level = "INFO" if outcome in (ChainOutcome.Success, ChainOutcome.NoMatch) else "ERROR"
        detail = f": {report.error}" if report.error else ""
        self.log(f"[chain] {chain.root} ended with {outcome.value}{detail}", level)
        self.reports.append(report)
        if self.persistence is not None:
            path = self.persistence.save_state(chain.root, session.snapshot(), report)
            self.log(f"[chain] transcript saved to {path}")
        return report

    @staticmethod
    def _outcome_for(error: PromptError) -> ChainOutcome:
        for cls, outcome in _OUTCOMES:
            if isinstance(error, cls):
                return outcome
        return ChainOutcome.InternalError

    async def run_unit(self, unit: PromptUnit, session: Session, chain: Chain) -> ChainOutcome:
        """Drive one unit: resolve its direction, ask the model, match, act."""
        if chain.in_flight(unit):
            raise CyclicInvocation(chain.stack, unit.name)
        chain.stack.append(unit.name)
        chain.trail.append(unit.name)
        try:
            with self._span(f"unit:{unit.name}"):
                chain.transition(ChainState.AwaitingModel)
                direction = await self.resolver.resolve_direction(
                    unit, session, on_warning=chain.warn, cwd=unit_workdir(unit)
                )
                answer = await self._ask(unit, direction, session)
                session.append_turn(direction, answer, unit.name)

                chain.transition(ChainState.Matching)
                variable = unit.match_block.variable
                subject = session.lookup(variable)
                if subject is None:
                    raise UnresolvedVariable(variable, unit.name)
                found = match(subject, unit.match_block.arms)
                if found is None:
                    self.log(f"[match] {unit.name}: no arm matched {subject!r}")
                    return ChainOutcome.NoMatch
                self.log(f"[match] {unit.name}: arm {found.index + 1} "
                         f"({found.arm.pattern.__class__.__name__.lower()}) matched")
                session.bind(found.bindings)

                chain.transition(ChainState.Acting)
                return await self.executor.execute(found.action, session, chain, unit)
        finally:
            chain.stack.pop()

    async def _ask(self, unit: PromptUnit, direction: str, session: Session) -> str:
        if self.provider is None:
            raise ModelUnavailable("No model provider configured (set an API key or PROMPTLANG_AI_PROVIDER)")
        history = session.history(unit.history)
        self.log(f"[model] {unit.name} <- {direction!r} ({len(history)} prior turn(s))")
        timeout = self.settings.model_timeout_s
        try:
            answer = await asyncio.wait_for(
                asyncio.to_thread(self.provider.ask, direction, history), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise ModelUnavailable(f"Model did not answer within {timeout}s") from e
        self.log(f"[model] {unit.name} -> {answer!r}")
        return answer


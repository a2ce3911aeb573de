from enum import Enum
from dataclasses import dataclass


class ChainState(str, Enum):
    Idle = "Idle"
    AwaitingModel = "AwaitingModel"
    Matching = "Matching"
    Acting = "Acting"
    Terminal = "Terminal"


# Legal state machine edges for one chain
TRANSITIONS = {
    ChainState.Idle: {ChainState.AwaitingModel, ChainState.Terminal},
    ChainState.AwaitingModel: {ChainState.Matching, ChainState.Terminal},
    ChainState.Matching: {ChainState.Acting, ChainState.Terminal},
    ChainState.Acting: {ChainState.AwaitingModel, ChainState.Terminal},
    ChainState.Terminal: set(),
}


class ChainOutcome(str, Enum):
    """How a chain reached its Terminal state."""
    Success = "success"
    NoMatch = "no_match"
    CommandFailed = "command_failed"
    ModelUnavailable = "model_unavailable"
    CyclicInvocation = "cyclic_invocation"
    UnresolvedVariable = "unresolved_variable"
    LoadError = "load_error"
    Cancelled = "cancelled"
    InternalError = "internal_error"

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self]


EXIT_CODES = {
    ChainOutcome.Success: 0,
    ChainOutcome.NoMatch: 1,
    ChainOutcome.CommandFailed: 2,
    ChainOutcome.ModelUnavailable: 3,
    ChainOutcome.CyclicInvocation: 4,
    ChainOutcome.UnresolvedVariable: 5,
    ChainOutcome.LoadError: 6,
    ChainOutcome.Cancelled: 130,
    ChainOutcome.InternalError: 70,
}


@dataclass
class CommandResult:
    """Captured output of one external command."""
    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

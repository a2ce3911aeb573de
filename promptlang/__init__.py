from .errors import (
    CommandFailed, ConfigError, CyclicInvocation, DuplicateUnit, InvalidMetadata,
    ModelUnavailable, PromptError, PromptSyntaxError, UnresolvedReference, UnresolvedVariable,
)
from .parser import parse
from .runtime import Runtime
from .schemas import ChainReport
from .semantic import load_program
from .session import Session
from .types import ChainOutcome, ChainState

__version__ = "0.1.0"

from __future__ import annotations
import re
from typing import Dict, List, Mapping, Optional

from .schemas import SessionState, Turn

BUILTIN_VARIABLES = ("AI", "USER")

_POSITIONAL = re.compile(r"^M\d+$")


class Session:
    """Chain-scoped conversation state: an append-only turn log plus variable bindings.

    A Session belongs to exactly one chain. `fork()` gives a sub-call an empty
    history; with `preserve_bindings` the fork shares the caller's binding
    scope (the same dict), so captures made inside the sub-call are visible
    to the caller afterwards.
    """

    def __init__(self, user: str = "", bindings: Optional[Dict[str, str]] = None):
        self.turns: List[Turn] = []
        if bindings is None:
            bindings = dict.fromkeys(BUILTIN_VARIABLES, "")
            bindings["USER"] = user
        self.bindings: Dict[str, str] = bindings
        self.parent: Optional[Session] = None

    def append_turn(self, direction: str, answer: str, unit: Optional[str] = None) -> Turn:
        turn = Turn(direction=direction, answer=answer, unit=unit)
        self.turns.append(turn)
        self.bindings["AI"] = answer
        return turn

    def current_answer(self) -> Optional[str]:
        if not self.turns:
            return None
        return self.turns[-1].answer

    def fork(self, preserve_bindings: bool = True) -> "Session":
        if preserve_bindings:
            child = Session(bindings=self.bindings)
        else:
            child = Session(user=self.bindings.get("USER", ""))
        child.parent = self
        return child

    def bind(self, values: Mapping[str, str]) -> None:
        """Merge match captures. Positional captures from an earlier match are dropped first."""
        if any(_POSITIONAL.match(k) for k in values):
            for stale in [k for k in self.bindings if _POSITIONAL.match(k)]:
                del self.bindings[stale]
        self.bindings.update(values)

    def lookup(self, name: str) -> Optional[str]:
        return self.bindings.get(name)

    def is_bound(self, name: str) -> bool:
        return name in self.bindings

    def history(self, include: bool = True) -> List[Turn]:
        """Turns to send with the next model request, oldest first."""
        return list(self.turns) if include else []

    def transcript(self, direction: Optional[str] = None, include_history: bool = True) -> str:
        """Render prior turns, then the pending direction if one is given, as one text block."""
        parts = []
        for turn in self.history(include_history):
            label = f"[{turn.unit}] " if turn.unit else ""
            parts.append(f"{label}DIRECTION: {turn.direction}\nANSWER: {turn.answer}")
        if direction is not None:
            parts.append(f"DIRECTION: {direction}")
        return "\n\n".join(parts)

    def snapshot(self) -> SessionState:
        return SessionState(turns=list(self.turns), bindings=dict(self.bindings))

    @classmethod
    def restore(cls, state: SessionState) -> "Session":
        session = cls(bindings=dict(state.bindings))
        session.turns = list(state.turns)
        return session

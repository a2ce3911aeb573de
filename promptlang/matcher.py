from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from .ast import Action, Literal, MatchArm, Pattern, Regex


@dataclass
class Match:
    arm: MatchArm
    index: int
    bindings: Dict[str, str] = field(default_factory=dict)

    @property
    def action(self) -> Action:
        return self.arm.action


def match_pattern(pattern: Pattern, answer: str) -> Optional[Dict[str, str]]:
    """Bindings for a matching pattern, None otherwise.

    Literals compare against the answer with surrounding whitespace removed.
    Regexes search anywhere in the answer. `M0` is the whole match, `M1..Mn`
    the positional groups (unmatched groups bind to ""), named groups bind
    under their own name.
    """
    if isinstance(pattern, Literal):
        subject = answer.strip()
        if pattern.ignore_case:
            hit = subject.casefold() == pattern.text.casefold()
        else:
            hit = subject == pattern.text
        return {"M0": subject} if hit else None

    if isinstance(pattern, Regex):
        m = pattern.compiled.search(answer)
        if m is None:
            return None
        bindings = {"M0": m.group(0)}
        for i, group in enumerate(m.groups(), start=1):
            bindings[f"M{i}"] = group if group is not None else ""
        for name, group in m.groupdict().items():
            bindings[name] = group if group is not None else ""
        return bindings

    raise TypeError(f"Unsupported pattern: {pattern!r}")


def match(answer: str, arms: Sequence[MatchArm]) -> Optional[Match]:
    """First arm (in declaration order) whose pattern matches. None is a normal no-match."""
    for index, arm in enumerate(arms):
        bindings = match_pattern(arm.pattern, answer)
        if bindings is not None:
            return Match(arm=arm, index=index, bindings=bindings)
    return None

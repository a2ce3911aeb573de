# AST types for promptlang programs
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union


# ---------- Templates (metadata values with shell substitutions) ----------
@dataclass(frozen=True)
class TextSegment:
    text: str


@dataclass(frozen=True)
class ShellSegment:
    command: str


@dataclass(frozen=True)
class Template:
    segments: Tuple[Union[TextSegment, ShellSegment], ...] = ()

    @classmethod
    def parse(cls, text: str) -> "Template":
        """Split text on backticks. Raises ValueError on an unterminated backtick."""
        parts = text.split("`")
        if len(parts) % 2 == 0:
            raise ValueError("unterminated shell substitution (missing closing '`')")
        segments: List[Union[TextSegment, ShellSegment]] = []
        for i, part in enumerate(parts):
            if i % 2:
                segments.append(ShellSegment(part))
            elif part:
                segments.append(TextSegment(part))
        return cls(tuple(segments))

    @property
    def text(self) -> str:
        out = []
        for seg in self.segments:
            if isinstance(seg, ShellSegment):
                out.append(f"`{seg.command}`")
            else:
                out.append(seg.text)
        return "".join(out)


@dataclass(frozen=True)
class MetaValue:
    key: str
    text: str
    line: int = 0
    column: int = 0

    @property
    def template(self) -> Template:
        return Template.parse(self.text)


# ---------- Patterns ----------
@dataclass(frozen=True)
class Literal:
    text: str
    ignore_case: bool = False


_FLAG_BITS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


@dataclass(frozen=True)
class Regex:
    """A regular expression pattern. `delimiter` is "paren" for `(...)` or "slash" for `/.../flags`."""
    source: str
    flags: str = ""
    delimiter: str = "paren"
    compiled: Any = field(default=None, compare=False, repr=False)

    @classmethod
    def build(cls, source: str, flags: str = "", delimiter: str = "paren") -> "Regex":
        bits = 0
        for f in flags:
            bits |= _FLAG_BITS[f]
        return cls(source, flags, delimiter, re.compile(source, bits))


Pattern = Union[Literal, Regex]


# ---------- Actions ----------
@dataclass(frozen=True)
class ShellCommand:
    text: str


@dataclass(frozen=True)
class UnitCall:
    targets: Tuple[str, ...]


@dataclass(frozen=True)
class Pipe:
    """Run `command`, bind its output as $AI, then run `call`."""
    command: ShellCommand
    call: UnitCall


Action = Union[ShellCommand, UnitCall, Pipe]


def call_targets(action: Action) -> Tuple[str, ...]:
    if isinstance(action, UnitCall):
        return action.targets
    if isinstance(action, Pipe):
        return action.call.targets
    return ()


# ---------- Units ----------
@dataclass(frozen=True)
class MatchArm:
    pattern: Pattern
    action: Action
    line: int = 0


@dataclass(frozen=True)
class MatchBlock:
    variable: str
    arms: Tuple[MatchArm, ...]


@dataclass
class PromptUnit:
    name: str
    raw_metadata: Dict[str, MetaValue]
    match_block: MatchBlock
    line: int = 0
    column: int = 0
    source: Optional[str] = None
    # set by the validator once the metadata passed coercion
    metadata: Any = None

    @property
    def key(self) -> str:
        return self.name.casefold()

    @property
    def eager(self) -> bool:
        return bool(self.metadata and self.metadata.eager)

    @property
    def history(self) -> bool:
        return True if self.metadata is None else self.metadata.history


class Program:
    """Named units of one or more source files. Read-only after validation."""

    def __init__(self) -> None:
        self._units: Dict[str, PromptUnit] = {}
        self.blocked: Dict[str, Exception] = {}
        self.load_errors: List[Exception] = []
        self.sources: List[str] = []
        self.call_graph: Any = None

    def add(self, unit: PromptUnit) -> None:
        self._units[unit.key] = unit

    def lookup(self, name: str) -> Optional[PromptUnit]:
        return self._units.get(name.casefold())

    def __getitem__(self, name: str) -> PromptUnit:
        unit = self.lookup(name)
        if unit is None:
            raise KeyError(name)
        return unit

    def __contains__(self, name: str) -> bool:
        return name.casefold() in self._units

    def __iter__(self) -> Iterator[PromptUnit]:
        return iter(self._units.values())

    def __len__(self) -> int:
        return len(self._units)

    @property
    def names(self) -> List[str]:
        return [u.name for u in self._units.values()]

    def eager_units(self) -> List[PromptUnit]:
        return [u for u in self._units.values() if u.eager]

    def block(self, unit: PromptUnit, error: Exception) -> None:
        self._units.pop(unit.key, None)
        self.blocked[unit.key] = error
        self.load_errors.append(error)


# ---------- Serialization ----------
_META_ORDER = ("description", "direction", "eager", "history")
_KNOWN_KEY_LINE = re.compile(r"^[ \t]*(?:description|direction|eager|history)[ \t]*:")


def _format_value(key: str, text: str) -> str:
    lines = text.split("\n")
    quoted = len(text) >= 2 and text[0] == '"' and text[-1] == '"'
    needs_block = (
        len(lines) > 1
        or quoted
        or text.strip() in ("|", ">")
        or text != text.strip()
        or any(_KNOWN_KEY_LINE.match(ln) for ln in lines[1:])
    )
    if not needs_block:
        return f"{key}: {text}"
    body = "\n".join(f"  {ln}" if ln.strip() else "" for ln in lines)
    return f"{key}: |\n{body}"


def format_pattern(pattern: Pattern) -> str:
    if isinstance(pattern, Literal):
        escaped = (pattern.text.replace("\\", "\\\\").replace('"', '\\"')
                   .replace("\n", "\\n").replace("\t", "\\t").replace("\r", "\\r"))
        return f'"{escaped}"' + ("i" if pattern.ignore_case else "")
    if pattern.delimiter == "slash":
        return f"/{pattern.source}/{pattern.flags}"
    return pattern.source


def format_action(action: Action) -> str:
    if isinstance(action, ShellCommand):
        return f"`{action.text}`"
    if isinstance(action, Pipe):
        return f"`{action.command.text}` => " + ", ".join(action.call.targets)
    return ", ".join(action.targets)


def format_unit(unit: PromptUnit) -> str:
    """Render a unit back to source. Not byte-identical, but parses to an equivalent unit."""
    lines = [unit.name]
    keys = [k for k in _META_ORDER if k in unit.raw_metadata]
    for key in keys:
        lines.append(_format_value(key, unit.raw_metadata[key].text))
    lines.append("{")
    lines.append(f"  match ${unit.match_block.variable} {{")
    for arm in unit.match_block.arms:
        lines.append(f"    {format_pattern(arm.pattern)} => {format_action(arm.action)}")
    lines.append("  }")
    lines.append("}")
    return "\n".join(lines) + "\n"


def format_program(units) -> str:
    return "\n".join(format_unit(u) for u in units)

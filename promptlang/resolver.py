"""Resolution of unit metadata into the literal direction sent to the model.

Variables are written `$NAME` or `${NAME}` (NAME is upper case); `$$` is a
literal dollar sign. Values are inserted verbatim: nothing is shell-escaped.
A command that must handle untrusted text safely can write `$$AI` and read
the value from the environment, where every binding is also exported.
"""
from __future__ import annotations
import re
from typing import Callable, Dict, Mapping, Optional

from .ast import PromptUnit, ShellSegment, Template
from .errors import CommandFailed, UnresolvedVariable
from .session import Session

VARIABLE = re.compile(r"\$(?:(\$)|\{([A-Z_][A-Z0-9_]*)\}|([A-Z_][A-Z0-9_]*))")
_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def interpolate(text: str, bindings: Mapping[str, str], unit: Optional[str] = None) -> str:
    def _sub(m: re.Match) -> str:
        if m.group(1):
            return "$"
        name = m.group(2) or m.group(3)
        if name not in bindings:
            raise UnresolvedVariable(name, unit)
        return bindings[name]
    return VARIABLE.sub(_sub, text)


def trim_output(stdout: str) -> str:
    """Drop exactly one trailing newline."""
    if stdout.endswith("\r\n"):
        return stdout[:-2]
    if stdout.endswith("\n"):
        return stdout[:-1]
    return stdout


def export_env(bindings: Mapping[str, str]) -> Dict[str, str]:
    return {k: str(v) for k, v in bindings.items() if _ENV_NAME.match(k)}


class MetadataResolver:
    def __init__(self, runner, cwd=None):
        self.runner = runner
        self.cwd = cwd

    async def resolve_direction(self, unit: PromptUnit, session: Session,
                                on_warning: Optional[Callable[[CommandFailed], None]] = None,
                                cwd=None) -> str:
        return await self.resolve(unit.metadata.direction, session, unit.name, on_warning, cwd)

    async def resolve(self, template: Template, session: Session, unit: Optional[str] = None,
                      on_warning: Optional[Callable[[CommandFailed], None]] = None,
                      cwd=None) -> str:
        # shell segments run first; their output is spliced in verbatim
        outputs: Dict[int, str] = {}
        for i, seg in enumerate(template.segments):
            if not isinstance(seg, ShellSegment):
                continue
            command = interpolate(seg.command, session.bindings, unit)
            result = await self.runner.run(command, env=export_env(session.bindings), cwd=cwd or self.cwd)
            if not result.ok and on_warning is not None:
                on_warning(CommandFailed(command, result))
            outputs[i] = trim_output(result.stdout)

        parts = []
        for i, seg in enumerate(template.segments):
            if i in outputs:
                parts.append(outputs[i])
            else:
                parts.append(interpolate(seg.text, session.bindings, unit))
        return "".join(parts)

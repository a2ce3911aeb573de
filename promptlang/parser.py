from __future__ import annotations
import re
import textwrap
from pathlib import Path
from typing import List, Optional, Union

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken, VisitError

from .ast import (
    Literal, MatchArm, MatchBlock, MetaValue, Pipe, Program, PromptUnit, Regex,
    ShellCommand, Template, UnitCall,
)
from .errors import DuplicateUnit, PromptSyntaxError

GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")

METADATA_KEYS = ("description", "direction", "eager", "history")

_parser = None

# string literal escapes; any other escaped character stands for itself
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}
_ESCAPE_RE = re.compile(r"\\(.)")


def _unescape(body: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def _load_parser() -> Lark:
    global _parser
    if _parser is None:
        grammar = GRAMMAR_PATH.read_text(encoding="utf-8")
        _parser = Lark(grammar, start="program", parser="lalr", lexer="contextual", propagate_positions=True)
    return _parser


def _meta_value(token: Token) -> MetaValue:
    raw = str(token)
    key, _, rest = raw.partition(":")
    key = key.strip()
    head, _, tail = rest.partition("\n")
    head = head.strip()
    if head in ("|", ">"):
        head = ""
    lines = [head] if head else []
    if tail:
        lines.extend(textwrap.dedent(tail).split("\n"))
    text = "\n".join(ln.rstrip() for ln in lines).strip("\n")
    if "\n" not in text and len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        text = text[1:-1]
    return MetaValue(key=key, text=text, line=token.line, column=token.column)


class _ProgramBuilder(Transformer):
    """Turns the lark tree into promptlang AST nodes."""

    def __init__(self, source: Optional[str]):
        super().__init__()
        self.source = source

    def _error(self, message: str, token) -> PromptSyntaxError:
        return PromptSyntaxError(message, getattr(token, "line", None), getattr(token, "column", None), self.source)

    def program(self, units):
        return list(units)

    def unit(self, children):
        name_tok = children[0]
        match_block = children[-1]
        metadata = {}
        for tok in children[1:-1]:
            value = _meta_value(tok)
            if value.key not in METADATA_KEYS:
                raise self._error(
                    f"Unknown metadata key '{value.key}' in unit '{name_tok}' (expected one of: {', '.join(METADATA_KEYS)})",
                    tok,
                )
            if value.key in metadata:
                raise self._error(f"Metadata key '{value.key}' repeated in unit '{name_tok}'", tok)
            try:
                Template.parse(value.text)
            except ValueError as e:
                raise self._error(f"{e} in '{value.key}' of unit '{name_tok}'", tok)
            metadata[value.key] = value
        return PromptUnit(
            name=str(name_tok),
            raw_metadata=metadata,
            match_block=match_block,
            line=name_tok.line,
            column=name_tok.column,
            source=self.source,
        )

    def match_block(self, children):
        var = str(children[0])[1:]
        return MatchBlock(variable=var, arms=tuple(children[1:]))

    @v_args(meta=True)
    def arm(self, meta, children):
        pattern, action = children
        return MatchArm(pattern=pattern, action=action, line=meta.line)

    @v_args(inline=True)
    def literal(self, tok):
        raw = str(tok)
        ignore_case = raw.endswith("i")
        body = raw[1:-2] if ignore_case else raw[1:-1]
        return Literal(text=_unescape(body), ignore_case=ignore_case)

    @v_args(inline=True)
    def regex_paren(self, tok):
        return self._compile(str(tok), "", "paren", tok)

    @v_args(inline=True)
    def regex_slash(self, tok):
        raw = str(tok)
        end = raw.rindex("/")
        return self._compile(raw[1:end], raw[end + 1:], "slash", tok)

    def _compile(self, source: str, flags: str, delimiter: str, tok) -> Regex:
        try:
            return Regex.build(source, flags, delimiter)
        except re.error as e:
            raise self._error(f"Invalid regular expression {source!r}: {e}", tok)

    @v_args(inline=True)
    def shell_action(self, tok):
        return ShellCommand(str(tok)[1:-1])

    @v_args(inline=True)
    def pipe_action(self, tok, call):
        return Pipe(command=ShellCommand(str(tok)[1:-1]), call=call)

    @v_args(inline=True)
    def call_action(self, call):
        return call

    def unit_call(self, names):
        return UnitCall(targets=tuple(str(n) for n in names))


def _describe(e: UnexpectedInput) -> str:
    """Map lark errors onto the language's error vocabulary."""
    if isinstance(e, UnexpectedCharacters):
        ch = e.char
        allowed = set(e.allowed or ())
        if ch == "`" and "SHELL" in allowed:
            return "Unterminated shell command (missing closing '`')"
        if ch == '"' and "STRING" in allowed:
            return "Unterminated string literal"
        if ch in "(/" and {"REGEX_PAREN", "REGEX_SLASH"} & allowed:
            return "Unterminated regular expression (a pattern must be closed and followed by '=>')"
        if "META" in allowed:
            return "Expected a metadata line ('key: value') after the unit name"
        return f"Unexpected character {ch!r}"
    if isinstance(e, UnexpectedEOF):
        return "Unexpected end of input (unclosed match block?)"
    if isinstance(e, UnexpectedToken):
        expected = set(e.expected or ())
        found = e.token.type
        if "MATCH" in expected:
            return "Missing 'match' keyword after '{'"
        if {"SHELL", "NAME"} <= expected and found != "NAME":
            return "Match arm has no action (expected a `command` or a unit name after '=>')"
        if found == "$END":
            return "Unexpected end of input (unclosed match block?)"
        if found == "LBRACE" and "META" in expected:
            return "Unit has no metadata block"
        return f"Unexpected token {str(e.token)!r}"
    return str(e)


def _read(source: Union[str, Path]) -> tuple[str, Optional[str]]:
    if isinstance(source, Path):
        return source.read_text(encoding="utf-8"), str(source)
    return str(source), None


def parse_units(source: Union[str, Path], name: Optional[str] = None) -> List[PromptUnit]:
    """Parse one source text (or file) into its units, in source order. No validation."""
    text, path = _read(source)
    origin = name or path
    text = text.replace("\r\n", "\n")
    try:
        tree = _load_parser().parse(text)
        return _ProgramBuilder(origin).transform(tree)
    except VisitError as e:
        if isinstance(e.orig_exc, PromptSyntaxError):
            raise e.orig_exc from None
        raise
    except UnexpectedInput as e:
        line = getattr(e, "line", None)
        column = getattr(e, "column", None)
        if line is not None and line < 0:
            line = text.count("\n") + 1
            column = 1
        raise PromptSyntaxError(_describe(e), line, column, origin) from e


def parse(source: Union[str, Path], name: Optional[str] = None) -> Program:
    """Parse a source into an unvalidated Program (see semantic.load_program for the full load)."""
    program = Program()
    program.sources.append(name or (str(source) if isinstance(source, Path) else "<string>"))
    add_units(program, parse_units(source, name))
    return program


def add_units(program: Program, units: List[PromptUnit]) -> None:
    """Add units to a program; a name already taken (in any loaded file) is a DuplicateUnit error."""
    for unit in units:
        existing = program.lookup(unit.name)
        if existing is not None or unit.key in program.blocked:
            where = f" (first defined at line {existing.line})" if existing is not None else ""
            program.load_errors.append(
                DuplicateUnit(f"Duplicate unit '{unit.name}'{where}", unit.line, unit.column, unit.source)
            )
            continue
        program.add(unit)

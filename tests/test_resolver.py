import asyncio

import pytest

from promptlang.ast import Template
from promptlang.errors import CommandFailed, UnresolvedVariable
from promptlang.resolver import MetadataResolver, export_env, interpolate, trim_output
from promptlang.session import Session
from promptlang.types import CommandResult
from conftest import FakeRunner


def test_interpolate_forms():
    bindings = {"USER": "ann", "AI": "hi", "M1": "x"}
    assert interpolate("$USER said ${AI}${M1}", bindings) == "ann said hix"
    assert interpolate("cost: $$5, env $$AI", bindings) == "cost: $5, env $AI"
    assert interpolate("lower $user stays", bindings) == "lower $user stays"


def test_unbound_variable_is_an_error_not_empty():
    with pytest.raises(UnresolvedVariable) as exc:
        interpolate("hello $NOBODY", {"USER": ""}, unit="greet")
    assert exc.value.name == "NOBODY"
    assert "greet" in str(exc.value)


def test_trim_output_drops_one_newline():
    assert trim_output("a\n\n") == "a\n"
    assert trim_output("a\r\n") == "a"
    assert trim_output("a") == "a"


def test_export_env_skips_invalid_names():
    assert export_env({"AI": "x", "bad-name": "y"}) == {"AI": "x"}


def test_shell_segments_run_before_interpolation():
    runner = FakeRunner({"cat notes.txt": CommandResult("$USER is literal\n", "", 0)})
    session = Session(user="ann")
    session.bind({"FILE": "notes.txt"})
    template = Template.parse("Summarize for $USER: `cat $FILE`")
    text = asyncio.run(MetadataResolver(runner).resolve(template, session, unit="t"))
    assert text == "Summarize for ann: $USER is literal"
    command, env, _ = runner.calls[0]
    assert command == "cat notes.txt"
    assert env["FILE"] == "notes.txt"
    assert env["USER"] == "ann"


def test_failed_substitution_is_a_warning():
    runner = FakeRunner(default=CommandResult("partial\n", "boom", 3))
    warnings = []
    text = asyncio.run(MetadataResolver(runner).resolve(
        Template.parse("got `false`"), Session(), on_warning=warnings.append))
    assert text == "got partial"
    assert isinstance(warnings[0], CommandFailed)
    assert "exit 3" in str(warnings[0])

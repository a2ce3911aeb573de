import pytest

from promptlang.errors import DuplicateUnit, InvalidMetadata, PromptSyntaxError, UnresolvedReference
from promptlang.semantic import load_program


EAGER_STOP = """
watcher
direction: Should we stop?
eager: true
{
  match $AI {
    "stop" => other
  }
}
"""

OTHER = """
other
direction: Stopping.
{ match $AI { /.*/ => `true` } }
"""


def test_eager_unit_rejected_only_when_target_undefined():
    program = load_program(EAGER_STOP)
    assert "watcher" not in program
    assert isinstance(program.blocked["watcher"], UnresolvedReference)
    assert "'other'" in str(program.blocked["watcher"])

    program = load_program(EAGER_STOP + OTHER)
    assert program.load_errors == []
    assert [u.name for u in program.eager_units()] == ["watcher"]


def test_references_resolve_across_files():
    program = load_program(EAGER_STOP, OTHER)
    assert program.load_errors == []
    assert program.names == ["watcher", "other"]


def test_blocking_is_transitive_and_local():
    program = load_program("""
a
direction: a
{ match $AI { "x" => b } }
b
direction: b
{ match $AI { "x" => missing } }
c
direction: c
{ match $AI { "x" => `echo fine` } }
""")
    assert program.names == ["c"]
    assert set(program.blocked) == {"a", "b"}
    assert all(isinstance(e, UnresolvedReference) for e in program.load_errors)


@pytest.mark.parametrize("line,message", [
    ("eager: yes", "eager"),
    ("history: False", "history"),
])
def test_invalid_boolean_metadata(line, message):
    program = load_program(f"""
u
direction: hello
{line}
{{ match $AI {{ "a" => `true` }} }}
""")
    assert "u" not in program
    err = program.blocked["u"]
    assert isinstance(err, InvalidMetadata)
    assert message in str(err)
    assert err.line == 2


def test_missing_direction():
    program = load_program("""
u
description: nothing to ask
{ match $AI { "a" => `true` } }
""")
    assert isinstance(program.blocked["u"], InvalidMetadata)


def test_caller_of_invalid_unit_is_blocked():
    program = load_program("""
caller
direction: go
{ match $AI { "a" => broken } }
broken
direction: x
eager: maybe
{ match $AI { "a" => `true` } }
""")
    assert len(program) == 0
    assert "failed to load" in str(program.blocked["caller"])


def test_syntax_error_in_one_file_keeps_others(tmp_path):
    good = tmp_path / "good.pr"
    good.write_text(OTHER)
    bad = tmp_path / "bad.pr"
    bad.write_text("bad\ndirection: x\n{ match $AI { \"a\" => `oops } }\n")
    program = load_program(bad, good)
    assert program.names == ["other"]
    assert isinstance(program.load_errors[0], PromptSyntaxError)
    assert program.load_errors[0].source == str(bad)


def test_strict_raises_first_error():
    with pytest.raises(UnresolvedReference):
        load_program(EAGER_STOP, strict=True)


def test_duplicate_across_files():
    program = load_program(OTHER, OTHER.replace("other", "OTHER"))
    assert len(program) == 1
    assert isinstance(program.load_errors[0], DuplicateUnit)


def test_static_cycle_is_only_a_warning():
    program = load_program("""
ping
direction: ping
{ match $AI { "again" => pong } }
pong
direction: pong
{ match $AI { "again" => ping } }
""")
    assert program.load_errors == []
    assert program.call_graph.cycles()

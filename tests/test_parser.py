"""
Unit tests for the promptlang parser.
Tests parse()/parse_units() and PromptSyntaxError reporting.
"""
import pytest

from promptlang.ast import Literal, Pipe, Regex, ShellCommand, ShellSegment, TextSegment, UnitCall, format_program
from promptlang.errors import DuplicateUnit, PromptSyntaxError
from promptlang.matcher import match
from promptlang.parser import parse, parse_units


def test_parse_table_unit(table_source):
    program = parse(table_source)
    assert len(program) == 1
    unit = program["table"]
    assert unit.name == "table"
    assert unit.raw_metadata["direction"].text == "Is this valid JSON? $USER"
    assert unit.match_block.variable == "AI"

    arm = unit.match_block.arms[0]
    assert isinstance(arm.pattern, Regex)
    assert arm.pattern.source == "(?i:^yes)"
    assert arm.action == ShellCommand("print-table $USER")


def test_names_are_case_insensitive_but_stored_verbatim():
    program = parse("""
MyUnit
direction: hi
{ match $AI { "x" => `true` } }
""")
    assert "myunit" in program
    assert program.lookup("MYUNIT").name == "MyUnit"


def test_block_scalar_direction():
    units = parse_units("""
story
description: multi line
direction: |
  First line.

    Indented line.
  `date +%Y`
eager: true
{
  match $AI {
    /.+/s => `true`
  }
}
""")
    raw = units[0].raw_metadata
    assert raw["direction"].text == "First line.\n\n  Indented line.\n`date +%Y`"
    assert raw["eager"].text == "true"
    template = raw["direction"].template
    assert template.segments[-1] == ShellSegment("date +%Y")
    assert isinstance(template.segments[0], TextSegment)


def test_patterns_and_actions():
    units = parse_units("""
router
direction: route
{
  match $AI {
    "Stop"i => `echo stopped`
    "exact \\"quoted\\"" => done
    /^go (\\w+)$/im => `echo $M1` => done, other
    (\\d+) => done, other
  }
}
""")
    arms = units[0].match_block.arms
    assert arms[0].pattern == Literal("Stop", ignore_case=True)
    assert arms[1].pattern == Literal('exact "quoted"')
    assert arms[1].action == UnitCall(("done",))
    assert isinstance(arms[2].pattern, Regex)
    assert arms[2].pattern.flags == "im"
    assert arms[2].pattern.delimiter == "slash"
    assert arms[2].action == Pipe(ShellCommand("echo $M1"), UnitCall(("done", "other")))
    assert arms[3].action == UnitCall(("done", "other"))
    assert [a.line for a in arms] == [6, 7, 8, 9]


def test_comments_and_crlf():
    src = "# leading comment\r\nunit\r\ndirection: x\r\n{ match $AI { # inline\r\n \"a\" => `true` } }\r\n"
    program = parse(src)
    assert program["unit"].raw_metadata["direction"].text == "x"


@pytest.mark.parametrize("src,fragment", [
    ("u\ndirection: x\n{ match $AI { \"a\" => `echo } }\n", "shell"),
    ("u\ndirection: x\n{ match $AI { \"a => `true` } }\n", "string"),
    ("u\ncolour: red\ndirection: x\n{ match $AI { \"a\" => `true` } }\n", "Unknown metadata key 'colour'"),
    ("u\ndirection: x\n{ $AI { \"a\" => `true` } }\n", "match"),
    ("u\ndirection: x\n{ match $AI { \"a\" => } }\n", "no action"),
    ("u\ndirection: x\n{ match $AI { /a(/ => `true` } }\n", "Invalid regular expression"),
    ("u\ndirection: run `date\n{ match $AI { \"a\" => `true` } }\n", "unterminated shell substitution"),
    ("u\ndirection: x\ndirection: y\n{ match $AI { \"a\" => `true` } }\n", "repeated"),
])
def test_syntax_errors(src, fragment):
    with pytest.raises(PromptSyntaxError) as exc:
        parse(src)
    assert fragment in str(exc.value)
    assert exc.value.line is not None


def test_syntax_error_reports_line_and_column():
    src = "ok\ndirection: x\n{ match $AI { \"a\" => `true` } }\n\nbad\ndirection: y\n{ match $AI { \"a\" => `oops } }\n"
    with pytest.raises(PromptSyntaxError) as exc:
        parse(src, name="demo.pr")
    err = exc.value
    assert err.line == 7
    assert err.column > 1
    assert str(err).startswith("demo.pr: line 7")


def test_duplicate_units_are_recorded():
    program = parse("""
dup
direction: one
{ match $AI { "a" => `true` } }
DUP
direction: two
{ match $AI { "a" => `true` } }
""")
    assert len(program) == 1
    assert program["dup"].raw_metadata["direction"].text == "one"
    assert isinstance(program.load_errors[0], DuplicateUnit)


def test_round_trip_preserves_match_behavior():
    src = """
first
description: "quoted: value"
direction: |
  Line one
  Line two with `echo $USER`
history: false
{
  match $AI {
    "yes"i => `echo ok`
    /^(?P<N>\\d+)$/ => second
    (?i:maybe) => `echo $M0` => second, first
  }
}

second
direction: plain
{ match $AI { "a" => `true` } }
"""
    units = parse_units(src)
    again = parse_units(format_program(units))
    assert [u.name for u in again] == ["first", "second"]
    for old, new in zip(units, again):
        assert {k: v.text for k, v in old.raw_metadata.items()} == {k: v.text for k, v in new.raw_metadata.items()}
        assert [a.action for a in old.match_block.arms] == [a.action for a in new.match_block.arms]
    for answer in ["YES", "42", "well maybe", "nothing"]:
        m1 = match(answer, units[0].match_block.arms)
        m2 = match(answer, again[0].match_block.arms)
        assert (m1 and (m1.index, m1.bindings)) == (m2 and (m2.index, m2.bindings))


def test_example_files_parse(examples_dir):
    for path in sorted(examples_dir.glob("*.pr")):
        assert len(parse_units(path)) >= 1


def test_literal_escapes_decode_and_round_trip():
    units = parse_units('u\ndirection: x\n{ match $AI { "a\\nb\\t\\"c\\\\" => `true` } }\n')
    pattern = units[0].match_block.arms[0].pattern
    assert pattern == Literal('a\nb\t"c\\')
    assert match("a\nb\t\"c\\", units[0].match_block.arms) is not None
    again = parse_units(format_program(units))
    assert again[0].match_block.arms[0].pattern == pattern


def test_trailing_comma_after_arm_is_rejected():
    with pytest.raises(PromptSyntaxError) as exc:
        parse('u\ndirection: x\n{ match $AI {\n  /^yes/i => go,\n  "no" => `true`\n} }\ngo\ndirection: y\n{ match $AI { "a" => `true` } }\n')
    assert exc.value.line == 5
    assert "Unexpected token" in str(exc.value)

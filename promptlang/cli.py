import sys
import json
import argparse
from pathlib import Path

from loguru import logger

from .ai_providers import ScriptedProvider
from .ast import format_program
from .config import DEFAULT_CONFIG_FILE, DEFAULT_CONFIG_PATH, load_settings
from .errors import ConfigError, PromptSyntaxError
from .parser import parse_units
from .persistence import PersistenceManager
from .runtime import Runtime
from .semantic import load_program
from .session import Session
from .types import ChainOutcome


def _configure_logging(verbose: bool, quiet: bool) -> None:
    level = "DEBUG" if verbose else "WARNING" if quiet else "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level, format="<level>{message}</level>")


def _find_source(target: str) -> Path:
    """Heuristic search for a source file."""
    potential_paths = [
        Path(target),
        Path(f"{target}.pr"),
        Path("examples") / target,
        Path("examples") / f"{target}.pr",
    ]
    for p in potential_paths:
        if p.exists() and p.is_file():
            return p
    raise FileNotFoundError(
        f"Could not find prompt file for '{target}' (checked: {', '.join(str(p) for p in potential_paths)})"
    )


def _location(error) -> str:
    source = getattr(error, "source", None) or "<input>"
    line = getattr(error, "line", None)
    if line is None:
        return source
    return f"{source}:{line}:{getattr(error, 'column', None) or 1}"


def _message(error) -> str:
    return getattr(error, "message", None) or str(error)


def _latest_transcript(state_dir: str, unit: str):
    pm = PersistenceManager(state_dir)
    path = pm.get_latest_state(unit)
    if path is None:
        raise FileNotFoundError(f"No saved transcript for unit '{unit}' in {state_dir}")
    return pm.load_state(path)


def _restore_session(state_dir: str, unit: str) -> Session:
    transcript = _latest_transcript(state_dir, unit)
    logger.info("[chain] resuming {} from {} ({} turn(s))", unit, transcript.timestamp,
                len(transcript.session.turns))
    return Session.restore(transcript.session)


def cmd_run(args) -> int:
    sources = [_find_source(t) for t in args.files]
    settings = load_settings(Path(args.config) if args.config else None)
    provider = ScriptedProvider(args.answer) if args.answer else None
    persistence = PersistenceManager(settings.state_dir) if args.save else None
    rt = Runtime(settings=settings, provider=provider, dry_run=args.dry_run, persistence=persistence)
    rt.load(*sources)

    if args.unit is None and not rt.program.eager_units():
        print("Error: no eager units loaded; pass --unit NAME", file=sys.stderr)
        return ChainOutcome.LoadError.exit_code

    session = None
    if args.resume:
        if args.unit is None:
            print("Error: --resume needs --unit NAME", file=sys.stderr)
            return ChainOutcome.LoadError.exit_code
        session = _restore_session(settings.state_dir, args.unit)

    reports = rt.run(args.unit, args.user, session=session)
    for report in reports:
        for out in report.outputs:
            sys.stdout.write(out)
        if not report.ok:
            detail = f": {report.error}" if report.error else ""
            print(f"[{report.unit}] {report.outcome.value}{detail}", file=sys.stderr)
    return next((r.exit_code for r in reports if not r.ok), 0)


def cmd_check(args) -> int:
    program = load_program(*(Path(f) for f in args.files))
    if args.graph and program.call_graph is not None:
        print(json.dumps(program.call_graph.to_dict(), indent=2))
    for error in program.load_errors:
        print(f"{_location(error)}: {_message(error)}")
    if program.call_graph is not None:
        for cycle in program.call_graph.cycles():
            print(f"warning: possible call cycle: {' -> '.join(cycle + cycle[:1])}")
    if program.load_errors:
        return ChainOutcome.LoadError.exit_code
    print(f"ok: {len(program)} unit(s)")
    return 0


def cmd_history(args) -> int:
    settings = load_settings(Path(args.config) if args.config else None)
    transcript = _latest_transcript(settings.state_dir, args.unit)
    print(f"# {transcript.unit} at {transcript.timestamp}: {transcript.report.outcome.value}")
    print(Session.restore(transcript.session).transcript())
    return 0


def cmd_fmt(args) -> int:
    path = Path(args.file)
    units = parse_units(path)
    text = format_program(units)
    if args.write:
        path.write_text(text, encoding="utf-8")
        print(f"formatted {path}")
    else:
        sys.stdout.write(text)
    return 0


def cmd_init_config(args) -> int:
    path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH
    if path.exists():
        print(f"Config already exists: {path}")
        return 0
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_FILE, encoding="utf-8")
    print(f"Wrote default config to {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="promptlang", description="Prompt language interpreter")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run units from .pr files")
    run_parser.add_argument("files", nargs="+", help="Prompt files (e.g. examples/animal_house.pr)")
    run_parser.add_argument("--unit", help="Unit to invoke (default: every eager unit)")
    run_parser.add_argument("--user", default="", help="Value of $USER")
    run_parser.add_argument("--answer", action="append", default=[],
                            help="Canned model answer; repeat for each model call")
    run_parser.add_argument("--dry-run", action="store_true", help="Log commands instead of running them")
    run_parser.add_argument("--save", action="store_true", help="Save transcripts to the state directory")
    run_parser.add_argument("--resume", action="store_true",
                            help="Continue the conversation of the unit's latest saved transcript")
    run_parser.add_argument("--config", help="Path of the JSON config file")
    run_parser.set_defaults(func=cmd_run)

    history_parser = subparsers.add_parser("history", help="Print the latest saved transcript of a unit")
    history_parser.add_argument("unit")
    history_parser.add_argument("--config", help="Path of the JSON config file")
    history_parser.set_defaults(func=cmd_history)

    check_parser = subparsers.add_parser("check", help="Parse and validate .pr files")
    check_parser.add_argument("files", nargs="+")
    check_parser.add_argument("--graph", action="store_true", help="Print the static call graph as JSON")
    check_parser.set_defaults(func=cmd_check)

    fmt_parser = subparsers.add_parser("fmt", help="Re-serialize a .pr file")
    fmt_parser.add_argument("file")
    fmt_parser.add_argument("-w", "--write", action="store_true", help="Rewrite the file in place")
    fmt_parser.set_defaults(func=cmd_fmt)

    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument("path", nargs="?")
    init_parser.set_defaults(func=cmd_init_config)
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    _configure_logging(args.verbose, args.quiet)
    try:
        return args.func(args)
    except PromptSyntaxError as e:
        print(f"{_location(e)}: {_message(e)}", file=sys.stderr)
        return ChainOutcome.LoadError.exit_code
    except (ConfigError, FileNotFoundError, ValueError) as e:
        print(f"[Error] {e}", file=sys.stderr)
        return ChainOutcome.LoadError.exit_code
    except KeyboardInterrupt:
        return ChainOutcome.Cancelled.exit_code


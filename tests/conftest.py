"""
Test configuration and fixtures for the promptlang test suite.
"""
import sys
import pytest
from pathlib import Path
from typing import Dict, List, Optional

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from promptlang.ai_providers import ScriptedProvider
from promptlang.config import Settings
from promptlang.runtime import Runtime
from promptlang.types import CommandResult


class FakeRunner:
    """Process runner double: records commands, answers from a table of canned results."""

    def __init__(self, results: Optional[Dict[str, CommandResult]] = None, default: Optional[CommandResult] = None):
        self.results = results or {}
        self.default = default or CommandResult(stdout="", stderr="", exit_code=0)
        self.calls: List[tuple] = []

    async def run(self, command, env=None, cwd=None):
        self.calls.append((command, dict(env or {}), cwd))
        return self.results.get(command, self.default)

    @property
    def commands(self) -> List[str]:
        return [c[0] for c in self.calls]


@pytest.fixture(scope="session")
def examples_dir() -> Path:
    """Return the path to the shipped example programs."""
    return Path(__file__).resolve().parents[1] / "examples"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(retries=0, model_timeout_s=5.0, command_timeout_s=5.0, state_dir=str(tmp_path / "state"))


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def make_runtime(settings):
    """Build a runtime with scripted model answers and a fake (or given) process runner."""
    def _make(source, answers=(), runner=None, **kwargs) -> Runtime:
        rt = Runtime(settings=settings, provider=ScriptedProvider(answers),
                     runner=runner if runner is not None else FakeRunner(), **kwargs)
        rt.load(source)
        return rt
    return _make


@pytest.fixture
def table_source() -> str:
    return """
table
description: Print the user's file as a table
direction: "Is this valid JSON? $USER"
{
  match $AI {
    (?i:^yes) => `print-table $USER`
  }
}
"""

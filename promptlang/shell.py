from __future__ import annotations
import asyncio
import os
import signal
from pathlib import Path
from typing import Mapping, Optional, Union

from loguru import logger

from .types import CommandResult


class ProcessRunner:
    """Runs shell snippets in a child process (`sh -c` on POSIX, `cmd /C` on Windows).

    A timed-out or cancelled command is killed (with its whole process group on
    POSIX) and its partial output dropped.
    """

    def __init__(self, timeout_s: Optional[float] = None, cwd: Optional[Union[str, Path]] = None):
        self.timeout_s = timeout_s
        self.cwd = cwd

    async def run(self, command: str, env: Optional[Mapping[str, str]] = None,
                  cwd: Optional[Union[str, Path]] = None) -> CommandResult:
        full_env = dict(os.environ)
        if env:
            full_env.update({k: str(v) for k, v in env.items()})
        workdir = cwd or self.cwd
        logger.debug("[shell] $ {} (cwd={})", command, workdir or ".")
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(workdir) if workdir else None,
                env=full_env,
                start_new_session=(os.name == "posix"),
            )
        except (OSError, ValueError) as e:
            # NUL bytes, oversized argv/env, missing cwd
            logger.warning("[shell] could not start command: {}", e)
            return CommandResult(stdout="", stderr=str(e), exit_code=127)
        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            await self._terminate(proc)
            logger.warning("[shell] timed out after {}s: {}", self.timeout_s, command)
            return CommandResult(stdout="", stderr=f"timed out after {self.timeout_s}s", exit_code=-1, timed_out=True)
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise
        return CommandResult(
            stdout=out.decode("utf-8", errors="replace"),
            stderr=err.decode("utf-8", errors="replace"),
            exit_code=proc.returncode if proc.returncode is not None else -1,
        )

    @staticmethod
    async def _terminate(proc) -> None:
        if proc.returncode is None:
            try:
                if os.name == "posix":
                    os.killpg(proc.pid, signal.SIGKILL)
                else:
                    proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()


class DryRunRunner:
    """Logs commands instead of running them. Every command succeeds with empty output."""

    def __init__(self):
        self.commands = []

    async def run(self, command: str, env: Optional[Mapping[str, str]] = None,
                  cwd: Optional[Union[str, Path]] = None) -> CommandResult:
        self.commands.append(command)
        logger.info("[dry_run] would run: {}", command)
        return CommandResult(stdout="", stderr="", exit_code=0)

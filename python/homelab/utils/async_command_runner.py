"""
homelab/utils/async_command_runner.py

Every external tool the deployment drives (terraform, talosctl, kubectl, ssh,
ansible-playbook) goes through one of two coroutines here:

  - run_command captures output and returns stdout. Used for queries whose
    answer the caller parses ('talosctl health', 'kubectl get nodes -o json').
  - run_command_passthrough connects the child to the operator's terminal.
    Used for long steps where live progress matters ('terraform apply',
    remote apt installs streamed through 'ssh host bash -s').

Both raise CommandError on a non-zero exit or a missing executable.
"""

from __future__ import annotations

import os
import asyncio
import logging
import shlex
import shutil
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from homelab.errors import PreconditionError
from homelab.utils.async_retry import async_retry

logger = logging.getLogger(__name__)

StderrParser = Callable[[str], Optional[str]]


class CommandError(Exception):
    """An external command could not be started or exited unsuccessfully.

    `return_code` is None when the process never started.
    """

    def __init__(self, message: str, return_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.return_code = return_code


def format_command(command: Sequence[str]) -> str:
    """Render a command list as a copy-pasteable shell string."""
    return " ".join(shlex.quote(part) for part in command)


def require_tools(tools: Sequence[str]) -> None:
    """
    Raises:
        PreconditionError: Naming every tool in `tools` that is not on PATH.
    """
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise PreconditionError(
            f"Required tool(s) not installed or not on PATH: {', '.join(missing)}"
        )


def _child_env(overrides: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
    # None lets the child inherit our environment untouched.
    if not overrides:
        return None
    return {**os.environ, **overrides}


async def _spawn(
    command: List[str],
    *,
    capture: bool,
    feed_stdin: bool,
    env: Optional[Dict[str, str]],
    cwd: Optional[str],
) -> asyncio.subprocess.Process:
    if feed_stdin:
        stdin: Optional[int] = asyncio.subprocess.PIPE
    else:
        stdin = asyncio.subprocess.DEVNULL if capture else None
    output = asyncio.subprocess.PIPE if capture else None
    try:
        return await asyncio.create_subprocess_exec(
            *command,
            stdin=stdin,
            stdout=output,
            stderr=output,
            env=_child_env(env),
            cwd=cwd,
        )
    except FileNotFoundError as exc:
        raise CommandError(f"Executable not found: {command[0]}") from exc


async def _communicate(
    proc: asyncio.subprocess.Process, input_data: Optional[str]
) -> Tuple[Optional[bytes], Optional[bytes]]:
    # A cancelled wait (e.g. a polling deadline) must not leave the child running.
    try:
        return await proc.communicate(input_data.encode() if input_data else None)
    except asyncio.CancelledError:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
        raise


async def run_command(
    command: List[str],
    *,
    sensitive: bool = True,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[str] = None,
    input_data: Optional[str] = None,
    successful_return_codes: Sequence[int] = (0,),
    retries: int = 1,
    retry_delay: float = 1.0,
    error_parser: Optional[StderrParser] = None,
) -> str:
    """
    Run `command` to completion and return its stripped stdout.

    Args:
        command: Executable and arguments.
        sensitive: Keep the command line and its output out of the error
            message. On by default since many calls carry tokens or secrets.
        env: Variables added to (or overriding) the inherited environment.
        cwd: Working directory for the child.
        input_data: Text written to the child's stdin.
        successful_return_codes: Exit codes treated as success.
        retries: Total attempts. Leave at 1 for anything that changes state.
        retry_delay: Seconds between attempts.
        error_parser: Given stderr on failure. A non-None return becomes the
            whole CommandError message, e.g. a hint about bad API credentials.

    Raises:
        CommandError: The executable is missing or the exit code is not in
            `successful_return_codes` on the last attempt.
    """

    @async_retry(retries=retries, delay=retry_delay)
    async def attempt() -> str:
        logger.debug("Running: %s", format_command(command))
        proc = await _spawn(
            command, capture=True, feed_stdin=bool(input_data), env=env, cwd=cwd
        )
        raw_out, raw_err = await _communicate(proc, input_data)
        stdout = (raw_out or b"").decode(errors="replace").strip()
        if proc.returncode in successful_return_codes:
            return stdout

        stderr = (raw_err or b"").decode(errors="replace").strip()
        hint = error_parser(stderr) if error_parser else None
        if hint is not None:
            raise CommandError(hint, proc.returncode)
        message = f"{command[0]} exited with return code {proc.returncode}"
        if not sensitive:
            message += (
                f"\nCommand: {format_command(command)}"
                f"\nStdout: {stdout}"
                f"\nStderr: {stderr}"
            )
        raise CommandError(message, proc.returncode)

    return await attempt()


async def run_command_passthrough(
    command: List[str],
    *,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[str] = None,
    input_data: Optional[str] = None,
) -> None:
    """
    Run `command` with its output going straight to the terminal.

    With `input_data` the text is piped to stdin (a script for
    'ssh host bash -s'); without it stdin is inherited so prompts still work.

    Raises:
        CommandError: The executable is missing or exits non-zero.
    """
    logger.debug("Running (passthrough): %s", format_command(command))
    proc = await _spawn(
        command, capture=False, feed_stdin=bool(input_data), env=env, cwd=cwd
    )
    await _communicate(proc, input_data)
    if proc.returncode != 0:
        raise CommandError(
            f"{command[0]} exited with return code {proc.returncode}",
            proc.returncode,
        )

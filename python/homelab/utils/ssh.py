"""
homelab/utils/ssh.py

Provides high-level functions for SSH-related operations:
  - run_ssh_command: run one remote command and capture its stdout.
  - run_ssh_script: feed a bash script to 'bash -s' on the remote side, with
    output streamed to the operator.
  - ssh_reachable: a single BatchMode probe, used by readiness gates.
  - copy_to_remote: scp a local file.

We allow specifying 'successful_return_codes' for run_ssh_command in case you need
to accept non-zero codes as successes (e.g. 'grep' finding nothing).
"""

from __future__ import annotations

import shlex
import textwrap
from typing import Dict, List, Optional, Sequence

from homelab.models.ssh import SSHTarget
from homelab.utils.async_command_runner import (
    CommandError,
    run_command,
    run_command_passthrough,
)


async def run_ssh_command(
    target: SSHTarget,
    remote_command: List[str],
    *,
    sensitive: bool = False,
    env: Optional[Dict[str, str]] = None,
    input_data: Optional[str] = None,
    retries: int = 1,
    retry_delay: float = 1.0,
    successful_return_codes: Sequence[int] = (0,),
) -> str:
    """
    Run an SSH command on `target` and return its stdout.

    Args:
      target: Connection details.
      remote_command: The actual remote command tokens. They are quoted, so
        pass ["bash", "-c", "..."] when shell syntax is needed.
      sensitive: If True, hides details on error.
      env: Optional environment variables set for the remote command.
      input_data: Optional text fed to the remote command's stdin.
      retries: How many attempts in total.
      retry_delay: Seconds between attempts.
      successful_return_codes: Exit codes considered "non-error."

    Returns:
      Captured stdout from the remote command.

    Raises:
      CommandError: If the command fails (unless the code is in
        `successful_return_codes`).
    """
    if env:
        env_tokens = ["env"] + [f"{k}={v}" for k, v in env.items()]
        remote_command = env_tokens + remote_command

    cmd_str = " ".join(shlex.quote(x) for x in remote_command)
    return await run_command(
        target.build_ssh_args() + [cmd_str],
        sensitive=sensitive,
        input_data=input_data,
        retries=retries,
        retry_delay=retry_delay,
        successful_return_codes=successful_return_codes,
    )


async def run_ssh_shell(
    target: SSHTarget,
    shell_command: str,
    *,
    sensitive: bool = False,
    retries: int = 1,
    successful_return_codes: Sequence[int] = (0,),
) -> str:
    """Run a shell snippet (pipes, redirections) remotely via 'bash -c'."""
    return await run_ssh_command(
        target,
        ["bash", "-c", shell_command],
        sensitive=sensitive,
        retries=retries,
        successful_return_codes=successful_return_codes,
    )


async def run_ssh_script(target: SSHTarget, script: str) -> None:
    """
    Stream `script` to 'bash -s' on `target`, output going to the terminal.

    The script is dedented and prefixed with 'set -euo pipefail' so that any
    failing remote step fails the whole call.

    Raises:
      CommandError: If the remote script exits non-zero.
    """
    body = "set -euo pipefail\n" + textwrap.dedent(script).lstrip("\n")
    await run_command_passthrough(
        target.build_ssh_args() + ["bash", "-s"],
        input_data=body,
    )


async def ssh_reachable(target: SSHTarget) -> bool:
    """Return True if a BatchMode SSH login to `target` succeeds."""
    try:
        await run_ssh_command(target, ["true"], sensitive=True)
        return True
    except CommandError:
        return False


async def remote_command_exists(target: SSHTarget, command_name: str) -> bool:
    """Return True if `command_name` resolves on the remote PATH."""
    out = await run_ssh_shell(
        target,
        f"command -v {shlex.quote(command_name)} >/dev/null 2>&1 && echo yes || echo no",
        retries=3,
    )
    return out.strip() == "yes"


async def copy_to_remote(target: SSHTarget, local_path: str, remote_path: str) -> None:
    """Copy a local file to `remote_path` on `target` with scp."""
    await run_command(target.build_scp_args(local_path, remote_path), sensitive=True)

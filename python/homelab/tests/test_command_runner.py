"""
The subprocess runner, driven with a real shell.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from homelab.errors import PreconditionError
from homelab.utils.async_command_runner import (
    CommandError,
    format_command,
    require_tools,
    run_command,
    run_command_passthrough,
)
from homelab.utils.async_retry import async_retry


async def test_captures_stdout() -> None:
    assert await run_command(["sh", "-c", "echo hello"]) == "hello"


async def test_env_cwd_and_stdin(tmp_path: Path) -> None:
    out = await run_command(
        ["sh", "-c", 'echo "$GREETING $(pwd)"; cat'],
        env={"GREETING": "hi"},
        cwd=str(tmp_path),
        input_data="from-stdin",
    )
    assert out.splitlines() == [f"hi {tmp_path.resolve()}", "from-stdin"]


async def test_failure_hides_details_when_sensitive() -> None:
    with pytest.raises(CommandError) as excinfo:
        await run_command(["sh", "-c", "echo s3cret >&2; exit 3"])
    assert excinfo.value.return_code == 3
    assert "s3cret" not in str(excinfo.value)


async def test_failure_details_when_not_sensitive() -> None:
    with pytest.raises(CommandError) as excinfo:
        await run_command(["sh", "-c", "echo boom >&2; exit 2"], sensitive=False)
    assert "boom" in str(excinfo.value)


async def test_error_parser_short_message() -> None:
    with pytest.raises(CommandError) as excinfo:
        await run_command(
            ["sh", "-c", "echo 'permission check failed' >&2; exit 1"],
            error_parser=lambda err: "bad token" if "permission" in err else None,
        )
    assert str(excinfo.value) == "bad token"


async def test_accepted_return_codes() -> None:
    assert await run_command(["sh", "-c", "exit 1"], successful_return_codes=(0, 1)) == ""


async def test_missing_executable() -> None:
    with pytest.raises(CommandError):
        await run_command(["definitely-not-a-real-tool-xyz"])
    with pytest.raises(CommandError):
        await run_command_passthrough(["definitely-not-a-real-tool-xyz"])


async def test_passthrough_exit_code() -> None:
    await run_command_passthrough(["sh", "-c", "exit 0"])
    with pytest.raises(CommandError) as excinfo:
        await run_command_passthrough(["sh", "-c", "exit 4"])
    assert excinfo.value.return_code == 4


async def test_cancelled_command_kills_child() -> None:
    loop = asyncio.get_running_loop()
    started = loop.time()

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(run_command(["sh", "-c", "sleep 5"]), timeout=0.2)

    assert loop.time() - started < 3.0


def test_require_tools_names_missing() -> None:
    require_tools(["sh"])
    with pytest.raises(PreconditionError) as excinfo:
        require_tools(["sh", "definitely-not-a-real-tool-xyz"])
    assert "definitely-not-a-real-tool-xyz" in str(excinfo.value)


def test_format_command_quotes() -> None:
    assert format_command(["echo", "a b"]) == "echo 'a b'"


async def test_retry_until_success() -> None:
    attempts = []

    @async_retry(retries=3, delay=0)
    async def flaky() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("not yet")
        return "ok"

    assert await flaky() == "ok"
    assert len(attempts) == 3


async def test_retry_gives_up() -> None:
    @async_retry(retries=2, delay=0)
    async def broken() -> None:
        raise RuntimeError("always")

    with pytest.raises(RuntimeError):
        await broken()

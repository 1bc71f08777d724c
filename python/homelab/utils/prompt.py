"""
homelab/utils/prompt.py

Operator prompts. input() runs in a worker thread so the event loop is not
blocked while waiting on the terminal.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

Confirm = Callable[[str], Awaitable[bool]]


async def ask(question: str) -> str:
    return (await asyncio.to_thread(input, question)).strip()


async def confirm_yes(question: str) -> bool:
    """True only if the operator types exactly 'yes'."""
    return await ask(f"{question} (yes/no): ") == "yes"


async def wait_for_enter(message: str) -> bool:
    """Block until ENTER. Ctrl-C/EOF abort with KeyboardInterrupt/EOFError."""
    await ask(f"{message}\nPress ENTER to continue, or CTRL+C to abort...")
    return True


async def always_yes(question: str) -> bool:
    return True

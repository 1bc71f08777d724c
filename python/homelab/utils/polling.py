"""
homelab/utils/polling.py

Deadline-bounded polling with exponential backoff. Every wait in the
pipeline (Talos health, node readiness, SSH on fresh VMs, guest ports)
goes through wait_until, so no stage sleeps for a fixed duration and no
stage can hang past its timeout.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Awaitable, Callable, Dict, Optional, Tuple

from homelab.errors import ReadinessTimeout

logger = logging.getLogger(__name__)

CheckResult = Tuple[bool, str]


async def wait_until(
    check: Callable[[], Awaitable[CheckResult]],
    *,
    description: str,
    timeout: float,
    interval: float = 5.0,
    backoff: float = 1.5,
    max_interval: float = 30.0,
) -> str:
    """Poll `check` until it reports done or `timeout` seconds have elapsed.

    The check returns `(done, observed_state)`. An exception raised by the
    check counts as "not done yet" and its message becomes the observed state,
    since the thing being waited for is typically not reachable at first.
    Each check only gets the time left before the deadline; one that overruns
    is cancelled and reported as "check timed out".

    Args:
        check: Async callable returning (done, observed_state).
        description: Human-readable name of the condition, used in logs/errors.
        timeout: Overall deadline in seconds, measured from the first call.
        interval: Initial delay between checks.
        backoff: Multiplier applied to the delay after each failed check.
        max_interval: Upper bound on the delay.

    Returns:
        The observed state reported by the first successful check.

    Raises:
        ReadinessTimeout: Once the deadline passes, carrying the last observed state.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    delay = interval
    attempt = 0
    last_state: Optional[str] = None

    while True:
        attempt += 1
        try:
            done, last_state = await asyncio.wait_for(
                check(), timeout=max(deadline - loop.time(), 0)
            )
        except asyncio.TimeoutError:
            done, last_state = False, "check timed out"
        except Exception as exc:
            done, last_state = False, f"{type(exc).__name__}: {exc}"

        if done:
            logger.debug("%s satisfied after %d check(s)", description, attempt)
            return last_state

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise ReadinessTimeout(
                f"Timed out after {timeout:.0f}s waiting for {description}",
                last_state=last_state,
            )

        logger.info(
            "Waiting for %s (attempt %d, %.0fs left)...",
            description,
            attempt,
            remaining,
        )
        await asyncio.sleep(min(delay, remaining))
        delay = min(delay * backoff, max_interval)


async def tcp_port_open(host: str, port: int, connect_timeout: float = 3.0) -> bool:
    """Return True if a TCP connection to host:port can be established."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=connect_timeout
        )
    except (OSError, asyncio.TimeoutError, socket.gaierror):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def wait_for_tcp_ports(
    targets: Dict[str, Tuple[str, int]],
    *,
    timeout: float,
    interval: float = 5.0,
) -> None:
    """Wait until every named (host, port) target accepts TCP connections.

    Args:
        targets: Mapping of label -> (host, port).
        timeout: Overall deadline in seconds.
        interval: Initial delay between checks.

    Raises:
        ReadinessTimeout: Listing the targets still unreachable at the deadline.
    """

    async def _check() -> CheckResult:
        results = await asyncio.gather(
            *[tcp_port_open(host, port) for host, port in targets.values()]
        )
        pending = [
            f"{label} ({host}:{port})"
            for (label, (host, port)), ok in zip(targets.items(), results)
            if not ok
        ]
        if pending:
            return False, "unreachable: " + ", ".join(pending)
        return True, f"{len(targets)} target(s) reachable"

    await wait_until(
        _check,
        description=f"{len(targets)} guest(s) to accept connections",
        timeout=timeout,
        interval=interval,
    )

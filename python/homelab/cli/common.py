"""
homelab/cli/common.py

Shared plumbing for the CLI entry points: the --config/--log-level options,
logging setup, config loading and the exit-code policy (0 on success, 1 on any
precondition or tool failure).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Awaitable, Callable, Optional

from homelab.errors import HomelabError
from homelab.models.config import HomelabConfig, load_config
from homelab.utils.async_command_runner import CommandError
from homelab.utils.log import configure_logging

logger = logging.getLogger("homelab.cli")


def make_parser(prog: str, description: str, assume_yes: bool = False) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description=description)
    parser.add_argument(
        "--config",
        default=None,
        help="YAML configuration file (default: $HOMELAB_CONFIG, else built-in defaults).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: $HOMELAB_LOG_LEVEL or INFO).",
    )
    if assume_yes:
        parser.add_argument(
            "--assume-yes",
            "-y",
            action="store_true",
            default=False,
            help="Do not prompt for confirmation.",
        )
    return parser


def run(
    args: argparse.Namespace,
    action: Callable[[HomelabConfig], Awaitable[Optional[bool]]],
) -> None:
    """
    Configure logging, load the config and run `action`, exiting 0 or 1.

    `action` may return False to signal failure without raising.
    """
    configure_logging(args.log_level)
    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    try:
        outcome = asyncio.run(action(config))
    except KeyboardInterrupt:
        logger.error("Interrupted")
        sys.exit(1)
    except (HomelabError, CommandError, OSError, ValueError) as exc:
        logger.error("%s", exc)
        last_state = getattr(exc, "last_state", None)
        if last_state:
            logger.error("Last observed state: %s", last_state)
        sys.exit(1)

    sys.exit(1 if outcome is False else 0)

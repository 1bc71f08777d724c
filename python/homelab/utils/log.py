"""
homelab/utils/log.py

Console logging for the CLI entry points: one stream handler, timestamped
lines coloured by severity when attached to a TTY.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, TextIO

GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
RED = "\033[0;31m"
BLUE = "\033[0;34m"
RESET = "\033[0m"


class ColorFormatter(logging.Formatter):
    """Formatter producing `[YYYY-mm-dd HH:MM:SS] LEVEL: message` lines."""

    COLORS = {
        logging.DEBUG: BLUE,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: RED,
    }

    def __init__(self, use_color: bool) -> None:
        super().__init__(
            "[%(asctime)s] %(levelname)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base
        color = self.COLORS.get(record.levelno, "")
        return f"{color}{base}{RESET}"


def configure_logging(
    level: Optional[str] = None, stream: Optional[TextIO] = None
) -> logging.Logger:
    """Install the coloured handler on the `homelab` logger.

    Args:
        level: Level name; defaults to $HOMELAB_LOG_LEVEL or INFO.
        stream: Output stream; defaults to stderr.

    Returns:
        The configured `homelab` logger.
    """
    out = stream or sys.stderr
    logger = logging.getLogger("homelab")
    level_name = (level or os.environ.get("HOMELAB_LOG_LEVEL") or "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler(out)
        handler.setFormatter(ColorFormatter(out.isatty()))
        logger.addHandler(handler)
        logger.propagate = False
    return logger


def banner(title: str, subtitle: str = "") -> str:
    """Return a boxed banner for stage headers."""
    width = max(len(title), len(subtitle), 40) + 4
    lines = [
        "+" + "=" * width + "+",
        "|" + title.center(width) + "|",
    ]
    if subtitle:
        lines.append("|" + subtitle.center(width) + "|")
    lines.append("+" + "=" * width + "+")
    return "\n".join(lines)

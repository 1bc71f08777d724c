"""
homelab/errors.py

Exception hierarchy shared by every stage. Two families matter to the pipeline:

  - PreconditionError: something the operator must fix (a missing file, tool,
    credential or address). Terminal, re-running without a fix is pointless.
  - ReadinessTimeout: a bounded wait gave up. Retryable, the underlying
    infrastructure may simply have been slow.

External command failures surface as CommandError from
homelab.utils.async_command_runner and are treated as terminal.
"""

from __future__ import annotations

from typing import Optional


class HomelabError(Exception):
    """Base class for errors raised by homelab stages.

    Attributes:
        retryable (bool): True if re-running the stage unchanged may succeed.
    """

    retryable: bool = False


class PreconditionError(HomelabError):
    """A required file, tool, credential or setting is missing."""


class InventoryError(PreconditionError):
    """The provisioning outputs do not cover every expected host."""


class ReadinessTimeout(HomelabError):
    """A readiness gate did not observe its condition before the deadline.

    Attributes:
        last_state (Optional[str]): The last state reported by the check,
            surfaced for operator diagnosis.
    """

    retryable = True

    def __init__(self, message: str, last_state: Optional[str] = None) -> None:
        super().__init__(message)
        self.last_state = last_state


class GitHubAPIError(HomelabError):
    """The GitHub REST API returned an unexpected response."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = status is not None and status >= 500

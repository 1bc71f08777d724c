"""
Shared fixtures: a config rooted in a temporary project directory, Terraform
outputs for the reference lab, and a recorder standing in for external tools.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from homelab.models.config import HomelabConfig
from homelab.models.terraform import TerraformOutputs

TALOS_IPS = {
    "talos-cp-01": "10.20.0.40",
    "talos-wk-01": "10.20.0.41",
    "talos-wk-02": "10.20.0.42",
}
VM_IPS = {
    "ubuntu-vpn": "10.20.0.60",
    "ubuntu-nfs": "10.20.0.61",
    "ubuntu-media": "10.20.0.62",
}
LXC_IPS = {
    "redis": "10.20.0.70",
    "postgres": "10.20.0.71",
    "pihole": "10.20.0.72",
}


def make_outputs(**maps: Dict[str, Any]) -> TerraformOutputs:
    """Build a `terraform output -json` document from name -> mapping."""
    return TerraformOutputs.model_validate(
        {
            name: {"sensitive": False, "type": ["map", "string"], "value": value}
            for name, value in maps.items()
        }
    )


@pytest.fixture
def config(tmp_path: Path) -> HomelabConfig:
    return HomelabConfig(project_root=tmp_path)


@pytest.fixture
def lab_outputs() -> TerraformOutputs:
    return make_outputs(talos_ips=TALOS_IPS, vm_ips=VM_IPS, lxc_ips=LXC_IPS)


class CommandRecorder:
    """
    Async stand-in for run_command/run_command_passthrough.

    Every call is recorded. `responder`, if set, receives the command and
    returns the fake stdout (or raises).
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.kwargs: List[Dict[str, Any]] = []
        self.responder: Optional[Callable[[List[str]], str]] = None

    async def __call__(self, command: List[str], **kwargs: Any) -> str:
        self.calls.append(list(command))
        self.kwargs.append(kwargs)
        if self.responder is not None:
            return self.responder(list(command))
        return ""

    def matching(self, *tokens: str) -> List[List[str]]:
        return [c for c in self.calls if all(t in c for t in tokens)]


@pytest.fixture
def recorder() -> CommandRecorder:
    return CommandRecorder()

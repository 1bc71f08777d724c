"""
Layer 0 runner bootstrap steps with the SSH layer replaced by recorders.
"""

from __future__ import annotations

from typing import Any, Dict, List

import pytest
import yaml

from conftest import CommandRecorder
from homelab.deployment import runner as runner_mod
from homelab.models.config import HomelabConfig
from homelab.models.github import RegistrationToken
from homelab.models.ssh import SSHTarget
from homelab.utils import ssh as ssh_mod
from homelab.utils.prompt import always_yes

PROXMOX = SSHTarget(user="root", hostname="10.20.0.10")


class ScriptLog:
    def __init__(self) -> None:
        self.scripts: List[str] = []
        self.shell: List[str] = []

    async def script(self, target: SSHTarget, script: str) -> None:
        self.scripts.append(script)

    async def run_shell(self, target: SSHTarget, command: str, **kwargs: Any) -> str:
        self.shell.append(command)
        return ""


@pytest.fixture
def remote(monkeypatch: pytest.MonkeyPatch) -> ScriptLog:
    log = ScriptLog()
    monkeypatch.setattr(runner_mod, "run_ssh_script", log.script)
    monkeypatch.setattr(runner_mod, "run_ssh_shell", log.run_shell)
    return log


async def _never(question: str) -> bool:
    return False


def _vms(mapping: Dict[str, int]):
    async def fake_list_vms(target: SSHTarget) -> Dict[str, int]:
        return dict(mapping)

    return fake_list_vms


def test_runner_inventory(config: HomelabConfig) -> None:
    text = runner_mod.runner_inventory(config.runner)

    doc = yaml.safe_load(text)
    host = doc["all"]["hosts"]["github-runner"]
    assert host["ansible_host"] == "10.20.0.30"
    assert host["ansible_user"] == "ubuntu"
    assert host["ansible_become"] is True


def test_runner_target_skips_host_key_checks(config: HomelabConfig) -> None:
    target = runner_mod.runner_target(config.runner, "/keys/id_rsa")
    assert target.destination == "ubuntu@10.20.0.30"
    assert "StrictHostKeyChecking=no" in target.base_options()


async def test_tooling_skips_installed_tools(
    config: HomelabConfig, remote: ScriptLog, monkeypatch: pytest.MonkeyPatch
) -> None:
    installed = {"node", "docker", "kubectl", "helm"}

    async def exists(target: SSHTarget, name: str) -> bool:
        return name in installed

    monkeypatch.setattr(runner_mod, "remote_command_exists", exists)
    target = runner_mod.runner_target(config.runner)

    await runner_mod.install_tooling(target, config)

    assert remote.scripts[0] == runner_mod.BASE_PACKAGES_SCRIPT
    assert remote.scripts[1:3] == [runner_mod.TERRAFORM_SCRIPT, runner_mod.ANSIBLE_SCRIPT]
    assert len(remote.scripts) == 4
    assert config.talos.version in remote.scripts[3]


async def test_existing_runner_vm_kept_when_declined(
    config: HomelabConfig, remote: ScriptLog, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(runner_mod, "list_vms", _vms({"vm-github-runner": 8000}))

    assert await runner_mod.create_runner_vm(PROXMOX, config, _never) is False
    assert remote.scripts == [] and remote.shell == []


async def test_runner_vm_recreated_when_confirmed(
    config: HomelabConfig, remote: ScriptLog, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(runner_mod, "list_vms", _vms({"vm-github-runner": 8000}))

    assert await runner_mod.create_runner_vm(PROXMOX, config, always_yes) is True

    assert remote.shell == ["qm stop 8000 || true; qm destroy 8000"]
    clone = remote.scripts[0]
    assert "qm clone" in clone and "--name vm-github-runner" in clone
    assert 'ip=10.20.0.30/24,gw=10.20.0.1' in clone
    assert "qm start 8000" in clone


class FakeClient:
    repo = "octo/homelab"

    def __init__(self) -> None:
        self.removed: List[str] = []

    async def remove_runner_named(self, name: str) -> bool:
        self.removed.append(name)
        return True

    async def create_registration_token(self) -> RegistrationToken:
        return RegistrationToken(token="REGTOKEN")


async def test_runner_registration(
    config: HomelabConfig, remote: ScriptLog, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def inactive(target: SSHTarget) -> bool:
        return False

    monkeypatch.setattr(runner_mod, "runner_service_active", inactive)
    client = FakeClient()

    installed = await runner_mod.install_github_runner(
        runner_mod.runner_target(config.runner), config, client
    )

    assert installed is True
    assert client.removed == ["vm-github-runner"]
    script = remote.scripts[0]
    assert "--token REGTOKEN" in script
    assert "--url https://github.com/octo/homelab" in script
    assert "--labels self-hosted,homelab,proxmox" in script


async def test_active_runner_left_alone(
    config: HomelabConfig, remote: ScriptLog, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def active(target: SSHTarget) -> bool:
        return True

    monkeypatch.setattr(runner_mod, "runner_service_active", active)
    client = FakeClient()

    assert (
        await runner_mod.install_github_runner(
            runner_mod.runner_target(config.runner), config, client
        )
        is False
    )
    assert client.removed == [] and remote.scripts == []


async def test_ssh_script_is_strict_and_dedented(
    monkeypatch: pytest.MonkeyPatch, recorder: CommandRecorder
) -> None:
    monkeypatch.setattr(ssh_mod, "run_command_passthrough", recorder)

    await ssh_mod.run_ssh_script(
        PROXMOX,
        """
        pveam update
        pveam download local tmpl
        """,
    )

    assert recorder.calls[0][-2:] == ["bash", "-s"]
    assert recorder.kwargs[0]["input_data"] == (
        "set -euo pipefail\npveam update\npveam download local tmpl\n"
    )


async def test_ssh_command_quotes_remote_tokens(
    monkeypatch: pytest.MonkeyPatch, recorder: CommandRecorder
) -> None:
    monkeypatch.setattr(ssh_mod, "run_command", recorder)

    await ssh_mod.run_ssh_shell(PROXMOX, "test -f /x && echo yes")

    assert recorder.calls[0][:3] == ["ssh", "-p", "22"]
    assert recorder.calls[0][-1] == "bash -c 'test -f /x && echo yes'"

from __future__ import annotations

import logging

import pytest

from conftest import CommandRecorder
from homelab.deployment import configuration as configuration_mod
from homelab.errors import PreconditionError
from homelab.models.config import HomelabConfig
from homelab.utils.log import ColorFormatter, banner


@pytest.fixture
def ansible(monkeypatch: pytest.MonkeyPatch, recorder: CommandRecorder) -> CommandRecorder:
    monkeypatch.setattr(configuration_mod, "require_tools", lambda tools: None)
    monkeypatch.setattr(configuration_mod, "run_command_passthrough", recorder)
    return recorder


async def test_no_playbook_skips_layer(config: HomelabConfig, ansible: CommandRecorder) -> None:
    assert await configuration_mod.configure_services(config) is False
    assert ansible.calls == []


async def test_playbook_needs_inventory(config: HomelabConfig, ansible: CommandRecorder) -> None:
    config.ansible_dir.mkdir()
    (config.ansible_dir / "site.yaml").write_text("- hosts: all\n", encoding="utf-8")

    with pytest.raises(PreconditionError):
        await configuration_mod.configure_services(config)


async def test_runs_site_playbook(config: HomelabConfig, ansible: CommandRecorder) -> None:
    config.ansible_dir.mkdir()
    (config.ansible_dir / "site.yaml").write_text("- hosts: all\n", encoding="utf-8")
    config.inventory_file.write_text("all: {}\n", encoding="utf-8")

    assert await configuration_mod.configure_services(config) is True

    assert ansible.calls == [
        [
            "ansible-playbook",
            "-i",
            str(config.inventory_file),
            str(config.ansible_dir / "site.yaml"),
        ]
    ]
    assert ansible.kwargs[0]["cwd"] == str(config.ansible_dir)
    assert ansible.kwargs[0]["env"] == {"ANSIBLE_HOST_KEY_CHECKING": "False"}


def test_formatter_plain_and_colored() -> None:
    record = logging.LogRecord("homelab", logging.WARNING, __file__, 1, "careful", None, None)

    plain = ColorFormatter(use_color=False).format(record)
    colored = ColorFormatter(use_color=True).format(record)

    assert plain.endswith("WARNING: careful")
    assert plain.startswith("[")
    assert colored.startswith("\033[1;33m") and colored.endswith("\033[0m")


def test_banner() -> None:
    lines = banner("LAYER 3 - KUBERNETES", "Talos Linux Cluster Setup").splitlines()
    assert len(lines) == 4
    assert len({len(line) for line in lines}) == 1
    assert "LAYER 3 - KUBERNETES" in lines[1]

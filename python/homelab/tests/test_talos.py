"""
Talos bootstrap sequencing against a recorded talosctl.
"""

from __future__ import annotations

import stat
from pathlib import Path
from typing import List

import pytest
import yaml

from conftest import CommandRecorder, make_outputs
from homelab.deployment.talos import (
    artifacts_for,
    bootstrap_talos,
    build_patches,
    cluster_from_outputs,
    generate_secrets,
    render_node_configs,
    write_config_patches,
)
from homelab.errors import PreconditionError, ReadinessTimeout
from homelab.models.config import HomelabConfig
from homelab.utils import talos as talos_utils
from homelab.utils.async_command_runner import CommandError

CP = "10.20.0.40"


def _fake_talosctl(command: List[str]) -> str:
    if command[:3] == ["talosctl", "gen", "secrets"]:
        Path(command[command.index("-o") + 1]).write_text("secrets: new\n", encoding="utf-8")
    return ""


@pytest.fixture
def talosctl(monkeypatch: pytest.MonkeyPatch, recorder: CommandRecorder) -> CommandRecorder:
    recorder.responder = _fake_talosctl
    monkeypatch.setattr(talos_utils, "run_command", recorder)
    return recorder


def _flag(command: List[str], flag: str) -> str:
    return command[command.index(flag) + 1]


def test_cluster_from_outputs(config: HomelabConfig, lab_outputs) -> None:
    cluster = cluster_from_outputs(config, lab_outputs)

    assert cluster.control_plane.hostname == "talos-cp-01"
    assert cluster.control_plane.address == CP
    assert [n.address for n in cluster.workers] == ["10.20.0.41", "10.20.0.42"]
    assert cluster.endpoint == "https://10.20.0.50:6443"


def test_cluster_requires_every_node_address(config: HomelabConfig) -> None:
    outputs = make_outputs(talos_ips={"talos-cp-01": CP})

    with pytest.raises(PreconditionError) as excinfo:
        cluster_from_outputs(config, outputs)
    assert "talos-wk-01" in str(excinfo.value)
    assert "talos-wk-02" in str(excinfo.value)


def test_patches(config: HomelabConfig, lab_outputs) -> None:
    patches = build_patches(cluster_from_outputs(config, lab_outputs))

    assert patches["cni"] == {"cluster": {"network": {"cni": {"name": "none"}}}}
    assert patches["vip"]["machine"]["network"]["interfaces"] == [
        {"interface": "eth0", "vip": {"ip": "10.20.0.50"}}
    ]
    sans = patches["kubernetes-certificates"]["cluster"]["apiServer"]["certSANs"]
    assert sans[:2] == ["10.20.0.50", CP]
    assert "homelab.local" in sans
    assert patches["talos-wk-02-hostname"] == {
        "machine": {"network": {"hostname": "talos-wk-02"}}
    }


async def test_patch_files_written(config: HomelabConfig, lab_outputs) -> None:
    cluster = cluster_from_outputs(config, lab_outputs)

    patch_set = await write_config_patches(cluster, config.patches_dir)

    assert [p.name for p in patch_set.control_plane] == ["vip.yaml"]
    assert set(patch_set.per_node) == {"talos-cp-01", "talos-wk-01", "talos-wk-02"}
    doc = yaml.safe_load(patch_set.per_node["talos-cp-01"].read_text(encoding="utf-8"))
    assert doc == {"machine": {"network": {"hostname": "talos-cp-01"}}}


async def test_secrets_are_backed_up_not_overwritten(
    config: HomelabConfig, talosctl: CommandRecorder
) -> None:
    artifacts = artifacts_for(config)
    artifacts.talos_dir.mkdir(parents=True)
    artifacts.secrets_file.write_text("secrets: old\n", encoding="utf-8")

    backup = await generate_secrets(artifacts)

    assert backup is not None
    assert backup.name.startswith("secrets.yaml.bak.")
    assert backup.read_text(encoding="utf-8") == "secrets: old\n"
    assert artifacts.secrets_file.read_text(encoding="utf-8") == "secrets: new\n"
    assert stat.S_IMODE(artifacts.secrets_file.stat().st_mode) == 0o600
    assert talosctl.calls == [
        ["talosctl", "gen", "secrets", "-o", str(artifacts.secrets_file)]
    ]


async def test_fresh_secrets_without_backup(
    config: HomelabConfig, talosctl: CommandRecorder
) -> None:
    assert await generate_secrets(artifacts_for(config)) is None
    assert not list(config.talos_dir.glob("secrets.yaml.bak.*"))


async def test_render_one_config_per_node(
    config: HomelabConfig, lab_outputs, talosctl: CommandRecorder
) -> None:
    cluster = cluster_from_outputs(config, lab_outputs)
    artifacts = artifacts_for(config)
    config.rendered_dir.mkdir(parents=True)
    (config.rendered_dir / "stale.yaml").write_text("old", encoding="utf-8")
    patch_set = await write_config_patches(cluster, config.patches_dir)

    rendered = await render_node_configs(cluster, artifacts, patch_set)

    assert not (config.rendered_dir / "stale.yaml").exists()
    assert list(rendered) == ["talos-cp-01", "talos-wk-01", "talos-wk-02"]
    gen_calls = talosctl.matching("gen", "config")
    assert [_flag(c, "--output-types") for c in gen_calls] == [
        "controlplane",
        "worker",
        "worker",
        "talosconfig",
    ]
    assert all("https://10.20.0.50:6443" in c for c in gen_calls)
    cp_call, worker_call = gen_calls[0], gen_calls[1]
    assert f"@{config.patches_dir / 'vip.yaml'}" in cp_call
    assert "--config-patch-control-plane" in cp_call
    assert "--config-patch-control-plane" not in worker_call
    assert f"@{config.patches_dir / 'talos-wk-01-hostname.yaml'}" in worker_call


async def test_bootstrap_sequence_targets_control_plane(
    config: HomelabConfig, lab_outputs, talosctl: CommandRecorder
) -> None:
    cluster = cluster_from_outputs(config, lab_outputs)

    artifacts = await bootstrap_talos(config, cluster)

    applies = talosctl.matching("apply-config")
    assert [_flag(c, "--nodes") for c in applies] == [CP, "10.20.0.41", "10.20.0.42"]
    assert all("--insecure" in c for c in applies)

    last_apply = max(i for i, c in enumerate(talosctl.calls) if "apply-config" in c)
    after = talosctl.calls[last_apply + 1 :]
    assert [c[7] for c in after] == ["health", "bootstrap", "kubeconfig"]
    for command in after:
        assert _flag(command, "--endpoints") == CP
        assert _flag(command, "--nodes") == CP
        assert _flag(command, "--talosconfig") == str(artifacts.talosconfig)
        assert "10.20.0.50" not in command

    assert "--wait-timeout=300s" in talosctl.matching("health")[0]
    assert len(talosctl.matching("bootstrap")) == 1
    assert _flag(talosctl.matching("kubeconfig")[0], "kubeconfig") == str(
        artifacts.kubeconfig
    )


async def test_bootstrap_waits_for_health(
    config: HomelabConfig, lab_outputs, talosctl: CommandRecorder
) -> None:
    health_calls: List[int] = []

    def responder(command: List[str]) -> str:
        if "health" in command:
            health_calls.append(1)
            if len(health_calls) < 3:
                raise CommandError("etcd not ready", 1)
        return _fake_talosctl(command)

    talosctl.responder = responder
    config.talos.health_interval = 0.01

    await bootstrap_talos(config, cluster_from_outputs(config, lab_outputs))

    assert len(health_calls) == 3
    assert len(talosctl.matching("bootstrap")) == 1


async def test_health_timeout_stops_before_bootstrap(
    config: HomelabConfig, lab_outputs, talosctl: CommandRecorder
) -> None:
    def responder(command: List[str]) -> str:
        if "health" in command:
            raise CommandError("connection refused", 1)
        return _fake_talosctl(command)

    talosctl.responder = responder
    config.talos.health_timeout = 0.05
    config.talos.health_interval = 0.01

    with pytest.raises(ReadinessTimeout) as excinfo:
        await bootstrap_talos(config, cluster_from_outputs(config, lab_outputs))

    assert "connection refused" in (excinfo.value.last_state or "")
    assert talosctl.matching("bootstrap") == []
    assert talosctl.matching("kubeconfig") == []

"""
homelab/utils/talos.py

Thin async wrappers over `talosctl`. Each function builds one command line and
runs it through the shared command runner; sequencing lives in
homelab.deployment.talos.

Once configuration has been pushed, every call is pinned to the control plane
through `--talosconfig`, `--endpoints` and `--nodes`, so nothing depends on the
operator's ~/.talos/config or on the VIP being up.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

from homelab.models.config import NodeRole
from homelab.models.talos import TalosCluster, TalosNode
from homelab.utils.async_command_runner import run_command


def _talosctl_for_node(talosconfig: Path, node: TalosNode, *args: str) -> List[str]:
    return [
        "talosctl",
        "--talosconfig",
        str(talosconfig),
        "--endpoints",
        node.address,
        "--nodes",
        node.address,
        *args,
    ]


async def gen_secrets(secrets_file: Path) -> None:
    await run_command(
        ["talosctl", "gen", "secrets", "-o", str(secrets_file)], sensitive=True
    )


def gen_config_args(
    cluster: TalosCluster,
    secrets_file: Path,
    output_type: str,
    output: Path,
    patches: Sequence[Path] = (),
    control_plane_patches: Sequence[Path] = (),
    worker_patches: Sequence[Path] = (),
) -> List[str]:
    """
    Build a `talosctl gen config` command rendering a single output type.

    Args:
        cluster: Cluster identity (name and VIP endpoint).
        secrets_file: Secrets bundle from `gen secrets`.
        output_type: 'controlplane', 'worker' or 'talosconfig'.
        output: Destination file.
        patches: Patches applied to every machine type.
        control_plane_patches: Patches applied to control plane configs only.
        worker_patches: Patches applied to worker configs only.
    """
    args = [
        "talosctl",
        "gen",
        "config",
        cluster.name,
        cluster.endpoint,
        "--with-secrets",
        str(secrets_file),
        "--output-types",
        output_type,
        "-o",
        str(output),
        "--force",
    ]
    for flag, paths in (
        ("--config-patch", patches),
        ("--config-patch-control-plane", control_plane_patches),
        ("--config-patch-worker", worker_patches),
    ):
        for p in paths:
            args += [flag, f"@{p}"]
    return args


async def gen_config(
    cluster: TalosCluster,
    secrets_file: Path,
    output_type: str,
    output: Path,
    patches: Sequence[Path] = (),
    control_plane_patches: Sequence[Path] = (),
    worker_patches: Sequence[Path] = (),
) -> None:
    await run_command(
        gen_config_args(
            cluster,
            secrets_file,
            output_type,
            output,
            patches,
            control_plane_patches,
            worker_patches,
        ),
        sensitive=True,
    )


def output_type_for(node: TalosNode) -> str:
    return "controlplane" if node.role == NodeRole.CONTROLPLANE else "worker"


async def apply_config_insecure(node: TalosNode, config_file: Path) -> None:
    """Push a rendered config to a node still in maintenance mode."""
    await run_command(
        [
            "talosctl",
            "apply-config",
            "--insecure",
            "--nodes",
            node.address,
            "--file",
            str(config_file),
        ],
        sensitive=True,
    )


async def health(
    talosconfig: Path, control_plane: TalosNode, wait_timeout: float = 60.0
) -> str:
    """Client-side health check (`--server=false`) against the control plane.

    `wait_timeout` caps talosctl's own internal wait, which otherwise
    defaults to 20 minutes.
    """
    return await run_command(
        _talosctl_for_node(
            talosconfig,
            control_plane,
            "health",
            "--server=false",
            f"--wait-timeout={max(int(wait_timeout), 1)}s",
        ),
        sensitive=False,
    )


async def bootstrap(talosconfig: Path, control_plane: TalosNode) -> None:
    await run_command(
        _talosctl_for_node(talosconfig, control_plane, "bootstrap"), sensitive=False
    )


async def kubeconfig(
    talosconfig: Path, control_plane: TalosNode, destination: Path
) -> None:
    await run_command(
        _talosctl_for_node(
            talosconfig, control_plane, "kubeconfig", str(destination), "--force"
        ),
        sensitive=True,
    )


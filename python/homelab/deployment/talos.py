"""
Layer 3: bring the provisioned Talos machines up as a Kubernetes cluster.

Strictly ordered, every failure fatal:
  a) generate a fresh secrets bundle, moving any previous one aside
  b) write config patches (VIP, scheduling, no CNI, API server SANs, hostname)
     and render one machine config per node plus a talosconfig
  c) push each config over the insecure maintenance API, control plane first
  d) poll the control plane until `talosctl health --server=false` passes
  e) bootstrap etcd once on the control plane
  f) fetch the kubeconfig

After (c) the control plane is addressed only through its own address; the
VIP is only what the rendered configs and kubeconfig point clients at.
The overlay network and node readiness gates run afterwards
(deploy_kubernetes), since nodes cannot become Ready without a CNI.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel

from homelab.deployment.networking import install_cilium
from homelab.errors import PreconditionError
from homelab.models.config import HomelabConfig
from homelab.models.k8s import KubectlContext
from homelab.models.talos import TalosArtifacts, TalosCluster, TalosNode
from homelab.models.terraform import TerraformOutputs
from homelab.utils import k8s, talos
from homelab.utils.async_command_runner import CommandError, require_tools
from homelab.utils.files import atomic_write_text, backup_existing, reset_directory
from homelab.utils.log import banner
from homelab.utils.polling import CheckResult, wait_until
from homelab.utils.terraform import load_terraform_outputs

logger = logging.getLogger(__name__)

TALOS_OUTPUT = "talos_ips"
CREDENTIAL_MODE = 0o600


class PatchSet(BaseModel):
    """Patch files on disk, grouped by the machine types they apply to."""

    common: List[Path]
    control_plane: List[Path]
    per_node: Dict[str, Path]


def artifacts_for(config: HomelabConfig) -> TalosArtifacts:
    return TalosArtifacts(
        talos_dir=config.talos_dir,
        patches_dir=config.patches_dir,
        rendered_dir=config.rendered_dir,
    )


def cluster_from_outputs(config: HomelabConfig, outputs: TerraformOutputs) -> TalosCluster:
    """
    Resolve the declared Talos nodes against the `talos_ips` output.

    Raises:
        PreconditionError: Listing every node without an address.
    """
    addresses = outputs.get_address_map(TALOS_OUTPUT)
    specs = config.topology.talos_nodes
    missing = [s.hostname for s in specs if not addresses.get(s.hostname)]
    if missing:
        raise PreconditionError(
            "Failed to extract Talos node IPs from Terraform outputs: "
            + ", ".join(f"{h} (not found)" for h in missing)
        )
    opts = config.talos
    return TalosCluster(
        name=opts.cluster_name,
        vip=opts.vip,
        interface=opts.interface,
        nodes=[
            TalosNode(hostname=s.hostname, address=addresses[s.hostname], role=s.role)
            for s in specs
        ],
        extra_cert_sans=list(opts.extra_cert_sans),
        allow_scheduling_on_control_planes=opts.allow_scheduling_on_control_planes,
    )


async def generate_secrets(artifacts: TalosArtifacts) -> Optional[Path]:
    """
    Create a new secrets bundle. An existing one is kept as
    `secrets.yaml.bak.<epoch>`, never overwritten or deleted.

    Returns:
        The backup path, if a previous bundle existed.
    """
    artifacts.talos_dir.mkdir(parents=True, exist_ok=True)
    backup = backup_existing(artifacts.secrets_file)
    if backup is not None:
        logger.warning("secrets.yaml already exists, backed up to %s", backup.name)
    await talos.gen_secrets(artifacts.secrets_file)
    _restrict(artifacts.secrets_file)
    logger.info("Talos secrets generated")
    return backup


def build_patches(cluster: TalosCluster) -> Dict[str, Dict[str, Any]]:
    """Return patch name -> patch document."""
    patches: Dict[str, Dict[str, Any]] = {
        "vip": {
            "machine": {
                "network": {
                    "interfaces": [
                        {"interface": cluster.interface, "vip": {"ip": cluster.vip}}
                    ]
                }
            }
        },
        "allowcontrolplanes": {
            "cluster": {
                "allowSchedulingOnControlPlanes": cluster.allow_scheduling_on_control_planes
            }
        },
        "cni": {"cluster": {"network": {"cni": {"name": "none"}}}},
        "kubernetes-certificates": {
            "cluster": {"apiServer": {"certSANs": cluster.cert_sans}}
        },
    }
    for node in cluster.nodes:
        patches[f"{node.hostname}-hostname"] = {
            "machine": {"network": {"hostname": node.hostname}}
        }
    return patches


async def write_config_patches(cluster: TalosCluster, patches_dir: Path) -> PatchSet:
    logger.info("Creating configuration patches...")
    paths: Dict[str, Path] = {}
    for name, doc in build_patches(cluster).items():
        paths[name] = await atomic_write_text(
            patches_dir / f"{name}.yaml", yaml.safe_dump(doc, sort_keys=False)
        )
    return PatchSet(
        common=[
            paths["allowcontrolplanes"],
            paths["cni"],
            paths["kubernetes-certificates"],
        ],
        control_plane=[paths["vip"]],
        per_node={n.hostname: paths[f"{n.hostname}-hostname"] for n in cluster.nodes},
    )


async def render_node_configs(
    cluster: TalosCluster, artifacts: TalosArtifacts, patches: PatchSet
) -> Dict[str, Path]:
    """
    Wipe the rendered directory and render one config per node plus talosconfig.

    Returns:
        hostname -> rendered config path.
    """
    logger.info("Generating Talos configuration...")
    reset_directory(artifacts.rendered_dir)
    rendered: Dict[str, Path] = {}
    for node in cluster.ordered_nodes():
        out = artifacts.rendered_config(node)
        await talos.gen_config(
            cluster,
            artifacts.secrets_file,
            talos.output_type_for(node),
            out,
            patches=patches.common + [patches.per_node[node.hostname]],
            control_plane_patches=patches.control_plane if node.is_control_plane else [],
        )
        _restrict(out)
        rendered[node.hostname] = out
        logger.info("  %s -> %s", node.hostname, out.name)

    await talos.gen_config(
        cluster, artifacts.secrets_file, "talosconfig", artifacts.talosconfig
    )
    _restrict(artifacts.talosconfig)
    logger.info("Talos configuration generated with hostnames")
    return rendered


async def apply_node_configs(
    cluster: TalosCluster, rendered: Dict[str, Path]
) -> None:
    """Push configs one node at a time, control plane first."""
    logger.info("Applying Talos configuration to nodes...")
    for node in cluster.ordered_nodes():
        kind = "control plane" if node.is_control_plane else "worker"
        logger.info("Applying %s configuration to %s (%s)", kind, node.hostname, node.address)
        await talos.apply_config_insecure(node, rendered[node.hostname])
    logger.warning("Nodes are now rebooting and configuring themselves...")


async def wait_for_control_plane(
    cluster: TalosCluster,
    artifacts: TalosArtifacts,
    timeout: float,
    interval: float,
) -> None:
    """Poll the control plane health until it passes or `timeout` elapses (fatal)."""
    cp = cluster.control_plane

    async def _check() -> CheckResult:
        try:
            await talos.health(artifacts.talosconfig, cp, wait_timeout=timeout)
        except CommandError as exc:
            return False, str(exc)
        return True, "healthy"

    await wait_until(
        _check,
        description=f"control plane {cp.hostname} ({cp.address}) to be healthy",
        timeout=timeout,
        interval=interval,
    )
    logger.info("Control plane is ready")


async def bootstrap_cluster(cluster: TalosCluster, artifacts: TalosArtifacts) -> None:
    logger.info("Bootstrapping Kubernetes cluster on %s...", cluster.control_plane.address)
    await talos.bootstrap(artifacts.talosconfig, cluster.control_plane)


async def fetch_kubeconfig(cluster: TalosCluster, artifacts: TalosArtifacts) -> Path:
    await talos.kubeconfig(
        artifacts.talosconfig, cluster.control_plane, artifacts.kubeconfig
    )
    _restrict(artifacts.kubeconfig)
    logger.info("Kubeconfig written to %s", artifacts.kubeconfig)
    return artifacts.kubeconfig


def _restrict(path: Path) -> None:
    if path.exists():
        os.chmod(path, CREDENTIAL_MODE)


async def bootstrap_talos(
    config: HomelabConfig, cluster: TalosCluster
) -> TalosArtifacts:
    """Run steps (a) through (f) for `cluster`."""
    artifacts = artifacts_for(config)
    logger.info(
        "Talos nodes: %s",
        ", ".join(f"{n.hostname}={n.address} ({n.role.value})" for n in cluster.ordered_nodes()),
    )

    await generate_secrets(artifacts)
    patches = await write_config_patches(cluster, artifacts.patches_dir)
    rendered = await render_node_configs(cluster, artifacts, patches)
    await apply_node_configs(cluster, rendered)
    await wait_for_control_plane(
        cluster,
        artifacts,
        timeout=config.talos.health_timeout,
        interval=config.talos.health_interval,
    )
    await bootstrap_cluster(cluster, artifacts)
    await fetch_kubeconfig(cluster, artifacts)
    logger.info("Kubernetes cluster bootstrapped")
    return artifacts


async def deploy_kubernetes(
    config: HomelabConfig, outputs: Optional[TerraformOutputs] = None
) -> TalosCluster:
    """
    Full Layer 3: Talos bootstrap, registration gate, Cilium, readiness gate.

    Args:
        config: Deployment configuration.
        outputs: Terraform outputs; read from `config.outputs_file` when omitted.
    """
    logger.info("\n%s", banner("LAYER 3 - KUBERNETES", "Talos Linux Cluster Setup"))
    require_tools(["talosctl", "kubectl", "helm"])
    if outputs is None:
        outputs = await load_terraform_outputs(config.outputs_file)
    cluster = cluster_from_outputs(config, outputs)

    artifacts = await bootstrap_talos(config, cluster)
    ctx = KubectlContext(kubeconfig=artifacts.kubeconfig)
    expected = len(cluster.nodes)

    await k8s.wait_for_nodes(
        ctx,
        expected,
        require_ready=False,
        timeout=config.talos.nodes_timeout,
        interval=config.talos.nodes_interval,
    )
    await install_cilium(config, ctx)
    await k8s.wait_for_nodes(
        ctx,
        expected,
        require_ready=True,
        timeout=config.talos.nodes_timeout,
        interval=config.talos.nodes_interval,
    )
    logger.info("All nodes are ready")

    await display_cluster_info(cluster, artifacts, ctx)
    return cluster


async def display_cluster_info(
    cluster: TalosCluster, artifacts: TalosArtifacts, ctx: KubectlContext
) -> None:
    logger.info("\n%s", banner("CLUSTER DEPLOYMENT COMPLETE"))
    logger.info("Cluster name: %s", cluster.name)
    logger.info("Control plane VIP: %s:6443", cluster.vip)
    logger.info("Kubeconfig: %s", artifacts.kubeconfig)
    logger.info("Talosconfig: %s", artifacts.talosconfig)
    await k8s.show(ctx, "get", "nodes", "-o", "wide")
    await k8s.show(ctx, "get", "pods", "-n", "kube-system")
    logger.info("Next: export KUBECONFIG=%s", artifacts.kubeconfig)

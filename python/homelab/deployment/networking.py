"""
Cilium overlay install for a freshly bootstrapped cluster.

One-shot: `helm install` (not upgrade) with a pinned chart version, so
re-running against a cluster that already has the release fails.
"""

from __future__ import annotations

import logging
from typing import Dict

from homelab.models.config import CiliumOptions, HomelabConfig
from homelab.models.helm import HelmRelease
from homelab.models.k8s import KubectlContext
from homelab.utils import helm, k8s

logger = logging.getLogger(__name__)

CILIUM_SELECTOR = "k8s-app=cilium"

AGENT_CAPABILITIES = (
    "CHOWN,KILL,NET_ADMIN,NET_RAW,IPC_LOCK,SYS_ADMIN,SYS_RESOURCE,"
    "DAC_OVERRIDE,FOWNER,SETGID,SETUID"
)
CLEAN_STATE_CAPABILITIES = "NET_ADMIN,SYS_ADMIN,SYS_RESOURCE"


def cilium_values() -> Dict[str, str]:
    # Talos mounts cgroup2 itself and runs kube-proxy
    return {
        "ipam.mode": "kubernetes",
        "kubeProxyReplacement": "false",
        "securityContext.capabilities.ciliumAgent": "{" + AGENT_CAPABILITIES + "}",
        "securityContext.capabilities.cleanCiliumState": "{" + CLEAN_STATE_CAPABILITIES + "}",
        "cgroup.autoMount.enabled": "false",
        "cgroup.hostRoot": "/sys/fs/cgroup",
    }


def cilium_release(opts: CiliumOptions) -> HelmRelease:
    return HelmRelease(
        release="cilium",
        repo_name=opts.repo_name,
        repo_url=opts.repo_url,
        chart="cilium",
        version=opts.chart_version,
        namespace=opts.namespace,
        values=cilium_values(),
    )


async def install_cilium(config: HomelabConfig, ctx: KubectlContext) -> None:
    """Install the Cilium chart and block until its agent pods are ready."""
    opts = config.cilium
    logger.info("Installing Cilium CNI %s...", opts.chart_version)
    await helm.install(ctx, cilium_release(opts))

    logger.info("Waiting for Cilium to be ready...")
    await k8s.wait_for_pods(ctx, CILIUM_SELECTOR, opts.namespace, opts.ready_timeout)
    logger.info("Cilium CNI installed and ready")
